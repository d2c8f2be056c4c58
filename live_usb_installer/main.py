import argparse
import json
import sys
from pathlib import Path

from loguru import logger

from live_usb_installer.config import settings
from live_usb_installer.domain.models import (
    DataPartitionMode,
    ExchangeFileSystem,
    InstallOptions,
    Partition,
    ProvisioningConfig,
    StorageDevice,
)
from live_usb_installer.logging import setup_logging
from live_usb_installer.services import provisioning
from live_usb_installer.services.source import DirectoryInstallationSource
from live_usb_installer.storage import partitioner, planner, swap
from live_usb_installer.storage.commands import command_output, run_command
from live_usb_installer.storage.copy_jobs import FileCopier
from live_usb_installer.storage.exceptions import StorageError


LSBLK_COLUMNS = "NAME,TYPE,SIZE,MODEL,VENDOR,TRAN,RM,FSTYPE,LABEL"


def get_storage_device(name: str) -> StorageDevice:
    """Describe a block device with lsblk."""
    result = run_command(
        ["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS, f"/dev/{name}"], log_output=False
    )
    if result.returncode != 0:
        raise StorageError(f"lsblk failed for {name}: {command_output(result)}")
    try:
        devices = json.loads(result.stdout).get("blockdevices", [])
    except json.JSONDecodeError as error:
        raise StorageError(f"lsblk returned invalid JSON for {name}: {error}") from error
    if not devices:
        raise StorageError(f"Device {name} not found")
    return StorageDevice.from_lsblk_dict(devices[0])


def _confirm_on_terminal(message: str) -> bool:
    answer = input(f"{message} Continue? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _sizing(args) -> provisioning.SizingRequest:
    strategy = planner.get_repartition_strategy(
        args.keep_exchange, args.resize_exchange is not None
    )
    return provisioning.SizingRequest(
        exchange_mb=args.exchange_mb,
        strategy=strategy,
        resized_exchange_mb=args.resize_exchange or 0,
    )


def _labels() -> dict:
    return {
        "boot_label": settings.get_setting("boot_label", settings.DEFAULT_BOOT_LABEL),
        "persistence_label": settings.get_setting(
            "persistence_label", settings.DEFAULT_PERSISTENCE_LABEL
        ),
    }


def _options(args) -> InstallOptions:
    return InstallOptions(
        exchange_filesystem=ExchangeFileSystem.from_name(args.exchange_fs),
        data_partition_filesystem=args.data_fs,
        exchange_label=args.exchange_label,
        copy_exchange=args.copy_exchange,
        copy_persistence=args.copy_persistence,
        data_partition_mode=DataPartitionMode(args.data_mode),
        upgrading=args.upgrade,
    )


def cmd_plan(args) -> int:
    if args.size is not None:
        device = StorageDevice(name=args.device, size_bytes=args.size, removable=not args.fixed)
    else:
        device = get_storage_device(args.device)
    config = ProvisioningConfig.from_system_size(args.system_size, "system", **_labels())
    layout = provisioning.plan(device, config, _options(args), _sizing(args))

    print(f"device:      {device.format_label()}")
    print(f"state:       {layout.state.name}")
    print(f"exchange:    {layout.sizes.exchange_mb} MiB")
    print(f"persistence: {layout.sizes.persistence_mb} MiB")
    for number, (role, (start, end)) in enumerate(
        zip(layout.roles, layout.boundaries()), start=1
    ):
        print(f"  {device.partition_node(number)}  {role.value:<12} {start} - {end}")
    print(" ".join(partitioner.parted_command(device, layout)))
    return 0


def cmd_install(args) -> int:
    device = get_storage_device(args.device)
    if not args.yes and not _confirm_on_terminal(
        f"All data on {device.format_label()} will be destroyed."
    ):
        print("Aborted.")
        return 1

    data_partition = None
    if args.source_data_partition:
        data_partition = Partition.from_device_and_number(args.source_data_partition)
    source = DirectoryInstallationSource.from_root(
        Path(args.source_root),
        data_partition=data_partition,
        system_partition_label=args.system_label,
    )
    config = source.provisioning_config(**_labels())
    swap.configure_swap_guard(None if args.yes else _confirm_on_terminal)

    provisioning.copy_to_storage_device(
        source, FileCopier(), device, _options(args), config, _sizing(args)
    )
    print(f"{device.device_node} is ready.")
    return 0


def _add_layout_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--device", required=True, help="Device name, e.g. sdb")
    parser.add_argument("--exchange-mb", type=int, default=0, help="Exchange partition size")
    parser.add_argument(
        "--exchange-fs",
        default=settings.get_setting("exchange_filesystem", "fat32"),
        help="fat32, exfat or ntfs",
    )
    parser.add_argument(
        "--exchange-label",
        default=settings.get_setting("exchange_label", settings.DEFAULT_EXCHANGE_LABEL),
    )
    parser.add_argument(
        "--data-fs",
        default=settings.get_setting("data_partition_filesystem", "ext4"),
        help="Persistence partition filesystem",
    )
    parser.add_argument(
        "--data-mode",
        choices=[mode.value for mode in DataPartitionMode],
        default=DataPartitionMode.READ_WRITE.value,
    )
    parser.add_argument("--upgrade", action="store_true", help="Size as an upgrade")
    parser.add_argument(
        "--keep-exchange", action="store_true", help="Upgrade: keep exchange size"
    )
    parser.add_argument(
        "--resize-exchange", type=int, metavar="MB", help="Upgrade: new exchange size"
    )
    parser.add_argument("--copy-exchange", action="store_true")
    parser.add_argument("--copy-persistence", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="live-usb-installer", description="Install a live system on a storage device"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log command output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Show the partition layout")
    _add_layout_arguments(plan_parser)
    plan_parser.add_argument("--system-size", type=int, required=True, metavar="BYTES")
    plan_parser.add_argument(
        "--size", type=int, metavar="BYTES", help="Device size instead of asking lsblk"
    )
    plan_parser.add_argument("--fixed", action="store_true", help="Treat as a fixed disk")
    plan_parser.set_defaults(func=cmd_plan)

    install_parser = subparsers.add_parser("install", help="Provision a device")
    _add_layout_arguments(install_parser)
    install_parser.add_argument("--source-root", required=True, metavar="PATH")
    install_parser.add_argument(
        "--source-data-partition", metavar="NAME", help="Source persistence, e.g. sda3"
    )
    install_parser.add_argument("--system-label", default="system")
    install_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask")
    install_parser.set_defaults(func=cmd_install)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace)
    try:
        return args.func(args)
    except (StorageError, ValueError) as error:
        logger.error(str(error))
        print(f"Error: {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
