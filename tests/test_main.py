"""Tests for the live-usb-installer command line."""

import pytest

from live_usb_installer import main
from live_usb_installer.storage.exceptions import StorageError


MEGA = 1024 * 1024


@pytest.fixture(autouse=True)
def no_log_files(mocker):
    return mocker.patch("live_usb_installer.main.setup_logging")


class TestGetStorageDevice:
    def test_parses_lsblk(self, fake_commands, mock_lsblk_output):
        fake_commands.set_output("lsblk", mock_lsblk_output)

        device = main.get_storage_device("sdb")

        assert device.name == "sdb"
        assert len(device.partitions) == 3
        assert fake_commands.calls[0][-1] == "/dev/sdb"

    def test_lsblk_failure(self, fake_commands):
        fake_commands.fail("lsblk", stderr="not a block device")

        with pytest.raises(StorageError, match="not a block device"):
            main.get_storage_device("sdz")

    def test_invalid_json(self, fake_commands):
        fake_commands.set_output("lsblk", "garbage")

        with pytest.raises(StorageError):
            main.get_storage_device("sdb")

    def test_no_devices(self, fake_commands):
        fake_commands.set_output("lsblk", '{"blockdevices": []}')

        with pytest.raises(StorageError, match="not found"):
            main.get_storage_device("sdb")


class TestPlanCommand:
    def test_plan_with_given_size(self, capsys):
        exit_code = main.main(
            [
                "plan",
                "--device", "sdb",
                "--size", str(8192 * MEGA),
                "--system-size", str(1000 * MEGA),
                "--exchange-mb", "1024",
            ]
        )

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "state:       EXCHANGE" in out
        assert "exchange:    1024 MiB" in out
        assert "/dev/sdb1  exchange" in out
        assert "parted -s -a optimal /dev/sdb mkpart primary 0% 1024MiB" in out

    def test_plan_fixed_device(self, capsys):
        main.main(
            [
                "plan",
                "--device", "sda",
                "--size", str(8192 * MEGA),
                "--system-size", str(1000 * MEGA),
                "--exchange-mb", "1024",
                "--fixed",
            ]
        )

        assert "/dev/sda1  boot" in capsys.readouterr().out

    def test_plan_too_small_returns_error(self, capsys):
        exit_code = main.main(
            ["plan", "--device", "sdb", "--size", str(500 * MEGA), "--system-size", str(1000 * MEGA)]
        )

        assert exit_code == 1
        assert "too small" in capsys.readouterr().err

    def test_plan_invalid_exchange_fs(self, capsys):
        exit_code = main.main(
            [
                "plan",
                "--device", "sdb",
                "--size", str(8192 * MEGA),
                "--system-size", str(1000 * MEGA),
                "--exchange-fs", "btrfs",
            ]
        )

        assert exit_code == 1
        assert "Unsupported exchange filesystem" in capsys.readouterr().err

    def test_plan_exchange_too_large(self, capsys):
        exit_code = main.main(
            [
                "plan",
                "--device", "sdb",
                "--size", str(2048 * MEGA),
                "--system-size", str(1000 * MEGA),
                "--exchange-mb", "5000",
            ]
        )

        assert exit_code == 1
        assert "does not fit on /dev/sdb" in capsys.readouterr().err

    def test_plan_uses_lsblk_without_size(self, fake_commands, mock_lsblk_output, capsys):
        fake_commands.set_output("lsblk", mock_lsblk_output)

        exit_code = main.main(
            ["plan", "--device", "sdb", "--system-size", str(1000 * MEGA), "--upgrade", "--keep-exchange"]
        )

        assert exit_code == 0
        assert "exchange:    1024 MiB" in capsys.readouterr().out


class TestInstallCommand:
    @pytest.fixture
    def pipeline(self, mocker):
        return mocker.patch("live_usb_installer.main.provisioning.copy_to_storage_device")

    def test_install(self, fake_commands, mock_lsblk_output, live_tree, pipeline, capsys):
        fake_commands.set_output("lsblk", mock_lsblk_output)

        exit_code = main.main(
            [
                "install",
                "--device", "sdb",
                "--source-root", str(live_tree),
                "--source-data-partition", "sda3",
                "--exchange-mb", "1024",
                "--exchange-fs", "exfat",
                "--copy-exchange",
                "-y",
            ]
        )

        assert exit_code == 0
        source, _, device, options, config, sizing = pipeline.call_args.args
        assert source.data_partition.device_node == "/dev/sda3"
        assert device.name == "sdb"
        assert options.copy_exchange is True
        assert options.exchange_filesystem.value == "exfat"
        assert config.system_size == 4096
        assert sizing.exchange_mb == 1024
        assert "/dev/sdb is ready." in capsys.readouterr().out

    def test_declined_confirmation_aborts(
        self, fake_commands, mock_lsblk_output, live_tree, pipeline, monkeypatch
    ):
        fake_commands.set_output("lsblk", mock_lsblk_output)
        monkeypatch.setattr("builtins.input", lambda prompt: "n")

        exit_code = main.main(
            ["install", "--device", "sdb", "--source-root", str(live_tree)]
        )

        assert exit_code == 1
        pipeline.assert_not_called()

    def test_pipeline_failure_returns_error(
        self, fake_commands, mock_lsblk_output, live_tree, pipeline, capsys
    ):
        fake_commands.set_output("lsblk", mock_lsblk_output)
        pipeline.side_effect = StorageError("Could not repartition /dev/sdb")

        exit_code = main.main(
            ["install", "--device", "sdb", "--source-root", str(live_tree), "-y"]
        )

        assert exit_code == 1
        assert "Could not repartition /dev/sdb" in capsys.readouterr().err


def test_debug_flags_reach_logging(no_log_files):
    main.main(
        ["--debug", "plan", "--device", "sdb", "--size", str(8192 * MEGA), "--system-size", "1"]
    )

    no_log_files.assert_called_once_with(debug=True, trace=False)
