from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "LIVE_USB_INSTALLER_LOG_DIR",
        Path.home() / ".local" / "state" / "live-usb-installer" / "logs",
    )
)


def _should_log_command_output(record) -> bool:
    """Keep raw command output out of the console unless tracing."""
    tags = record["extra"].get("tags", [])

    # Always log errors
    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "command-output" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_poll(record) -> bool:
    """Filter readiness polling chatter - one line per poll is noise."""
    message = record["message"].lower()

    if "waiting for" in message and "node" in message:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all console suppression rules."""
    return _should_log_command_output(record) and _should_log_poll(record)


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: failed commands, aborted provisioning runs
    - SUCCESS/INFO: pipeline stages, partition layouts, renamed boot files
    - DEBUG: every external command and its arguments
    - TRACE: command output, readiness polling

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory
            (defaults to ~/.local/state/live-usb-installer/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "<blue>{extra[job_id]: <18}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <18} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <18} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Trace Log - Ultra-verbose (TRACE only, when trace=True)
    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <18} | "
                "{message}"
            ),
        )

    # SINK 5: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking a provisioning run
        tags: Tags for filtering (e.g., ["partition", "storage"])
        source: Source component (e.g., "partition", "format", "copy")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion, and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "install", "upgrade", "repartition")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("install", device="/dev/sdb") as log:
            log.debug("Unmounting partitions")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(
        job_id=job_id,
        operation=operation,
        **details,
    ):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source and tags for one stage of the provisioning pipeline.
    """

    @staticmethod
    def for_partition() -> Logger:
        """Logger for partition planning and repartitioning."""
        return logger.bind(source="partition", tags=["partition", "storage"])

    @staticmethod
    def for_format() -> Logger:
        """Logger for filesystem creation."""
        return logger.bind(source="format", tags=["format", "storage"])

    @staticmethod
    def for_copy() -> Logger:
        """Logger for copy jobs and boot file handling."""
        return logger.bind(source="copy", tags=["copy"])

    @staticmethod
    def for_swap() -> Logger:
        """Logger for swap detection and swapoff."""
        return logger.bind(source="swap", tags=["swap", "memory"])

    @staticmethod
    def for_boot() -> Logger:
        """Logger for bootloader and MBR installation."""
        return logger.bind(source="boot", tags=["boot", "storage"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (commands, mounts, config)."""
        return logger.bind(source="system", tags=["system"])


class EventLogger:
    """
    Structured event logger using standardized schemas.

    Provides methods for logging provisioning events with
    consistent structure and fields.
    """

    @staticmethod
    def log_provisioning_started(
        log: Logger, device: str, size_bytes: int, mode: str, **extra
    ) -> None:
        """Log provisioning run start."""
        log.info(
            "Provisioning started",
            event_type="provisioning_started",
            target_device=device,
            size_bytes=size_bytes,
            mode=mode,
            **extra,
        )

    @staticmethod
    def log_layout_planned(
        log: Logger, device: str, state: str, roles: Iterable[str], **extra
    ) -> None:
        """Log the partition layout chosen for a device."""
        role_list = list(roles)
        log.info(
            f"Partition layout for {device}: {state} ({', '.join(role_list)})",
            event_type="layout_planned",
            target_device=device,
            partition_state=state,
            roles=role_list,
            **extra,
        )

    @staticmethod
    def log_command_failed(
        log: Logger, command: Iterable[str], returncode: int, output: str, **extra
    ) -> None:
        """Log a failed external command with its captured output."""
        command_list = list(command)
        log.error(
            f"Command failed ({returncode}): {' '.join(command_list)}",
            event_type="command_failed",
            command=command_list,
            returncode=returncode,
            output=output,
            **extra,
        )

    @staticmethod
    def log_stage_completed(log: Logger, stage: str, duration: float, **extra) -> None:
        """Log a completed pipeline stage."""
        log.debug(
            f"Stage {stage} completed",
            event_type="stage_completed",
            stage=stage,
            duration_seconds=round(duration, 2),
            **extra,
        )
