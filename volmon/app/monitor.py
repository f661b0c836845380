import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from volmon.cli.common import (
    add_common_cli_arguments,
    install_exception_handlers,
    install_signal_handlers,
    non_negative_float,
    positive_float,
)
from volmon.core.config_manager import get_config_manager
from volmon.core.errors import UnsupportedPlatformError, ValidationError
from volmon.core.logging_config import configure_logging
from volmon.core.logging_utils import get_module_logger
from volmon.core.platform_info import get_platform_info
from volmon.core.volumes import VolumeInterrogator, VolumeRecord, get_volume_platform


logger = get_module_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BAD_CONFIG = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="volmon",
        description="Volume monitor - reports mounted volume usage and low space alerts",
    )

    add_common_cli_arguments(parser)

    parser.add_argument(
        "--period-hr",
        type=positive_float,
        default=None,
        help="Hours between scans (overrides the config file)",
    )

    parser.add_argument(
        "--threshold",
        type=non_negative_float,
        default=None,
        help="Default low space alarm threshold in percent free",
    )

    parser.add_argument(
        "--exclude",
        dest="exclusion_masks",
        action="append",
        default=None,
        metavar="MASK",
        help="Regular expression hiding matching mount points (repeatable)",
    )

    parser.add_argument(
        "--min-uptime",
        dest="min_uptime_s",
        type=non_negative_float,
        default=None,
        help="Seconds of host uptime required before the first scan",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single scan, print it and exit",
    )

    parser.add_argument(
        "--no-watch",
        dest="watch",
        action="store_false",
        default=True,
        help="Do not rescan when volumes are mounted or unmounted",
    )

    return parser.parse_args(argv)


def format_snapshot(records: List[VolumeRecord]) -> str:
    """Render one snapshot as a fixed-width table."""
    header = f"{'NAME':<24} {'TYPE':<7} {'SIZE GB':>9} {'FREE GB':>9} {'FREE%':>6}  {'FLAGS':<14} MOUNT POINT"
    lines = [header, "-" * len(header)]
    for record in records:
        flags = []
        if record.low_space_alert:
            flags.append("LOW")
        if not record.visible:
            flags.append("hidden")
        if not record.shown:
            flags.append("excluded")
        lines.append(
            f"{(record.name or '?')[:24]:<24} "
            f"{record.volume_type.value:<7} "
            f"{VolumeRecord.convert_bytes_to_gb(record.capacity_bytes):>9.2f} "
            f"{VolumeRecord.convert_bytes_to_gb(record.free_space_bytes):>9.2f} "
            f"{record.percent_free:>6.1f}  "
            f"{','.join(flags):<14} "
            f"{record.mount_point or '-'}"
        )
    if not records:
        lines.append("(no volumes)")
    return "\n".join(lines)


class VolumeMonitorApp:
    """Drives a VolumeInterrogator and prints every snapshot."""

    def __init__(
        self,
        interrogator: VolumeInterrogator,
        *,
        once: bool = False,
        watch: bool = True,
        out: TextIO = sys.stdout,
    ):
        self.interrogator = interrogator
        self.once = once
        self.watch = watch and not once
        self.out = out
        self.shutdown_event = asyncio.Event()
        self.snapshots = 0

        interrogator.set_scanning_callback(self._on_scanning)
        interrogator.set_ready_callback(self._on_ready)

    def _on_scanning(self) -> None:
        logger.debug("Scanning volumes...")

    def _on_ready(self, records: List[VolumeRecord]) -> None:
        self.snapshots += 1
        if not records and self.interrogator.last_error:
            print(f"Scan failed: {self.interrogator.last_error}", file=self.out)
        else:
            print(format_snapshot(records), file=self.out)
        self.out.flush()
        if self.once:
            self.shutdown_event.set()

    async def run(self) -> None:
        self.interrogator.start()
        if self.watch:
            await self.interrogator.start_watching()
        try:
            await self.shutdown_event.wait()
        finally:
            await self.interrogator.terminate()

    async def shutdown(self) -> None:
        logger.info("Shutdown requested")
        self.shutdown_event.set()


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    configure_logging(
        args.log_level,
        force=True,
        console=args.console_output,
        log_file=args.log_file,
    )

    loop = asyncio.get_running_loop()
    install_exception_handlers(logger, loop)

    config_path: Optional[Path] = args.config
    min_uptime_s = 0.0 if args.once and args.min_uptime_s is None else args.min_uptime_s
    try:
        settings = await get_config_manager().load_monitor_settings(
            config_path,
            period_hr=args.period_hr,
            default_alarm_threshold=args.threshold,
            exclusion_masks=tuple(args.exclusion_masks) if args.exclusion_masks else None,
            min_uptime_s=min_uptime_s,
        )
    except ValidationError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_BAD_CONFIG

    try:
        platform = get_volume_platform()
    except UnsupportedPlatformError as e:
        logger.error("%s", e)
        return EXIT_FAILURE

    logger.info("Volume monitor starting on %s", get_platform_info())
    logger.info(
        "Period: %.3f h, default threshold: %.1f%%, %d mask(s), %d customization(s)",
        settings.period_hr,
        settings.default_alarm_threshold,
        len(settings.exclusion_masks),
        len(settings.volume_customizations),
    )

    app = VolumeMonitorApp(
        VolumeInterrogator(settings, platform),
        once=args.once,
        watch=args.watch,
    )
    install_signal_handlers(app, loop)
    await app.run()

    logger.info("Volume monitor stopped")
    return EXIT_OK
