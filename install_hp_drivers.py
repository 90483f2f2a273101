#!/usr/bin/env python3
"""Download and silently install HP drivers for this machine."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from hpdrivers_config.paths import get_application_directory, get_log_directory
from services.catalog import CatalogError, FeatureVersion, PackageRecord
from services.environment import NetworkUnavailable, cleanup_installation_files, run_preflight, suspend_bitlocker
from services.pipeline import PackageResult, RunOptions
from services.run_logs import configure_logging
from services.system_info import PlatformDetectionError, get_hp_system_info
from services.updater import DriverUpdateService, PackageSelector, RunReport

logger = logging.getLogger("hpdrivers")

EXIT_OK = 0
EXIT_PACKAGE_FAILURES = 1
EXIT_FATAL = 2


def _feature_version(value: str) -> str:
    try:
        return str(FeatureVersion.parse(value))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Download and silently install HP drivers for this machine.")
    parser.add_argument("--no-prompt", action="store_true", help="Install every matching package without asking")
    parser.add_argument("--os-version", type=_feature_version, help="Use this feature version (e.g. 22H2) without fallback")
    parser.add_argument("--show-software", action="store_true", help="Include software, firmware, dock and diagnostic packages")
    parser.add_argument("--bios", action="store_true", help="Include BIOS updates")
    parser.add_argument("--overwrite", action="store_true", help="Reinstall packages even if the recorded version is current")
    parser.add_argument("--download-only", action="store_true", help="Download packages without installing them")
    parser.add_argument("--offline", action="store_true", help="Use only the cached catalog and skip network checks")
    parser.add_argument("--delete-installation-files", action="store_true", help="Remove downloaded and extracted files afterwards")
    parser.add_argument("--suspend-bitlocker", action="store_true", help="Suspend BitLocker for one reboot before installing")
    parser.add_argument("--strict-checksum", action="store_true", help="Reject downloads whose SHA256 does not match the catalog")
    parser.add_argument("--working-dir", type=Path, help="Directory holding the HPDrivers cache (default: current directory)")
    parser.add_argument("--verbose", action="store_true", help="Show debug output")
    return parser


def options_from_args(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        select_all=args.no_prompt,
        os_version=args.os_version,
        show_software=args.show_software,
        bios=args.bios,
        overwrite=args.overwrite,
        download_only=args.download_only,
        offline=args.offline,
        delete_installation_files=args.delete_installation_files,
        suspend_bitlocker=args.suspend_bitlocker,
        strict_checksum=args.strict_checksum,
    )


def format_status_table(results: Sequence[PackageResult]) -> str:
    headers = ("Id", "Status", "Version", "Name")
    rows = [(r.record.id, r.outcome.value, r.record.version, r.record.name) for r in results]
    widths = [max([len(headers[i])] + [len(row[i]) for row in rows]) for i in range(len(headers) - 1)]
    lines = []
    for row in [headers, *rows]:
        cells = [row[i].ljust(widths[i]) for i in range(len(widths))]
        lines.append("  ".join([*cells, row[-1]]).rstrip())
    lines.insert(1, "  ".join("-" * width for width in widths) + "  ----")
    return "\n".join(lines)


def _default_selector() -> PackageSelector:
    from ui.package_selector import QtPackageSelector

    return QtPackageSelector()


def _print_progress(completed: int, total: int, message: str) -> None:
    print(f"[{completed}/{total}] {message}")


def _suspend_bitlocker(packages: Sequence[PackageRecord]) -> None:
    if not suspend_bitlocker():
        logger.warning("Continuing without BitLocker suspension for %d package(s)", len(packages))


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    options = options_from_args(args)
    working_dir = args.working_dir or get_application_directory()
    configure_logging(get_log_directory(working_dir), level=logging.DEBUG if args.verbose else logging.INFO)

    info = get_hp_system_info()
    try:
        platform = info.to_platform()
        preflight = run_preflight(info, offline=options.offline)
    except (PlatformDetectionError, NetworkUnavailable) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL
    for warning in preflight.warnings:
        logger.warning(warning)
    print(f"{platform.display_name} | platform {platform.platform_id} | Windows {platform.os_type} {platform.feature_version}")

    service = DriverUpdateService(
        working_dir=working_dir,
        options=options,
        selector=None if options.select_all else _default_selector(),
    )
    try:
        report: RunReport = service.run(
            platform,
            progress_callback=_print_progress,
            before_install=_suspend_bitlocker if options.suspend_bitlocker else None,
        )
    except CatalogError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    if report.catalog.feature_version != report.catalog.requested_version:
        print(f"Using catalog for {report.catalog.feature_version} (requested {report.catalog.requested_version})")
    if report.results:
        print(format_status_table(report.results))
    else:
        print("Nothing to do.")

    if options.delete_installation_files and not options.download_only:
        cleanup_installation_files(service.cache_dir, service.version_store, (r.record.id for r in report.results))
    return EXIT_PACKAGE_FAILURES if report.failed else EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
