"""Command line entry point: ``python -m liveupdate``.

Sub-commands:

* ``apply --version X [--url URL]`` downloads and installs release ``X``.
* ``pending`` drains the deferred-replacement queue (run on startup).
* ``check --payload FILE`` compares a version-check payload with the
  installed version.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from functools import partial
from pathlib import Path

from liveupdate.config import UpdaterSettings, get_settings
from liveupdate.logging import get_logger, setup_logging
from liveupdate.models import ProgressEvent, UpdatePackage
from liveupdate.orchestrator import UpdateOrchestrator
from liveupdate.pending import run_startup_tasks
from liveupdate.release import VersionInfo, is_newer_version, package_for
from liveupdate.restart import relaunch_process, standalone_relaunch_command

log = get_logger("liveupdate.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="liveupdate", description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    apply = commands.add_parser("apply", help="Download and install a release")
    apply.add_argument("--version", required=True, dest="target_version")
    apply.add_argument("--url", help="Archive URL (defaults to the release URL template)")

    commands.add_parser("pending", help="Apply replacements deferred by the last update")

    check = commands.add_parser("check", help="Compare a version payload with this install")
    check.add_argument("--payload", required=True, type=Path)
    return parser


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.progress:3d}%] {event.message}", flush=True)


async def _apply(settings: UpdaterSettings, target_version: str, url: str | None) -> int:
    package = UpdatePackage(
        download_url=url or settings.release_url(target_version),
        target_version=target_version,
    )
    restarter = partial(relaunch_process, standalone_relaunch_command(settings.relaunch_command))
    orchestrator = UpdateOrchestrator(settings, on_progress=_print_progress, restarter=restarter)
    result = await orchestrator.run(package)
    print(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        return 1

    # Keep the loop alive until the scheduled restart fires.
    await asyncio.sleep(settings.restart_delay_seconds + 1)
    return 0


def _check(settings: UpdaterSettings, payload_path: Path) -> int:
    try:
        info = VersionInfo.from_dict(json.loads(payload_path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        log.error("version_payload_invalid", path=str(payload_path), error=str(exc))
        return 2

    available = is_newer_version(info.version, settings.current_version)
    report = {
        "current_version": settings.current_version,
        "latest_version": info.version,
        "update_available": available,
        "notes": info.notes,
        "published_at": info.published_at,
    }
    if available:
        report["download_url"] = package_for(info, settings).download_url
    print(json.dumps(report, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, configure logging and run the selected command."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)

    if args.command == "apply":
        return asyncio.run(_apply(settings, args.target_version, args.url))
    if args.command == "pending":
        result = run_startup_tasks(settings)
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.failed == 0 else 1
    return _check(settings, args.payload)


if __name__ == "__main__":
    sys.exit(main())
