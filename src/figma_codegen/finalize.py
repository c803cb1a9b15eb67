from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
from datetime import datetime
from typing import Any, Iterable, Mapping

from .models import WorkflowStatus
from .reports import compute_stats, generate_report, generate_stories, render_summary, write_inventory
from .settings import RuntimeSettings
from .state import add_error, merge_state, utc_now
from .steps import Halt, StepOutcome
from .tools import scan_library

logger = logging.getLogger(__name__)


def release_ports(ports: Iterable[int]) -> int:
    """Terminate processes listening on ``ports``; returns how many were signalled."""
    ports = list(ports)
    if not ports:
        return 0
    lsof = shutil.which("lsof")
    if lsof is None:
        logger.debug("lsof not found; skipping port cleanup")
        return 0
    stopped = 0
    for port in ports:
        try:
            completed = subprocess.run(
                [lsof, "-ti", f":{port}"], capture_output=True, text=True, timeout=5, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("lsof failed for port %d: %s", port, exc)
            continue
        for pid in completed.stdout.split():
            try:
                os.kill(int(pid), signal.SIGTERM)
            except (ValueError, ProcessLookupError, PermissionError) as exc:
                logger.debug("Could not stop pid %s on port %d: %s", pid, port, exc)
                continue
            stopped += 1
    return stopped


def _duration_seconds(start_time: str | None) -> float | None:
    if not start_time:
        return None
    try:
        started = datetime.fromisoformat(start_time)
    except ValueError:
        return None
    return round((datetime.fromisoformat(utc_now()) - started).total_seconds(), 2)


class Finalizer:
    """Terminal step of the library workflow.

    Computes summary stats and runs the best-effort side effects (port
    cleanup, reports, inventory, stories) before deciding the final status.
    Report and story failures are logged and never change the status.
    """

    def __init__(
        self,
        *,
        reports_dir: str = "reports",
        stories_dir: str = "storybook-app/stories",
        cleanup_ports: Iterable[int] = (),
        write_reports: bool = True,
    ) -> None:
        self.reports_dir = reports_dir
        self.stories_dir = stories_dir
        self.cleanup_ports = tuple(cleanup_ports)
        self.write_reports = write_reports

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "Finalizer":
        return cls(
            reports_dir=settings.reports_dir,
            stories_dir=settings.stories_dir,
            cleanup_ports=settings.cleanup_ports,
        )

    def __call__(self, state: Mapping[str, Any]) -> StepOutcome:
        try:
            return Halt(self._finalize(state))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Finalization failed: %s", exc)
            return Halt(add_error(exc, "finalize"))

    def _cleanup(self) -> None:
        try:
            stopped = release_ports(self.cleanup_ports)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cleanup warning: %s", exc)
            return
        if stopped:
            logger.info("Cleanup: stopped %d auxiliary process(es)", stopped)

    def _finalize(self, state: Mapping[str, Any]) -> dict[str, Any]:
        self._cleanup()

        errors = state.get("errors") or []
        metadata = dict(state.get("metadata") or {})
        stats = compute_stats(state)
        status = WorkflowStatus.COMPLETED_WITH_ERRORS if errors else WorkflowStatus.SUCCESS
        update: dict[str, Any] = {
            "current_phase": "complete",
            "status": status.value,
            "metadata": {
                "endTime": utc_now(),
                "durationSeconds": _duration_seconds(metadata.get("startTime")),
                "summary": stats,
            },
        }
        output_path = str(state.get("output_path") or "nextjs-app/ui")
        try:
            update["library_context"] = scan_library(output_path)
        except OSError as exc:
            logger.warning("Failed to refresh library snapshot: %s", exc)

        final_state = merge_state(dict(state), update)
        logger.info("\n%s", render_summary(final_state))
        if self.write_reports:
            update["metadata"]["reportPaths"] = self._write_reports(final_state, output_path)
        return update

    def _write_reports(self, state: Mapping[str, Any], output_path: str) -> dict[str, str | None]:
        paths: dict[str, str | None] = {"markdown": None, "json": None, "inventory": None, "storiesDir": None}
        try:
            report = generate_report(state, self.reports_dir)
            paths["markdown"] = str(report.markdown)
            paths["json"] = str(report.json)
            inventory = write_inventory(state.get("library_context") or {}, self.reports_dir, output_path)
            paths["inventory"] = str(inventory)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to generate report: %s", exc)
            return paths
        try:
            stories = generate_stories(inventory, self.stories_dir)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to generate stories: %s", exc)
            return paths
        if stories.generated:
            paths["storiesDir"] = self.stories_dir
        return paths
