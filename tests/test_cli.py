from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from figma_codegen import __main__ as cli

REPO_ROOT = Path(__file__).resolve().parents[1]


class FakeWorkflow:
    status = "success"
    closed = False

    @classmethod
    def from_settings(cls, settings: Any, *, design_source: Any, use_llm: bool) -> "FakeWorkflow":
        return cls()

    def run(self, input_ref: str, *, stream: bool = False) -> dict[str, Any]:
        return {
            "status": self.status,
            "generated_components": [{"name": "Button", "file_path": "ui/elements/Button.tsx"}],
            "errors": [{"phase": "generation", "message": "Card: boom"}] if self.status != "success" else [],
        }

    def close(self) -> None:
        FakeWorkflow.closed = True


@pytest.mark.parametrize(
    ("status", "exit_code"),
    [
        ("success", 0),
        ("completed_with_errors", 0),
        ("needs_revision", 1),
        ("error", 1),
        ("failed", 1),
    ],
)
def test_exit_code_follows_final_status(
    status: str, exit_code: int, design_export: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(FakeWorkflow, "status", status)
    monkeypatch.setattr(cli, "LibraryWorkflow", FakeWorkflow)

    assert cli.main([str(design_export), "--offline"]) == exit_code
    out = capsys.readouterr().out
    assert f"status={status}" in out
    assert "generated=Button ui/elements/Button.tsx" in out
    assert FakeWorkflow.closed


def test_escaped_exception_exits_one(design_export: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    class ExplodingWorkflow(FakeWorkflow):
        def run(self, input_ref: str, *, stream: bool = False) -> dict[str, Any]:
            raise RuntimeError("checkpoint store unavailable")

    monkeypatch.setattr(cli, "DesignToCodeWorkflow", ExplodingWorkflow)

    assert cli.main([str(design_export), "--offline", "--workflow", "staged"]) == 1


def test_invalid_input_exits_one(workspace: Path) -> None:
    assert cli.main(["https://example.com/not-figma"]) == 1
    assert cli.main(["missing-export.json"]) == 1
    assert cli.main(["   "]) == 1


def test_invalid_settings_exit_one(design_export: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FIGMA_CODEGEN_RECURSION_LIMIT", "lots")

    assert cli.main([str(design_export), "--offline"]) == 1


def test_offline_staged_run_in_process(design_export: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([str(design_export), "--offline", "--workflow", "staged", "--output-path", "app/ui"]) == 0

    out = capsys.readouterr().out
    assert "status=success" in out
    assert "successfullyGenerated=2" in out
    assert (design_export.parent / "app" / "ui" / "elements" / "TextInput.tsx").is_file()


def test_cli_end_to_end_offline_library_run(design_export: Path) -> None:
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT / "src"), env.get("PYTHONPATH")]))
    env["FIGMA_CODEGEN_REPORTS_DIR"] = "out/reports"

    result = subprocess.run(
        [sys.executable, "-m", "figma_codegen", str(design_export), "--offline"],
        cwd=design_export.parent,
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )

    assert result.returncode == 0, result.stderr
    assert "status=success" in result.stdout
    assert "generated=SearchIcon" in result.stdout
    assert list((design_export.parent / "out" / "reports").glob("workflow-report-*.md"))
