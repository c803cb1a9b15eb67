from __future__ import annotations

import json
from pathlib import Path

import pytest

from figma_codegen import finalize
from figma_codegen.finalize import Finalizer
from figma_codegen.reports import compute_stats, generate_report, generate_stories, render_story, write_inventory
from figma_codegen.state import add_error, create_initial_state, merge_state
from figma_codegen.steps import Halt


def _finished_state() -> dict:
    state = create_initial_state("design.json", output_path="nextjs-app/ui")
    return merge_state(
        state,
        {
            "visual_analysis": {"summary": "", "component_count": 3, "components": [{}, {}, {}]},
            "component_strategy": [
                {"component": {"name": "Button"}, "action": "create_new", "target_path": "a", "reason": "new"},
                {"component": {"name": "Card"}, "action": "update_existing", "target_path": "b", "reason": "extend"},
                {"component": {"name": "Chip"}, "action": "skip", "target_path": "c", "reason": "exists"},
            ],
            "generated_components": [
                {
                    "name": "Button",
                    "file_path": "nextjs-app/ui/elements/Button.tsx",
                    "atomic_level": "atom",
                    "quality_score": 9.2,
                    "iterations": 2,
                    "code": "export const Button = () => null;",
                }
            ],
        },
    )


def _write_component(root: Path, category: str, name: str, code: str) -> None:
    path = root / category / f"{name}.tsx"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(code, encoding="utf-8")


def test_compute_stats() -> None:
    assert compute_stats(_finished_state()) == {
        "totalAnalyzed": 3,
        "totalPlanned": 3,
        "created": 1,
        "updated": 1,
        "skipped": 1,
        "successfullyGenerated": 1,
        "errors": 0,
    }


def test_generate_report_writes_markdown_and_json(workspace: Path) -> None:
    paths = generate_report(_finished_state(), "reports")

    markdown = paths.markdown.read_text(encoding="utf-8")
    payload = json.loads(paths.json.read_text(encoding="utf-8"))
    assert paths.markdown.name.startswith("workflow-report-")
    assert "| Button | create_new |" in markdown
    assert payload["summary"]["created"] == 1
    assert "code" not in payload["generatedComponents"][0]


def test_stories_cover_each_variant(workspace: Path) -> None:
    root = workspace / "nextjs-app" / "ui"
    _write_component(
        root,
        "elements",
        "Button",
        "export interface ButtonProps {\n  variant?: 'primary' | 'secondary';\n}\nexport const Button = () => null;\n",
    )
    inventory = write_inventory(
        {"icons": [], "elements": ["Button", "Missing", "lowercase"], "components": [], "modules": []},
        "reports",
        "nextjs-app/ui",
    )

    result = generate_stories(inventory, "stories")

    assert [entry["name"] for entry in result.generated] == ["Button"]
    assert {entry["name"] for entry in result.skipped} == {"Missing", "lowercase"}
    story = (workspace / "stories" / "elements" / "Button.stories.tsx").read_text(encoding="utf-8")
    assert "title: 'Elements/Button'" in story
    assert "export const Primary: Story" in story
    assert "args: { variant: 'secondary' }" in story


def test_render_story_without_variants_has_default_only() -> None:
    story = render_story("Card", "components", "export const Card = () => null;")

    assert "export const Default: Story" in story
    assert story.count(": Story =") == 1
    assert "import { Card } from '@/ui/components/Card';" in story


def test_finalizer_reports_success_and_writes_artifacts(workspace: Path) -> None:
    _write_component(workspace / "nextjs-app" / "ui", "elements", "Button", "export const Button = () => null;\n")
    finalizer = Finalizer(reports_dir="reports", stories_dir="stories")

    outcome = finalizer(_finished_state())

    assert isinstance(outcome, Halt)
    assert outcome.update["status"] == "success"
    assert outcome.update["current_phase"] == "complete"
    assert outcome.update["library_context"]["elements"] == ["Button"]
    metadata = outcome.update["metadata"]
    assert metadata["summary"]["successfullyGenerated"] == 1
    assert metadata["durationSeconds"] is not None
    assert Path(metadata["reportPaths"]["markdown"]).is_file()
    assert Path(metadata["reportPaths"]["inventory"]).is_file()
    assert (workspace / "stories" / "elements" / "Button.stories.tsx").is_file()


def test_finalizer_marks_completed_with_errors() -> None:
    state = merge_state(_finished_state(), add_error("Card: boom", "generation"))

    outcome = Finalizer(write_reports=False)(state)

    assert outcome.update["status"] == "completed_with_errors"


def test_report_failure_does_not_change_status(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_report(state: dict, reports_dir: str) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(finalize, "generate_report", broken_report)

    outcome = Finalizer(reports_dir="reports", stories_dir="stories")(_finished_state())

    assert outcome.update["status"] == "success"
    assert outcome.update["metadata"]["reportPaths"]["markdown"] is None


def test_finalizer_failure_is_recorded_as_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_stats(state: dict) -> dict:
        raise RuntimeError("stats unavailable")

    monkeypatch.setattr(finalize, "compute_stats", broken_stats)

    outcome = Finalizer(write_reports=False)(_finished_state())

    assert outcome.update["status"] == "error"
    assert outcome.update["errors"][0]["phase"] == "finalize"
