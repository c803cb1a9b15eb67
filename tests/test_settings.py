from __future__ import annotations

from pathlib import Path

import pytest

from figma_codegen.model_selection import RuntimeModelSelection
from figma_codegen.settings import RuntimeSettings
from figma_codegen.usage import accumulate_usage, add_usage_totals, estimate_cost


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FIGMA_CODEGEN_MODEL_FRONTIER", " gpt-4.1 ")
    monkeypatch.setenv("FIGMA_CODEGEN_OUTPUT_PATH", "web/ui")
    monkeypatch.setenv("FIGMA_CODEGEN_RECURSION_LIMIT", "40")
    monkeypatch.setenv("FIGMA_CODEGEN_CLEANUP_PORTS", "6006, 3000")

    settings = RuntimeSettings.from_env()

    assert settings.model_frontier == "gpt-4.1"
    assert settings.output_path == "web/ui"
    assert settings.recursion_limit == 40
    assert settings.cleanup_ports == (6006, 3000)


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("FIGMA_CODEGEN_RECURSION_LIMIT", "abc", "must be an integer"),
        ("FIGMA_CODEGEN_RECURSION_LIMIT", "2", "must be >= 5"),
        ("FIGMA_CODEGEN_TYPECHECK_TIMEOUT", "601", "must be <= 600"),
        ("FIGMA_CODEGEN_CLEANUP_PORTS", "6006,99999", "within 1..65535"),
        ("FIGMA_CODEGEN_MODEL_EFFICIENT", "  ", "must be non-empty"),
    ],
)
def test_from_env_fails_fast(monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        RuntimeSettings.from_env()


def test_with_overrides_keeps_other_fields() -> None:
    settings = RuntimeSettings(reports_dir="out").with_overrides(output_path="app/ui", recursion_limit=50)

    assert settings.output_path == "app/ui"
    assert settings.recursion_limit == 50
    assert settings.reports_dir == "out"


def test_checkpoint_path_is_relative_to_repo_root(tmp_path: Path) -> None:
    assert RuntimeSettings().checkpoint_path(tmp_path) is None
    assert RuntimeSettings(checkpoint_db="state/cp.sqlite").checkpoint_path(tmp_path) == tmp_path / "state" / "cp.sqlite"


def test_model_selection_resolves_tasks_by_tier() -> None:
    selection = RuntimeModelSelection.from_settings(
        RuntimeSettings(model_frontier="big", model_efficient="mid", model_economy="small")
    )

    assert selection.resolve("generation") == "big"
    assert selection.resolve("routing") == "mid"
    assert selection.resolve("reusability") == "small"
    with pytest.raises(ValueError, match="Unknown pipeline task"):
        selection.resolve("deploy")


def test_model_selection_requires_all_tiers() -> None:
    with pytest.raises(ValueError, match="missing required tiers"):
        RuntimeModelSelection(by_tier={"frontier": "big"})


def test_usage_accumulates_tokens_and_cost() -> None:
    delta = accumulate_usage({"tokensUsed": 10, "costEstimate": 0.5}, "gpt-4o-mini", {"input_tokens": 1_000_000, "output_tokens": 0})

    assert delta == {"tokensUsed": 1_000_010, "costEstimate": 0.5 + 0.15}
    assert accumulate_usage(None, "gpt-4o", None) == {"tokensUsed": 0, "costEstimate": 0.0}
    assert estimate_cost("unknown-model", 0, 1_000_000) == estimate_cost("gpt-4o", 0, 1_000_000)
    assert add_usage_totals({"tokensUsed": 5}, {"tokensUsed": 7, "costEstimate": 0.25}) == {
        "tokensUsed": 12,
        "costEstimate": 0.25,
    }
