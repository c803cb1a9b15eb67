from __future__ import annotations

from typing import Any, Mapping

from langgraph.types import Command

from figma_codegen.steps import Continue, Halt, StepOutcome, run_step


def _continue_step(state: Mapping[str, Any]) -> StepOutcome:
    return Continue("routing", {"visual_analysis": {"summary": "ok"}, "metadata": {"tokensUsed": 5}})


def _halt_step(state: Mapping[str, Any]) -> StepOutcome:
    return Halt({"status": "success"})


def _failing_step(state: Mapping[str, Any]) -> StepOutcome:
    raise RuntimeError("design source unavailable")


def test_continue_becomes_command_with_phase_stamp() -> None:
    node = run_step(_continue_step, phase="analysis", error_step="error")

    result = node({})

    assert isinstance(result, Command)
    assert result.goto == "routing"
    assert result.update["current_phase"] == "analysis"
    assert result.update["visual_analysis"] == {"summary": "ok"}
    assert result.update["metadata"]["tokensUsed"] == 5
    assert "analysisTime" in result.update["metadata"]


def test_halt_becomes_plain_update() -> None:
    node = run_step(_halt_step, phase="complete", error_step=None)

    result = node({})

    assert isinstance(result, dict)
    assert result["status"] == "success"
    assert result["current_phase"] == "complete"


def test_exception_routes_to_error_step() -> None:
    node = run_step(_failing_step, phase="analysis", error_step="error")

    result = node({})

    assert isinstance(result, Command)
    assert result.goto == "error"
    assert result.update["status"] == "error"
    assert result.update["errors"][0]["message"] == "design source unavailable"
    assert result.update["errors"][0]["phase"] == "analysis"


def test_exception_without_error_step_ends_with_error_recorded() -> None:
    node = run_step(_failing_step, phase="finalize", error_step=None)

    result = node({})

    assert isinstance(result, dict)
    assert result["errors"][0]["phase"] == "finalize"
