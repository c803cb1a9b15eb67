"""Staged-workflow validation gate and terminal steps."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .checks import validate_imports
from .models import AtomicLevel, ValidationResult, WorkflowStatus
from .reports import compute_stats
from .state import LEVEL_CATEGORIES, utc_now
from .steps import Continue, Halt, StepOutcome

logger = logging.getLogger(__name__)

VALIDATION_SUCCESS_RATE = 0.8
_VALID_LEVELS = frozenset(level.value for level in AtomicLevel)


def route_after_validation(success_rate: float) -> str:
    return "complete" if success_rate >= VALIDATION_SUCCESS_RATE else "revision"


def _known_library(state: Mapping[str, Any]) -> dict[str, list[str]]:
    """Library inventory plus everything generated in this run, so sibling imports resolve."""
    library = {category: list(names) for category, names in (state.get("library_context") or {}).items()}
    for record in state.get("generated_components") or []:
        category = LEVEL_CATEGORIES.get(str(record.get("atomic_level")))
        if category is not None and record.get("name"):
            library.setdefault(category, []).append(str(record["name"]))
    return library


def validate_generated_component(record: Mapping[str, Any], library: Mapping[str, list[str]]) -> ValidationResult:
    issues: list[str] = []
    recommendations: list[str] = []
    code = str(record.get("code") or "")
    if not code.strip():
        issues.append("Missing component code")
    if not str(record.get("name") or "").strip():
        issues.append("Missing component name")
    if record.get("atomic_level") not in _VALID_LEVELS:
        issues.append(f"Invalid atomic level: {record.get('atomic_level')!r}")
    if code:
        issues.extend(validate_imports(code, library).issues)
        if "import" not in code:
            recommendations.append("Add the required import statements")
        if "export" not in code:
            recommendations.append("Export the component")
    success = not issues
    score = 10 - len(recommendations) if success else max(1, 5 - len(issues))
    return ValidationResult(
        component=str(record.get("name") or "unknown"),
        validation_type="typescript",
        success=success,
        score=score,
        issues=issues,
        recommendations=recommendations,
        confidence=0.9 if success else 0.6,
    )


def validation_step(state: Mapping[str, Any]) -> StepOutcome:
    components = state.get("generated_components") or []
    if not components:
        raise ValueError("No generated components available for validation")
    library = _known_library(state)
    results = [validate_generated_component(record, library) for record in components]
    passed = sum(1 for result in results if result.success)
    success_rate = passed / len(results)
    logger.info("Validation: %d/%d passed (%.0f%%)", passed, len(results), success_rate * 100)
    return Continue(
        route_after_validation(success_rate),
        {
            "validation_results": [result.model_dump(mode="json") for result in results],
            "metadata": {"validationSuccessRate": success_rate},
        },
    )


def complete_step(state: Mapping[str, Any]) -> StepOutcome:
    errors = state.get("errors") or []
    status = WorkflowStatus.COMPLETED_WITH_ERRORS if errors else WorkflowStatus.SUCCESS
    stats = compute_stats(state)
    logger.info("Workflow complete: %d component(s) generated, status %s", stats["successfullyGenerated"], status.value)
    return Halt({"status": status.value, "metadata": {"finalStats": stats, "endTime": utc_now()}})


def revision_step(state: Mapping[str, Any]) -> StepOutcome:
    failed = [
        result["component"]
        for result in state.get("validation_results") or []
        if not result.get("success")
    ]
    logger.warning("Workflow needs revision: %s", ", ".join(failed) or "no passing components")
    return Halt(
        {
            "status": WorkflowStatus.NEEDS_REVISION.value,
            "metadata": {"revisionNeeded": True, "failedComponents": failed, "endTime": utc_now()},
        }
    )


def error_step(state: Mapping[str, Any]) -> StepOutcome:
    errors = state.get("errors") or []
    for error in errors:
        logger.error("[%s] %s", error.get("phase"), error.get("message"))
    return Halt(
        {
            "status": WorkflowStatus.ERROR.value,
            "metadata": {"errorCount": len(errors), "endTime": utc_now()},
        }
    )
