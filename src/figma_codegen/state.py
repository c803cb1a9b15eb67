"""Workflow state shapes and their merge rules.

Steps return partial updates. List fields merge through the reducers below,
scalar fields are overwritten when present. ``merge_state`` applies the same
rules outside of LangGraph so they can be exercised directly.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Callable, TypedDict

from .models import WorkflowError, WorkflowStatus


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


def append_items(existing: list[Any] | None, update: list[Any] | None) -> list[Any]:
    return [*(existing or []), *(update or [])]


def dedupe_by_name(existing: list[dict[str, Any]] | None, update: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Append records whose ``name`` is not already present; the first write wins."""
    merged = list(existing or [])
    seen = {item.get("name") for item in merged}
    for item in update or []:
        name = item.get("name")
        if name in seen:
            continue
        seen.add(name)
        merged.append(item)
    return merged


def append_or_reset(existing: list[str] | None, update: list[str] | None) -> list[str]:
    """Append feedback items; an explicit empty list clears the accumulated feedback."""
    if update is None:
        return list(existing or [])
    if not update:
        return []
    return [*(existing or []), *update]


def merge_metadata(existing: dict[str, Any] | None, update: dict[str, Any] | None) -> dict[str, Any]:
    return {**(existing or {}), **(update or {})}


class LibraryContext(TypedDict):
    icons: list[str]
    elements: list[str]
    components: list[str]
    modules: list[str]


class WorkflowState(TypedDict, total=False):
    input: str
    output_path: str
    figma_data: dict[str, Any] | None
    visual_analysis: dict[str, Any] | None
    routing_decision: dict[str, Any] | None
    component_strategy: list[dict[str, Any]]
    library_context: LibraryContext
    generated_components: Annotated[list[dict[str, Any]], dedupe_by_name]
    validation_results: Annotated[list[dict[str, Any]], append_items]
    errors: Annotated[list[dict[str, Any]], append_items]
    status: str
    current_phase: str
    metadata: Annotated[dict[str, Any], merge_metadata]


class RefinementState(TypedDict, total=False):
    component_spec: dict[str, Any]
    library_context: LibraryContext
    output_path: str
    screenshot_url: str | None
    current_code: str
    iteration_count: int
    refinement_feedback: Annotated[list[str], append_or_reset]
    code_review_result: dict[str, Any] | None
    approved: bool
    failure_reason: str | None
    usage: Annotated[dict[str, Any], merge_metadata]


REDUCERS: dict[str, Callable[[Any, Any], Any]] = {
    "generated_components": dedupe_by_name,
    "validation_results": append_items,
    "errors": append_items,
    "metadata": merge_metadata,
    "refinement_feedback": append_or_reset,
    "usage": merge_metadata,
}


def merge_state(state: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Return a new state with ``update`` merged in; ``state`` is not mutated."""
    merged = dict(state)
    for key, value in update.items():
        reducer = REDUCERS.get(key)
        merged[key] = reducer(state.get(key), value) if reducer is not None else value
    return merged


def empty_library_context() -> LibraryContext:
    return {"icons": [], "elements": [], "components": [], "modules": []}


def create_initial_state(input_ref: str, *, output_path: str = "nextjs-app/ui") -> WorkflowState:
    if not input_ref or not input_ref.strip():
        raise ValueError("input must be a non-empty design reference")
    return {
        "input": input_ref.strip(),
        "output_path": output_path,
        "figma_data": None,
        "visual_analysis": None,
        "routing_decision": None,
        "component_strategy": [],
        "library_context": empty_library_context(),
        "generated_components": [],
        "validation_results": [],
        "errors": [],
        "status": WorkflowStatus.PENDING.value,
        "current_phase": "init",
        "metadata": {"startTime": utc_now(), "tokensUsed": 0, "costEstimate": 0.0},
    }


def update_phase(phase: str) -> dict[str, Any]:
    """Partial update that enters ``phase`` and stamps ``metadata[<phase>Time]``."""
    return {"current_phase": phase, "metadata": {f"{phase}Time": utc_now()}}


def add_error(error: BaseException | str, phase: str) -> dict[str, Any]:
    message = str(error) or type(error).__name__
    entry = WorkflowError(message=message, phase=phase, timestamp=utc_now())
    return {"errors": [entry.model_dump(mode="json")], "status": WorkflowStatus.ERROR.value}


def determine_ui_category(component_type: str, complexity: int | None = None) -> str:
    """Map a component type (and optional 1-10 complexity) to a library category."""
    if complexity is not None:
        if complexity <= 3:
            return "elements"
        if complexity >= 7:
            return "modules"
    lowered = component_type.lower()
    if len(lowered) <= 6 or lowered.endswith("field") or lowered.endswith("button"):
        return "elements"
    if any(marker in lowered for marker in ("page", "layout", "header", "footer")):
        return "modules"
    return "components"


LEVEL_CATEGORIES: dict[str, str] = {
    "atom": "elements",
    "molecule": "components",
    "organism": "modules",
}
