"""Step outcomes and the engine wrapper that turns steps into graph nodes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

from langgraph.types import Command

from .state import add_error, merge_metadata, update_phase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Continue:
    """Apply ``update`` and move to ``next_step``."""

    next_step: str
    update: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Halt:
    """Apply ``update`` and end the graph."""

    update: dict[str, Any] = field(default_factory=dict)


StepOutcome = Union[Continue, Halt]
Step = Callable[[Mapping[str, Any]], StepOutcome]
GraphNode = Callable[[Mapping[str, Any]], Union[Command[str], dict[str, Any]]]


def with_phase(phase: str, update: dict[str, Any]) -> dict[str, Any]:
    stamped = update_phase(phase)
    merged = {**stamped, **update}
    merged["metadata"] = merge_metadata(stamped["metadata"], update.get("metadata"))
    return merged


def run_step(step: Step, *, phase: str, error_step: str | None) -> GraphNode:
    """Wrap ``step`` so that nothing it raises escapes the graph.

    Args:
        step: Callable taking the current state and returning a ``StepOutcome``.
        phase: Phase name stamped into ``current_phase`` and used for error entries.
        error_step: Node to route to when the step raises. ``None`` ends the
            graph with the error recorded instead.

    Returns:
        A LangGraph node callable returning a ``Command`` for ``Continue`` and a
        plain partial update for ``Halt``.
    """

    def node(state: Mapping[str, Any]) -> Command[str] | dict[str, Any]:
        logger.info("Entering phase %s", phase)
        try:
            outcome = step(state)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Phase %s failed: %s", phase, exc)
            update = with_phase(phase, add_error(exc, phase))
            if error_step is None:
                return update
            return Command(goto=error_step, update=update)

        if isinstance(outcome, Continue):
            logger.info("Phase %s complete -> %s", phase, outcome.next_step)
            return Command(goto=outcome.next_step, update=with_phase(phase, outcome.update))
        if isinstance(outcome, Halt):
            logger.info("Phase %s complete (terminal)", phase)
            return with_phase(phase, outcome.update)
        raise TypeError(f"Step for phase {phase} returned unsupported outcome {type(outcome).__name__}")

    node.__name__ = f"{phase}_node"
    return node
