"""Outer workflow graphs.

``LibraryWorkflow``: analysis -> strategy_planner -> generator? -> finalizer.
``DesignToCodeWorkflow``: analysis -> routing -> generation_* -> validation ->
complete | revision | error.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Mapping

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, StateGraph

from .analysis import AnalysisStep, RoutingStep
from .design_source import DesignSource
from .finalize import Finalizer
from .generator import ComponentGenerator, ComponentRefiner, LevelGenerationStep
from .llm import get_structured_chat_model
from .model_selection import RuntimeModelSelection
from .models import RoutingDecision, VisualAnalysis, WorkflowStatus
from .refinement import RefinementGraph
from .settings import RuntimeSettings
from .state import WorkflowState, add_error, create_initial_state, merge_state
from .steps import Step, run_step
from .strategy import StrategyPlanner
from .validation import complete_step, error_step, revision_step, validation_step

logger = logging.getLogger(__name__)


def build_checkpointer(settings: RuntimeSettings, repo_root: Path | None = None) -> tuple[BaseCheckpointSaver, sqlite3.Connection | None]:
    path = settings.checkpoint_path(repo_root if repo_root is not None else Path.cwd())
    if path is None:
        return MemorySaver(), None
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    return SqliteSaver(conn), conn


def _vision_model(settings: RuntimeSettings) -> Any:
    return get_structured_chat_model(
        model_name=RuntimeModelSelection.from_settings(settings).resolve("analysis"),
        schema=VisualAnalysis,
        temperature=0.1,
    )


class _GraphWorkflow:
    """Shared checkpointer wiring and run loop for the outer graphs."""

    name = "workflow"
    phases: dict[str, str] = {}
    error_node: str | None = None
    terminal_nodes: tuple[str, ...] = ()

    def __init__(
        self,
        steps: Mapping[str, Step],
        *,
        settings: RuntimeSettings,
        checkpointer: BaseCheckpointSaver | None = None,
    ) -> None:
        self.settings = settings
        self.steps = dict(steps)
        self._conn: sqlite3.Connection | None = None
        if checkpointer is None:
            checkpointer, self._conn = build_checkpointer(settings)
        self._checkpointer = checkpointer
        self.graph = self._build_graph().compile(checkpointer=self._checkpointer)

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(WorkflowState)
        for node_name, step in self.steps.items():
            error_target = None if node_name in self.terminal_nodes else self.error_node
            graph.add_node(node_name, run_step(step, phase=self.phases.get(node_name, node_name), error_step=error_target))
        graph.add_edge(START, "analysis")
        for node_name in self.terminal_nodes:
            graph.add_edge(node_name, END)
        return graph

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _log_progress(self, chunk: Mapping[str, Any]) -> None:
        for node_name, update in chunk.items():
            update = update or {}
            logger.info(
                "[%s] phase=%s status=%s errors=+%d",
                node_name,
                update.get("current_phase", "-"),
                update.get("status", "-"),
                len(update.get("errors") or []),
            )

    def run(self, input_ref: str, *, stream: bool = False, thread_id: str | None = None) -> dict[str, Any]:
        """Run the graph to a terminal node and return the final state.

        Failures raised by the graph runtime itself (for example hitting the
        recursion limit) are returned as a state with status ``failed``.

        Raises:
            ValueError: If ``input_ref`` is empty.
        """
        initial = create_initial_state(input_ref, output_path=self.settings.output_path)
        config = {
            "recursion_limit": self.settings.recursion_limit,
            "configurable": {"thread_id": thread_id or f"figma-{uuid.uuid4().hex[:8]}"},
        }
        logger.info("Starting %s run %s for %s", self.name, config["configurable"]["thread_id"], input_ref)
        try:
            if stream:
                for chunk in self.graph.stream(initial, config=config, stream_mode="updates"):
                    self._log_progress(chunk)
                result = dict(self.graph.get_state(config).values)
            else:
                result = dict(self.graph.invoke(initial, config=config))
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s run failed: %s", self.name, exc)
            return self._failed_state(initial, config, exc)
        logger.info("%s run finished with status %s", self.name, result.get("status"))
        return result

    def _failed_state(self, initial: WorkflowState, config: dict[str, Any], exc: Exception) -> dict[str, Any]:
        try:
            snapshot = dict(self.graph.get_state(config).values) or dict(initial)
        except Exception as state_exc:  # noqa: BLE001
            logger.warning("Unable to read checkpointed state: %s", state_exc)
            snapshot = dict(initial)
        failed = merge_state(snapshot, add_error(exc, "runtime"))
        failed["status"] = WorkflowStatus.FAILED.value
        return failed


class LibraryWorkflow(_GraphWorkflow):
    """File-scanning variant: plan against the existing library, then generate what is new."""

    name = "library"
    phases = {
        "analysis": "analysis",
        "strategy_planner": "strategy",
        "generator": "generation",
        "finalizer": "finalize",
    }
    error_node = "finalizer"
    terminal_nodes = ("finalizer",)

    def __init__(
        self,
        *,
        design_source: DesignSource,
        settings: RuntimeSettings | None = None,
        vision_model: Any = None,
        planner: StrategyPlanner | None = None,
        refiner: ComponentRefiner | None = None,
        finalizer: Finalizer | None = None,
        checkpointer: BaseCheckpointSaver | None = None,
        step_overrides: Mapping[str, Step] | None = None,
    ) -> None:
        settings = settings if settings is not None else RuntimeSettings.from_env()
        steps: dict[str, Step] = {
            "analysis": AnalysisStep(design_source, vision_model=vision_model, next_step="strategy_planner"),
            "strategy_planner": planner
            if planner is not None
            else StrategyPlanner(usage_search_root=settings.usage_search_root),
            "generator": ComponentGenerator(
                refiner if refiner is not None else RefinementGraph.from_settings(settings, use_llm=False)
            ),
            "finalizer": finalizer if finalizer is not None else Finalizer.from_settings(settings),
        }
        steps.update(step_overrides or {})
        super().__init__(steps, settings=settings, checkpointer=checkpointer)

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, *, design_source: DesignSource, use_llm: bool) -> "LibraryWorkflow":
        return cls(
            design_source=design_source,
            settings=settings,
            vision_model=_vision_model(settings) if use_llm else None,
            planner=StrategyPlanner.from_settings(settings, use_llm=use_llm),
            refiner=RefinementGraph.from_settings(settings, use_llm=use_llm),
        )


class DesignToCodeWorkflow(_GraphWorkflow):
    """Staged variant routed by component complexity and gated by validation."""

    name = "staged"
    phases = {
        "analysis": "analysis",
        "routing": "routing",
        "generation_atoms": "generation",
        "generation_molecules": "generation",
        "generation_mixed": "generation",
        "validation": "validation",
        "complete": "complete",
        "revision": "revision",
        "error": "error",
    }
    error_node = "error"
    terminal_nodes = ("complete", "revision", "error")

    def __init__(
        self,
        *,
        design_source: DesignSource,
        settings: RuntimeSettings | None = None,
        vision_model: Any = None,
        routing_model: Any = None,
        refiner: ComponentRefiner | None = None,
        checkpointer: BaseCheckpointSaver | None = None,
        step_overrides: Mapping[str, Step] | None = None,
    ) -> None:
        settings = settings if settings is not None else RuntimeSettings.from_env()
        refiner = refiner if refiner is not None else RefinementGraph.from_settings(settings, use_llm=False)
        steps: dict[str, Step] = {
            "analysis": AnalysisStep(design_source, vision_model=vision_model),
            "routing": RoutingStep(model=routing_model),
            "generation_atoms": LevelGenerationStep(refiner, groups=("atom",), label="atom"),
            "generation_molecules": LevelGenerationStep(refiner, groups=("molecule",), label="molecule"),
            "generation_mixed": LevelGenerationStep(refiner, groups=("atom", "molecule"), label="mixed"),
            "validation": validation_step,
            "complete": complete_step,
            "revision": revision_step,
            "error": error_step,
        }
        steps.update(step_overrides or {})
        super().__init__(steps, settings=settings, checkpointer=checkpointer)

    @classmethod
    def from_settings(
        cls, settings: RuntimeSettings, *, design_source: DesignSource, use_llm: bool
    ) -> "DesignToCodeWorkflow":
        routing_model = None
        if use_llm:
            routing_model = get_structured_chat_model(
                model_name=RuntimeModelSelection.from_settings(settings).resolve("routing"),
                schema=RoutingDecision,
                temperature=0.0,
            )
        return cls(
            design_source=design_source,
            settings=settings,
            vision_model=_vision_model(settings) if use_llm else None,
            routing_model=routing_model,
            refiner=RefinementGraph.from_settings(settings, use_llm=use_llm),
        )
