"""Strategy planning: decide create/update/skip per analyzed component.

The model first explores the existing library through read-only tools, then a
separate tool-free structured call produces the decision list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool

from .llm import StructuredOutputModel, ToolCallingModel, get_structured_chat_model, get_tool_calling_chat_model
from .model_selection import RuntimeModelSelection
from .models import (
    ComponentDecision,
    ComponentSpec,
    RiskLevel,
    SafetyChecks,
    StrategyAction,
    StrategyComponent,
    StrategyDecision,
    VisualAnalysis,
)
from .settings import RuntimeSettings
from .state import LEVEL_CATEGORIES, LibraryContext, merge_state
from .steps import Continue, StepOutcome
from .tools import INSPECTION_TOOLS, find_component_usage, scan_library
from .usage import accumulate_usage
from .utils import to_pascal_case

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS = 10
FINALIZE_INSTRUCTION = (
    "Based on the information gathered, provide your final strategy decisions in the structured format."
)

_SYSTEM_PROMPT = """You are a strategic planning assistant for component generation. Decide the best action for
each design component: create_new, update_existing or skip.

Tools:
- list_components: see which components exist in a directory
- read_component_file / read_multiple_files: compare existing implementations with the design
- search_component_usage: find where a component is used (blast radius)

Policy:
- create_new when no existing component matches the design at 70% or better
- update_existing only for additive, non-breaking changes to components with low or medium usage
- skip when an existing component is equivalent
- always call search_component_usage before recommending update_existing

For every decision report target_path, reason, confidence and
safety_checks {usage_count, risk_level, breaking_changes}."""


def route_after_strategy(state: Mapping[str, Any]) -> str:
    """Library-variant edge after planning: errors or nothing to create go straight to the finalizer."""
    if state.get("errors"):
        return "finalizer"
    for entry in state.get("component_strategy") or []:
        if entry.get("action") == StrategyAction.CREATE_NEW.value:
            return "generator"
    return "finalizer"


def _risk_for_usage(usage_count: int) -> RiskLevel:
    if usage_count > 5:
        return RiskLevel.HIGH
    if usage_count > 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass
class ToolLoopResult:
    messages: list[BaseMessage]
    final_response: AIMessage
    rounds: int
    usage: dict[str, Any] = field(default_factory=dict)


def execute_tool_call(tools: Mapping[str, BaseTool], call: Mapping[str, Any]) -> ToolMessage:
    """Run one requested tool call; failures come back to the model as a JSON error payload."""
    name = str(call.get("name", ""))
    call_id = str(call.get("id") or name)
    selected = tools.get(name)
    if selected is None:
        content = json.dumps({"success": False, "error": f"Unknown tool: {name}"})
    else:
        try:
            result = selected.invoke(call.get("args") or {})
            content = result if isinstance(result, str) else json.dumps(result, default=str)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Tool %s failed: %s", name, exc)
            content = json.dumps({"success": False, "error": str(exc)})
    return ToolMessage(content=content, tool_call_id=call_id, name=name)


def run_tool_loop(
    model: ToolCallingModel,
    messages: Sequence[BaseMessage],
    tools: Sequence[BaseTool],
    *,
    max_rounds: int = MAX_TOOL_ROUNDS,
    metadata: Mapping[str, Any] | None = None,
) -> ToolLoopResult:
    """Let ``model`` request tool calls until it stops or ``max_rounds`` rounds have run.

    A round executes every tool call of one model response, appends the
    assistant message and the tool results, then re-invokes the model.

    Returns:
        The conversation so far, the last model response, the number of
        rounds executed and the accumulated usage delta.
    """
    conversation = list(messages)
    by_name = {candidate.name: candidate for candidate in tools}
    usage = dict(metadata or {})
    response = model.invoke(conversation)
    usage = accumulate_usage(usage, model.model_name, getattr(model, "last_usage", None))
    rounds = 0
    while response.tool_calls and rounds < max_rounds:
        logger.info("Strategy round %d: %d tool call(s)", rounds + 1, len(response.tool_calls))
        conversation.append(response)
        for call in response.tool_calls:
            logger.debug("  -> %s(%s)", call.get("name"), json.dumps(call.get("args"), default=str)[:100])
            conversation.append(execute_tool_call(by_name, call))
        response = model.invoke(conversation)
        usage = accumulate_usage(usage, model.model_name, getattr(model, "last_usage", None))
        rounds += 1
    if response.tool_calls:
        logger.warning("Tool loop stopped after %d rounds with pending tool calls", rounds)
    return ToolLoopResult(messages=conversation, final_response=response, rounds=rounds, usage=usage)


class StrategyPlanner:
    """Strategy step for the library workflow."""

    def __init__(
        self,
        *,
        tool_model: ToolCallingModel | None = None,
        decision_model: StructuredOutputModel[StrategyDecision] | None = None,
        tools: Sequence[BaseTool] = tuple(INSPECTION_TOOLS),
        usage_search_root: str = "nextjs-app",
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ) -> None:
        if (tool_model is None) != (decision_model is None):
            raise ValueError("tool_model and decision_model must be provided together")
        self._tool_model = tool_model
        self._decision_model = decision_model
        self._tools = list(tools)
        self.usage_search_root = usage_search_root
        self.max_tool_rounds = max_tool_rounds

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, *, use_llm: bool) -> "StrategyPlanner":
        if not use_llm:
            return cls(usage_search_root=settings.usage_search_root)
        model_name = RuntimeModelSelection.from_settings(settings).resolve("strategy")
        return cls(
            tool_model=get_tool_calling_chat_model(model_name=model_name, tools=INSPECTION_TOOLS, temperature=0.1),
            decision_model=get_structured_chat_model(
                model_name=model_name,
                schema=StrategyDecision,
                temperature=0.1,
            ),
            usage_search_root=settings.usage_search_root,
        )

    def __call__(self, state: Mapping[str, Any]) -> StepOutcome:
        payload = state.get("visual_analysis")
        if not payload or not payload.get("components"):
            raise ValueError("No visual analysis available for strategy planning")
        analysis = VisualAnalysis.model_validate(payload)
        output_path = str(state.get("output_path") or "nextjs-app/ui")

        library = scan_library(output_path)
        logger.info(
            "Library snapshot: %d icons, %d elements, %d components, %d modules",
            len(library["icons"]),
            len(library["elements"]),
            len(library["components"]),
            len(library["modules"]),
        )

        metadata = dict(state.get("metadata") or {})
        if self._tool_model is None:
            decisions = self._deterministic_decisions(analysis, library, output_path)
            tool_rounds = 0
            usage: dict[str, Any] = {}
        else:
            decisions, tool_rounds, usage = self._model_decisions(
                self._tool_model, self._decision_model, analysis, library, output_path, metadata
            )

        for decision in decisions:
            if decision.action == StrategyAction.UPDATE_EXISTING and decision.safety_checks.risk_level == RiskLevel.HIGH:
                logger.warning(
                    "High-risk update planned for %s (%d usages); proceeding as recommended",
                    decision.component.name,
                    decision.safety_checks.usage_count,
                )
        logger.info(
            "Strategy: %d create, %d update, %d skip",
            sum(1 for item in decisions if item.action == StrategyAction.CREATE_NEW),
            sum(1 for item in decisions if item.action == StrategyAction.UPDATE_EXISTING),
            sum(1 for item in decisions if item.action == StrategyAction.SKIP),
        )

        update: dict[str, Any] = {
            "component_strategy": [decision.model_dump(mode="json") for decision in decisions],
            "library_context": library,
            "metadata": {**usage, "strategyToolCalls": tool_rounds},
        }
        return Continue(route_after_strategy(merge_state(dict(state), update)), update)

    def _model_decisions(
        self,
        tool_model: ToolCallingModel,
        decision_model: StructuredOutputModel[StrategyDecision],
        analysis: VisualAnalysis,
        library: LibraryContext,
        output_path: str,
        metadata: Mapping[str, Any],
    ) -> tuple[list[ComponentDecision], int, dict[str, Any]]:
        user_prompt = (
            "Here is the visual analysis of components from the design:\n\n"
            f"{analysis.model_dump_json(indent=2)}\n\n"
            f"Component library context:\n{json.dumps(library, indent=2)}\n\n"
            f"Output path: {output_path}\n"
            f"Usage search root: {self.usage_search_root}\n\n"
            "Analyze each component and decide the best action. Use the tools to list existing components, "
            "compare similar ones and check usage of anything you consider updating."
        )
        loop = run_tool_loop(
            tool_model,
            [SystemMessage(content=_SYSTEM_PROMPT), HumanMessage(content=user_prompt)],
            self._tools,
            max_rounds=self.max_tool_rounds,
            metadata=metadata,
        )
        messages = [
            *loop.messages,
            AIMessage(content=loop.final_response.content or "Tool usage complete"),
            HumanMessage(content=FINALIZE_INSTRUCTION),
        ]
        decision = decision_model.invoke(messages)
        usage = accumulate_usage(loop.usage, decision_model.model_name, decision_model.last_usage)
        return list(decision.strategies), loop.rounds, usage

    def _usage_count(self, name: str) -> int:
        if not Path(self.usage_search_root).is_dir():
            return 0
        usages = find_component_usage(name, self.usage_search_root)
        return sum(1 for entry in usages if any(match["is_usage"] for match in entry["matches"]))

    def _deterministic_decisions(
        self,
        analysis: VisualAnalysis,
        library: LibraryContext,
        output_path: str,
    ) -> list[ComponentDecision]:
        decisions: list[ComponentDecision] = []
        for spec in analysis.components:
            decisions.append(self._decide(spec, library, output_path))
        return decisions

    def _decide(self, spec: ComponentSpec, library: LibraryContext, output_path: str) -> ComponentDecision:
        name = to_pascal_case(spec.name)
        component = StrategyComponent(
            name=name,
            type=spec.atomic_level.value,
            props=[prop.name for prop in spec.props],
            variants=list(spec.style_variants),
        )
        existing_category = next((category for category, names in library.items() if name in names), None)
        if existing_category is not None:
            usage_count = self._usage_count(name)
            return ComponentDecision(
                component=component,
                action=StrategyAction.SKIP,
                target_path=f"{output_path}/{existing_category}/{name}.tsx",
                reason=f"An equivalent {name} already exists in {existing_category}",
                confidence=0.8,
                safety_checks=SafetyChecks(usage_count=usage_count, risk_level=_risk_for_usage(usage_count)),
            )
        category = LEVEL_CATEGORIES[spec.atomic_level.value]
        return ComponentDecision(
            component=component,
            action=StrategyAction.CREATE_NEW,
            target_path=f"{output_path}/{category}/{name}.tsx",
            reason=f"No existing {spec.atomic_level.value} named {name} in the library",
            confidence=0.9,
        )
