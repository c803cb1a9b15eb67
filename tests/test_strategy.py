from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import AlwaysCallsToolsModel, StubStructuredModel, make_spec
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from figma_codegen.models import (
    AtomicLevel,
    ComponentDecision,
    StrategyAction,
    StrategyComponent,
    StrategyDecision,
    VisualAnalysis,
)
from figma_codegen.steps import Continue
from figma_codegen.strategy import (
    FINALIZE_INSTRUCTION,
    MAX_TOOL_ROUNDS,
    StrategyPlanner,
    execute_tool_call,
    route_after_strategy,
    run_tool_loop,
)
from figma_codegen.tools import INSPECTION_TOOLS


def _analysis_state(*names: str) -> dict:
    specs = [make_spec(name) for name in names]
    analysis = VisualAnalysis(summary="test", component_count=len(specs), components=specs)
    return {"visual_analysis": analysis.model_dump(mode="json"), "output_path": "nextjs-app/ui", "metadata": {}}


def test_route_after_strategy() -> None:
    create = {"action": "create_new"}
    update = {"action": "update_existing"}
    skip = {"action": "skip"}

    assert route_after_strategy({"component_strategy": [skip, create]}) == "generator"
    assert route_after_strategy({"component_strategy": [skip, update]}) == "finalizer"
    assert route_after_strategy({"component_strategy": []}) == "finalizer"
    assert route_after_strategy({"component_strategy": [create], "errors": [{"message": "x"}]}) == "finalizer"


def test_tool_loop_stops_after_max_rounds(workspace: Path) -> None:
    model = AlwaysCallsToolsModel()

    result = run_tool_loop(model, [SystemMessage(content="s"), HumanMessage(content="h")], INSPECTION_TOOLS)

    assert result.rounds == MAX_TOOL_ROUNDS
    assert model.calls == MAX_TOOL_ROUNDS + 1
    assert result.final_response.tool_calls
    assert len(result.messages) == 2 + 2 * MAX_TOOL_ROUNDS
    assert result.usage["tokensUsed"] == 110 * (MAX_TOOL_ROUNDS + 1)


def test_tool_errors_are_returned_to_the_model() -> None:
    tools = {tool.name: tool for tool in INSPECTION_TOOLS}

    missing = execute_tool_call(tools, {"name": "read_component_file", "args": {"file_path": "nope.tsx"}, "id": "c1"})
    unknown = execute_tool_call(tools, {"name": "delete_everything", "args": {}, "id": "c2"})

    assert json.loads(missing.content)["success"] is False
    assert missing.tool_call_id == "c1"
    assert json.loads(unknown.content) == {"success": False, "error": "Unknown tool: delete_everything"}


def test_planner_finalizes_without_tools_after_cap(workspace: Path) -> None:
    tool_model = AlwaysCallsToolsModel()
    decision = StrategyDecision(
        strategies=[
            ComponentDecision(
                component=StrategyComponent(name="Button", type="atom"),
                action=StrategyAction.CREATE_NEW,
                target_path="nextjs-app/ui/elements/Button.tsx",
                reason="new",
                confidence=0.9,
            )
        ]
    )
    decision_model = StubStructuredModel(decision)
    planner = StrategyPlanner(tool_model=tool_model, decision_model=decision_model)

    outcome = planner(_analysis_state("Button"))

    assert isinstance(outcome, Continue)
    assert outcome.next_step == "generator"
    assert outcome.update["metadata"]["strategyToolCalls"] == MAX_TOOL_ROUNDS
    assert tool_model.calls == MAX_TOOL_ROUNDS + 1
    assert len(decision_model.calls) == 1
    finalize_messages = decision_model.calls[0]
    assert isinstance(finalize_messages[-2], AIMessage)
    assert finalize_messages[-2].content == "Tool usage complete"
    assert isinstance(finalize_messages[-1], HumanMessage)
    assert finalize_messages[-1].content == FINALIZE_INSTRUCTION
    assert outcome.update["component_strategy"][0]["action"] == "create_new"


def test_deterministic_planner_skips_existing_components(workspace: Path) -> None:
    elements = workspace / "nextjs-app" / "ui" / "elements"
    elements.mkdir(parents=True)
    (elements / "Button.tsx").write_text("export const Button = () => <button />;\n", encoding="utf-8")
    pages = workspace / "nextjs-app" / "app"
    pages.mkdir(parents=True)
    (pages / "page.tsx").write_text(
        "import { Button } from '@/ui/elements/Button';\nexport default () => <Button>Go</Button>;\n",
        encoding="utf-8",
    )

    outcome = StrategyPlanner()(_analysis_state("Button", "Text Input"))

    assert isinstance(outcome, Continue)
    assert outcome.next_step == "generator"
    by_name = {entry["component"]["name"]: entry for entry in outcome.update["component_strategy"]}
    assert by_name["Button"]["action"] == "skip"
    assert by_name["Button"]["safety_checks"]["usage_count"] == 1
    assert by_name["TextInput"]["action"] == "create_new"
    assert by_name["TextInput"]["target_path"] == "nextjs-app/ui/elements/TextInput.tsx"
    assert outcome.update["library_context"]["elements"] == ["Button"]
    assert outcome.update["metadata"]["strategyToolCalls"] == 0


def test_deterministic_planner_routes_to_finalizer_when_everything_exists(workspace: Path) -> None:
    components = workspace / "nextjs-app" / "ui" / "components"
    components.mkdir(parents=True)
    (components / "SearchBar.tsx").write_text("export const SearchBar = () => null;\n", encoding="utf-8")
    state = _analysis_state()
    state["visual_analysis"]["components"] = [make_spec("SearchBar", AtomicLevel.MOLECULE).model_dump(mode="json")]
    state["visual_analysis"]["component_count"] = 1

    outcome = StrategyPlanner()(state)

    assert outcome.next_step == "finalizer"


def test_planner_requires_analysis() -> None:
    with pytest.raises(ValueError, match="No visual analysis available for strategy planning"):
        StrategyPlanner()({"visual_analysis": None})


def test_planner_requires_both_models() -> None:
    with pytest.raises(ValueError, match="provided together"):
        StrategyPlanner(tool_model=AlwaysCallsToolsModel())
