from __future__ import annotations

import pytest

from figma_codegen.models import AtomicLevel, ComponentSpec, VariantVisual
from figma_codegen.state import (
    add_error,
    append_or_reset,
    create_initial_state,
    dedupe_by_name,
    determine_ui_category,
    merge_state,
    update_phase,
)


def test_dedupe_by_name_keeps_first_write() -> None:
    merged = dedupe_by_name([{"name": "Button", "v": 1}], [{"name": "Button", "v": 2}, {"name": "Input", "v": 1}])

    assert merged == [{"name": "Button", "v": 1}, {"name": "Input", "v": 1}]


def test_append_or_reset_clears_on_empty_list() -> None:
    assert append_or_reset(["a"], ["b"]) == ["a", "b"]
    assert append_or_reset(["a", "b"], []) == []
    assert append_or_reset(["a"], None) == ["a"]


def test_merge_state_applies_reducers_and_overwrites_scalars() -> None:
    state = create_initial_state("design.json")
    first_error = add_error(RuntimeError("boom"), "analysis")

    merged = merge_state(state, {**first_error, "current_phase": "analysis", "metadata": {"tokensUsed": 10}})
    merged = merge_state(merged, add_error("second", "routing"))

    assert [error["phase"] for error in merged["errors"]] == ["analysis", "routing"]
    assert merged["status"] == "error"
    assert merged["current_phase"] == "analysis"
    assert merged["metadata"]["tokensUsed"] == 10
    assert "startTime" in merged["metadata"]
    assert state["errors"] == []


def test_create_initial_state_rejects_empty_input() -> None:
    with pytest.raises(ValueError, match="non-empty"):
        create_initial_state("   ")


def test_create_initial_state_defaults() -> None:
    state = create_initial_state(" https://www.figma.com/design/abc123/App ", output_path="ui")

    assert state["input"] == "https://www.figma.com/design/abc123/App"
    assert state["output_path"] == "ui"
    assert state["status"] == "pending"
    assert state["current_phase"] == "init"
    assert state["generated_components"] == []
    assert state["metadata"]["tokensUsed"] == 0


def test_add_error_uses_exception_type_when_message_is_empty() -> None:
    update = add_error(KeyError(), "generation")

    assert update["status"] == "error"
    assert update["errors"][0]["phase"] == "generation"
    assert update["errors"][0]["message"] == "KeyError"


def test_update_phase_stamps_phase_time() -> None:
    update = update_phase("routing")

    assert update["current_phase"] == "routing"
    assert "routingTime" in update["metadata"]


def test_determine_ui_category() -> None:
    assert determine_ui_category("Anything", 2) == "elements"
    assert determine_ui_category("Card", 8) == "modules"
    assert determine_ui_category("Button") == "elements"
    assert determine_ui_category("EmailField") == "elements"
    assert determine_ui_category("PageHeader") == "modules"
    assert determine_ui_category("ProductCard") == "components"


def test_component_spec_requires_one_visual_entry_per_style_variant() -> None:
    spec = ComponentSpec(
        name="Button",
        atomic_level=AtomicLevel.ATOM,
        style_variants=["primary", "secondary", "ghost"],
        states=["default"],
        variant_visual_map=[VariantVisual(variant_name="primary"), VariantVisual(variant_name="secondary")],
    )

    issues = spec.validation_issues()

    assert not spec.is_valid()
    assert len(issues) == 1
    assert issues[0].location == "Button.variant_visual_map"
    assert "3" in issues[0].message
