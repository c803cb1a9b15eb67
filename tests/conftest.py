from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from langchain_core.messages import AIMessage

from figma_codegen.models import AtomicLevel, ComponentSpec, VariantVisual, VisualProperties


def _solid(r: float, g: float, b: float) -> list[dict[str, Any]]:
    return [{"type": "SOLID", "color": {"r": r, "g": g, "b": b, "a": 1}}]


DESIGN_EXPORT: dict[str, Any] = {
    "screenshotUrl": "https://example.test/design.png",
    "document": {
        "id": "0:1",
        "name": "Page",
        "type": "CANVAS",
        "children": [
            {
                "id": "1:1",
                "name": "Button",
                "type": "COMPONENT_SET",
                "children": [
                    {
                        "id": "1:2",
                        "name": "Style=Primary, Size=Large",
                        "type": "COMPONENT",
                        "fills": _solid(0.0, 0.4, 1.0),
                        "cornerRadius": 8,
                        "paddingLeft": 16,
                        "children": [
                            {
                                "id": "1:3",
                                "name": "Label",
                                "type": "TEXT",
                                "fills": _solid(1.0, 1.0, 1.0),
                                "style": {"fontFamily": "Inter", "fontSize": 14, "fontWeight": 600},
                            }
                        ],
                    },
                    {
                        "id": "1:4",
                        "name": "Style=Secondary, Size=Small",
                        "type": "COMPONENT",
                        "fills": _solid(1.0, 1.0, 1.0),
                        "strokes": _solid(0.0, 0.4, 1.0),
                        "strokeWeight": 1,
                        "cornerRadius": 8,
                        "paddingLeft": 12,
                        "children": [],
                    },
                ],
            },
            {
                "id": "2:1",
                "name": "Text Input",
                "type": "COMPONENT",
                "fills": _solid(1.0, 1.0, 1.0),
                "strokes": _solid(0.8, 0.8, 0.8),
                "strokeWeight": 1,
                "children": [],
            },
            {
                "id": "3:1",
                "name": "Search Icon",
                "type": "VECTOR",
                "absoluteBoundingBox": {"x": 0, "y": 0, "width": 24, "height": 24},
                "svg": '<svg viewBox="0 0 24 24"><path d="M10 2a8 8 0 1 0 0 16" fill="#111111" stroke-width="2"/></svg>',
            },
        ],
    },
}


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run inside an empty temp dir with the TypeScript compiler unavailable."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("figma_codegen.checks.shutil.which", lambda _name: None)
    return tmp_path


@pytest.fixture
def design_export(workspace: Path) -> Path:
    path = workspace / "design.json"
    path.write_text(json.dumps(DESIGN_EXPORT), encoding="utf-8")
    return path


def make_spec(
    name: str,
    level: AtomicLevel = AtomicLevel.ATOM,
    *,
    variants: tuple[str, ...] = ("default",),
    confidence: float = 0.9,
    priority: str = "medium",
) -> ComponentSpec:
    return ComponentSpec(
        name=name,
        atomic_level=level,
        style_variants=list(variants),
        states=["default"],
        variant_visual_map=[
            VariantVisual(variant_name=variant, visual_properties=VisualProperties(background_color="#FFFFFF"))
            for variant in variants
        ],
        confidence=confidence,
        priority=priority,
    )


class StubStructuredModel:
    """Structured-output capability returning queued responses (the last one repeats)."""

    def __init__(self, *responses: Any, model_name: str = "gpt-4o-mini", usage: dict[str, int] | None = None) -> None:
        self.responses = list(responses)
        self.model_name = model_name
        self.last_usage: dict[str, int] = {}
        self._usage = usage or {}
        self.calls: list[Any] = []

    def invoke(self, prompt: Any) -> Any:
        self.calls.append(prompt)
        self.last_usage = {}
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        self.last_usage = dict(self._usage)
        return response


class AlwaysCallsToolsModel:
    """Tool-calling capability that requests ``list_components`` on every turn."""

    model_name = "gpt-4o"

    def __init__(self) -> None:
        self.last_usage: dict[str, int] = {"input_tokens": 100, "output_tokens": 10}
        self.calls = 0

    def invoke(self, messages: Any) -> AIMessage:
        self.calls += 1
        return AIMessage(
            content="",
            tool_calls=[{"name": "list_components", "args": {"directory": "."}, "id": f"call_{self.calls}"}],
        )
