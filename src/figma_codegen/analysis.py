"""Analysis and routing steps shared by both workflows."""

from __future__ import annotations

import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping

from langchain_core.messages import HumanMessage, SystemMessage

from .design_source import DesignSource, derive_component_specs, iter_nodes
from .llm import StructuredOutputModel
from .models import (
    ComponentSpec,
    EstimatedComponents,
    GenerationStrategy,
    RoutingDecision,
    ValidationResult,
    VisualAnalysis,
)
from .steps import Continue, StepOutcome
from .tools import scan_library
from .usage import accumulate_usage

logger = logging.getLogger(__name__)

NODE_METADATA_DEPTH = 5
_OUTLINE_LIMIT = 200

GENERATION_STEPS: dict[GenerationStrategy, str] = {
    GenerationStrategy.ATOM_GENERATION: "generation_atoms",
    GenerationStrategy.MOLECULE_GENERATION: "generation_molecules",
    GenerationStrategy.MIXED_GENERATION: "generation_mixed",
}

_VISION_PROMPT = """You are a design-system analyst. Identify every reusable UI component in the design.
For each component give name (PascalCase), atomic_level (atom, molecule or organism), description,
style_variants, size_variants, other_variants, states and props.
variant_visual_map must contain exactly one entry per style variant with the concrete visual properties
(colors as hex, border radius, padding, font size and weight, shadow) and its composition.
Rate your confidence per component between 0 and 1."""


def _node_outline(tree: Mapping[str, Any]) -> list[str]:
    document = tree.get("document") if isinstance(tree.get("document"), dict) else tree
    outline: list[str] = []
    for node in iter_nodes(document):
        if node.get("type") in {"COMPONENT", "COMPONENT_SET", "INSTANCE", "FRAME", "TEXT"}:
            outline.append(f"{node.get('type')}: {node.get('name', '')}")
        if len(outline) >= _OUTLINE_LIMIT:
            break
    return outline


def screen_components(analysis: VisualAnalysis) -> tuple[VisualAnalysis, list[dict[str, Any]]]:
    """Drop specs that break the variant/visual-map invariant, reporting each as a failed validation."""
    kept: list[ComponentSpec] = []
    rejected: list[dict[str, Any]] = []
    for spec in analysis.components:
        issues = spec.validation_issues()
        if not issues:
            kept.append(spec)
            continue
        logger.warning("Dropping invalid component %s: %s", spec.name, "; ".join(issue.message for issue in issues))
        rejected.append(
            ValidationResult(
                component=spec.name,
                validation_type="visual",
                success=False,
                score=0,
                issues=[f"{issue.location}: {issue.message}" for issue in issues],
            ).model_dump(mode="json")
        )
    screened = analysis.model_copy(update={"components": kept, "component_count": len(kept)})
    return screened, rejected


class AnalysisStep:
    """Fetch the design bundle and identify the components in it."""

    def __init__(
        self,
        design_source: DesignSource,
        *,
        vision_model: StructuredOutputModel[VisualAnalysis] | None = None,
        depth: int = NODE_METADATA_DEPTH,
        next_step: str = "routing",
    ) -> None:
        self.design_source = design_source
        self._vision_model = vision_model
        self.depth = depth
        self.next_step = next_step

    def _fetch(self, ref: str) -> tuple[str | None, dict[str, Any]]:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="figma-fetch") as pool:
            screenshot_future = pool.submit(self.design_source.fetch_screenshot, ref)
            metadata_future = pool.submit(self.design_source.fetch_node_metadata, ref, self.depth)
            try:
                screenshot = screenshot_future.result()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Screenshot fetch failed for %s: %s", ref, exc)
                screenshot = None
            tree = metadata_future.result()
        return screenshot, tree

    def __call__(self, state: Mapping[str, Any]) -> StepOutcome:
        ref = str(state["input"])
        screenshot, tree = self._fetch(ref)
        try:
            icons = self.design_source.extract_icons(tree)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Icon extraction failed: %s", exc)
            icons = []
        tokens = self.design_source.extract_design_tokens(tree)
        figma_data = {
            "screenshotUrl": screenshot,
            "fileKey": tree.get("fileKey"),
            "nodeId": tree.get("nodeId"),
            "icons": icons,
            "designTokens": tokens,
        }
        logger.info("Design bundle: screenshot=%s, %d icon(s), %d color token(s)", bool(screenshot), len(icons), len(tokens["colors"]))

        metadata: dict[str, Any] = {}
        if self._vision_model is None:
            analysis = derive_component_specs(tree)
        else:
            analysis = self._analyze_with_model(self._vision_model, screenshot, tree, tokens)
            metadata = accumulate_usage(state.get("metadata"), self._vision_model.model_name, self._vision_model.last_usage)

        analysis, rejected = screen_components(analysis)
        logger.info("Analysis identified %d valid component(s)", analysis.component_count)
        update: dict[str, Any] = {
            "figma_data": figma_data,
            "visual_analysis": analysis.model_dump(mode="json"),
            "library_context": scan_library(str(state.get("output_path") or "nextjs-app/ui")),
        }
        if rejected:
            update["validation_results"] = rejected
        if metadata:
            update["metadata"] = metadata
        return Continue(self.next_step, update)

    def _analyze_with_model(
        self,
        model: StructuredOutputModel[VisualAnalysis],
        screenshot: str | None,
        tree: Mapping[str, Any],
        tokens: Mapping[str, Any],
    ) -> VisualAnalysis:
        content: list[dict[str, Any]] = [
            {
                "type": "text",
                "text": (
                    f"Design tokens:\n{json.dumps(tokens, indent=2)}\n\n"
                    "Node outline:\n" + "\n".join(_node_outline(tree))
                ),
            }
        ]
        if screenshot:
            content.append({"type": "image_url", "image_url": {"url": screenshot}})
        return model.invoke([SystemMessage(content=_VISION_PROMPT), HumanMessage(content=content)])


def _is_complex(spec: ComponentSpec) -> bool:
    return (
        len(spec.style_variants) > 2
        or spec.confidence < 0.8
        or (spec.priority == "high" and len(spec.name) > 8)
    )


def route_components(analysis: VisualAnalysis) -> RoutingDecision:
    """Deterministic routing: few simple components go atom-only, anything complex goes mixed."""
    count = len(analysis.components)
    has_complex = any(_is_complex(spec) for spec in analysis.components)
    if count <= 2 and not has_complex:
        return RoutingDecision(
            strategy=GenerationStrategy.ATOM_GENERATION,
            reasoning=f"{count} simple component(s); atom generation is sufficient",
            complexity_score=4,
            estimated_components=EstimatedComponents(atoms=count, molecules=0),
            priority_order=["atom"],
        )
    if has_complex:
        return RoutingDecision(
            strategy=GenerationStrategy.MIXED_GENERATION,
            reasoning=f"{count} component(s) including complex variants or low-confidence detections",
            complexity_score=7,
            estimated_components=EstimatedComponents(atoms=math.floor(count * 0.7), molecules=math.ceil(count * 0.3)),
            priority_order=["atom", "molecule"],
        )
    return RoutingDecision(
        strategy=GenerationStrategy.ATOM_GENERATION,
        reasoning=f"{count} simple component(s); defaulting to atom generation",
        complexity_score=4,
        estimated_components=EstimatedComponents(atoms=count, molecules=0),
        priority_order=["atom"],
    )


class RoutingStep:
    def __init__(self, *, model: StructuredOutputModel[RoutingDecision] | None = None) -> None:
        self._model = model

    def __call__(self, state: Mapping[str, Any]) -> StepOutcome:
        payload = state.get("visual_analysis")
        if not payload:
            raise ValueError("No visual analysis available for routing")
        analysis = VisualAnalysis.model_validate(payload)

        metadata: dict[str, Any] = {}
        if self._model is None:
            decision = route_components(analysis)
        else:
            prompt = (
                "Choose a generation strategy for these components: ATOM_GENERATION for a few simple primitives, "
                "MOLECULE_GENERATION for composite components only, MIXED_GENERATION when both are needed. "
                "Score complexity 1-10, estimate atom and molecule counts and give a priority order.\n\n"
                f"{analysis.model_dump_json(indent=2)}"
            )
            decision = self._model.invoke(prompt)
            metadata = accumulate_usage(state.get("metadata"), self._model.model_name, self._model.last_usage)

        next_step = GENERATION_STEPS.get(decision.strategy, "generation_mixed")
        logger.info("Routing: %s (complexity %d) -> %s", decision.strategy.value, decision.complexity_score, next_step)
        update: dict[str, Any] = {"routing_decision": decision.model_dump(mode="json")}
        if metadata:
            update["metadata"] = metadata
        return Continue(next_step, update)
