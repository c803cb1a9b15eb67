from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

from langchain_core.messages import HumanMessage, SystemMessage
from langgraph.graph import END, START, StateGraph

from .checks import QUALITY_THRESHOLD, apply_validation_results, run_all_validations, validate_imports
from .llm import StructuredOutputModel, get_structured_chat_model
from .model_selection import RuntimeModelSelection
from .models import CodeReview, ComponentSpec, GeneratedCode, ReusabilityAnalysis, ReviewScores
from .settings import RuntimeSettings
from .state import LibraryContext, RefinementState
from .usage import accumulate_usage
from .utils import scaffold_component

logger = logging.getLogger(__name__)

MAX_REFINEMENT_ITERATIONS = 7
GENERATION_FAILED_PLACEHOLDER = "// Generation failed"


def decide_next_after_code_review(state: Mapping[str, Any]) -> str:
    """Approve on a passing score or when the iteration cap is reached; otherwise loop."""
    review = state.get("code_review_result") or {}
    average = float(review.get("average_score", 0.0))
    if average >= QUALITY_THRESHOLD:
        return "approve_component"
    if int(state.get("iteration_count", 0)) >= MAX_REFINEMENT_ITERATIONS:
        logger.warning(
            "Max refinement iterations (%d) reached at score %.1f; approving best effort",
            MAX_REFINEMENT_ITERATIONS,
            average,
        )
        return "approve_component"
    return "prepare_feedback"


def baseline_review() -> CodeReview:
    scores = ReviewScores(props_design=10, imports_and_library=10, typescript=10, tailwind=10, accessibility=10)
    return CodeReview(scores=scores, average_score=10.0, passed=True, confidence_ready=True)


def failed_review(error: BaseException) -> CodeReview:
    scores = ReviewScores(props_design=0, imports_and_library=0, typescript=0, tailwind=0, accessibility=0)
    return CodeReview(
        scores=scores,
        average_score=0.0,
        passed=False,
        critical_issues=[f"Review failed: {error}"],
        feedback=f"Unable to complete review: {error}",
    )


def _library_summary(library_context: Mapping[str, list[str]]) -> str:
    return "; ".join(
        f"{category}: {', '.join(names) if names else 'none'}" for category, names in library_context.items()
    )


@dataclass
class RefinementResult:
    component_name: str
    code: str
    approved: bool
    iterations: int
    review: CodeReview | None
    failure_reason: str | None
    usage: dict[str, Any]

    @property
    def quality_score(self) -> float:
        return self.review.average_score if self.review is not None else 0.0


class RefinementGraph:
    """Per-component subgraph: generate -> review -> prepare_feedback/approve."""

    def __init__(
        self,
        *,
        generator: StructuredOutputModel[GeneratedCode] | None = None,
        reviewer: StructuredOutputModel[CodeReview] | None = None,
        reusability: StructuredOutputModel[ReusabilityAnalysis] | None = None,
        typecheck_enabled: bool = True,
        typecheck_timeout: int = 10,
    ) -> None:
        self._generator = generator
        self._reviewer = reviewer
        self._reusability = reusability
        self.typecheck_enabled = typecheck_enabled
        self.typecheck_timeout = typecheck_timeout
        self.graph = self._build_graph().compile()

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, *, use_llm: bool) -> "RefinementGraph":
        if not use_llm:
            return cls(typecheck_enabled=True, typecheck_timeout=settings.typecheck_timeout)
        models = RuntimeModelSelection.from_settings(settings)
        return cls(
            generator=get_structured_chat_model(
                model_name=models.resolve("generation"),
                schema=GeneratedCode,
                temperature=0.2,
                max_completion_tokens=8_000,
            ),
            reviewer=get_structured_chat_model(
                model_name=models.resolve("review"),
                schema=CodeReview,
                temperature=0.0,
            ),
            reusability=get_structured_chat_model(
                model_name=models.resolve("reusability"),
                schema=ReusabilityAnalysis,
                temperature=0.1,
                max_completion_tokens=2_000,
            ),
            typecheck_timeout=settings.typecheck_timeout,
        )

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(RefinementState)
        graph.add_node("generate_component", self._generate_node)
        graph.add_node("review_code", self._review_node)
        graph.add_node("prepare_feedback", self._prepare_feedback_node)
        graph.add_node("approve_component", self._approve_node)

        graph.add_edge(START, "generate_component")
        graph.add_edge("generate_component", "review_code")
        graph.add_conditional_edges(
            "review_code",
            decide_next_after_code_review,
            {
                "approve_component": "approve_component",
                "prepare_feedback": "prepare_feedback",
            },
        )
        graph.add_edge("prepare_feedback", "generate_component")
        graph.add_edge("approve_component", END)
        return graph

    # -- generation --

    def _initial_code(self, state: RefinementState, spec: ComponentSpec) -> tuple[str, dict[str, Any]]:
        existing = state.get("current_code") or ""
        if self._generator is None:
            return scaffold_component(spec), {}
        library = state.get("library_context") or {}
        instructions = [
            "You are a senior React + TypeScript engineer building a reusable design-system component with Tailwind CSS.",
            "Implement every style variant, size variant and state listed in the spec. Export the component as a named "
            "and default export with a typed props interface.",
            "Import library primitives only from '@/ui/<category>/<Name>' and only when listed in the library inventory.",
            f"Library inventory: {_library_summary(library)}",
        ]
        if existing:
            instructions.append(
                "An existing implementation is provided. Extend it to cover the spec while preserving its current "
                "props and behaviour; new props must be optional."
            )
        content: list[Any] = [{"type": "text", "text": f"Component spec:\n{spec.model_dump_json(indent=2)}"}]
        if existing:
            content.append({"type": "text", "text": f"Existing implementation:\n```tsx\n{existing}\n```"})
        screenshot_url = state.get("screenshot_url")
        if screenshot_url:
            content.append({"type": "image_url", "image_url": {"url": screenshot_url}})
        result = self._generator.invoke([SystemMessage(content="\n".join(instructions)), HumanMessage(content=content)])
        return result.code, accumulate_usage(state.get("usage"), self._generator.model_name, self._generator.last_usage)

    def _refined_code(self, state: RefinementState, current_code: str, feedback: list[str]) -> tuple[str, dict[str, Any]]:
        library = state.get("library_context") or {}
        if self._generator is None:
            return self._strip_invalid_imports(current_code, library), {}
        fixes = "\n".join(f"{index}. {item}" for index, item in enumerate(feedback, start=1))
        prompt = (
            "Apply ONLY the fixes listed below to the current component code and preserve everything else "
            "exactly as it is. Return the complete corrected code in the 'code' field.\n\n"
            f"FIXES:\n{fixes}\n\n"
            f"Library inventory: {_library_summary(library)}\n\n"
            f"CURRENT CODE:\n```tsx\n{current_code}\n```"
        )
        result = self._generator.invoke(prompt)
        return result.code, accumulate_usage(state.get("usage"), self._generator.model_name, self._generator.last_usage)

    @staticmethod
    def _strip_invalid_imports(code: str, library_context: Mapping[str, list[str]]) -> str:
        check = validate_imports(code, library_context)
        fixed = code
        for entry in check.invalid_imports:
            fixed = re.sub(rf"^\s*{re.escape(entry['import_statement'])};?\s*\n?", "", fixed, flags=re.MULTILINE)
        return fixed

    def _generate_node(self, state: RefinementState) -> dict[str, Any]:
        spec = ComponentSpec.model_validate(state["component_spec"])
        iteration = int(state.get("iteration_count", 0)) + 1
        feedback = list(state.get("refinement_feedback") or [])
        current_code = state.get("current_code") or ""
        is_refinement = iteration > 1 and bool(feedback)
        if is_refinement:
            logger.info("Refining %s (iteration %d, applying %d fixes)", spec.name, iteration, len(feedback))
        else:
            logger.info("Generating %s (iteration %d, initial generation)", spec.name, iteration)
        try:
            if is_refinement:
                code, usage = self._refined_code(state, current_code, feedback)
            else:
                code, usage = self._initial_code(state, spec)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Generation failed for %s: %s", spec.name, exc)
            return {
                "iteration_count": iteration,
                "current_code": current_code or GENERATION_FAILED_PLACEHOLDER,
                "failure_reason": str(exc),
            }
        update: dict[str, Any] = {
            "iteration_count": iteration,
            "current_code": code,
            "refinement_feedback": [],
            "failure_reason": None,
        }
        if usage:
            update["usage"] = usage
        return update

    # -- review --

    def _ai_review(self, state: RefinementState, spec: ComponentSpec, code: str) -> tuple[CodeReview, dict[str, Any]]:
        if self._reviewer is None:
            return baseline_review(), {}
        library = state.get("library_context") or {}
        prompt = (
            "Review this React + TypeScript component against its spec. Score each axis 0-10: props_design, "
            "imports_and_library, typescript, tailwind, accessibility. average_score is the mean of the five; "
            f"passed is average_score >= {QUALITY_THRESHOLD}. List critical and minor issues and write feedback as "
            "concrete, surgical fixes.\n\n"
            f"Library inventory: {_library_summary(library)}\n\n"
            f"SPEC:\n{spec.model_dump_json(indent=2)}\n\n"
            f"CODE:\n```tsx\n{code}\n```"
        )
        review = self._reviewer.invoke(prompt)
        return review, accumulate_usage(state.get("usage"), self._reviewer.model_name, self._reviewer.last_usage)

    def _review_node(self, state: RefinementState) -> dict[str, Any]:
        spec = ComponentSpec.model_validate(state["component_spec"])
        code = state.get("current_code") or ""
        usage: dict[str, Any] = {}
        try:
            review, usage = self._ai_review(state, spec, code)
            overlay = run_all_validations(
                code,
                spec.name,
                state.get("library_context") or {},
                reusability_model=self._reusability,
                typecheck_enabled=self.typecheck_enabled,
                typecheck_timeout=self.typecheck_timeout,
            )
            review = apply_validation_results(review, overlay)
            if self._reusability is not None and self._reusability.last_usage:
                usage = accumulate_usage(usage or state.get("usage"), self._reusability.model_name, self._reusability.last_usage)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Review failed for %s: %s", spec.name, exc)
            review = failed_review(exc)
        logger.info(
            "Review %s iteration %d: %.1f/10 (%s)",
            spec.name,
            int(state.get("iteration_count", 0)),
            review.average_score,
            "passed" if review.passed else "needs work",
        )
        update: dict[str, Any] = {"code_review_result": review.model_dump(mode="json")}
        if usage:
            update["usage"] = usage
        return update

    # -- loop control --

    def _prepare_feedback_node(self, state: RefinementState) -> dict[str, Any]:
        review = CodeReview.model_validate(state["code_review_result"])
        items: list[str] = []
        if review.feedback.strip():
            items.append(review.feedback.strip())
        items.extend(issue for issue in review.critical_issues if issue not in items)
        if not items:
            items.append(
                f"Raise the overall review score from {review.average_score:.1f} to at least {QUALITY_THRESHOLD}."
            )
        return {"refinement_feedback": items}

    def _approve_node(self, _state: RefinementState) -> dict[str, Any]:
        return {"approved": True}

    def run(
        self,
        spec: ComponentSpec,
        *,
        library_context: LibraryContext,
        output_path: str,
        screenshot_url: str | None = None,
        seed_code: str | None = None,
    ) -> RefinementResult:
        result = self.graph.invoke(
            {
                "component_spec": spec.model_dump(mode="json"),
                "library_context": library_context,
                "output_path": output_path,
                "screenshot_url": screenshot_url,
                "current_code": seed_code or "",
                "iteration_count": 0,
                "refinement_feedback": [],
                "code_review_result": None,
                "approved": False,
                "failure_reason": None,
                "usage": {},
            },
            config={"recursion_limit": 3 * MAX_REFINEMENT_ITERATIONS + 5},
        )
        review_payload = result.get("code_review_result")
        return RefinementResult(
            component_name=spec.name,
            code=result.get("current_code") or "",
            approved=bool(result.get("approved")),
            iterations=int(result.get("iteration_count", 0)),
            review=CodeReview.model_validate(review_payload) if review_payload else None,
            failure_reason=result.get("failure_reason"),
            usage=dict(result.get("usage") or {}),
        )
