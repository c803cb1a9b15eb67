from __future__ import annotations

from conftest import StubStructuredModel, make_spec

from figma_codegen.checks import ValidationOverlay, apply_validation_results, run_all_validations, validate_imports
from figma_codegen.models import CodeReview, GeneratedCode, ReusabilityAnalysis, ReviewScores
from figma_codegen.refinement import (
    MAX_REFINEMENT_ITERATIONS,
    RefinementGraph,
    baseline_review,
    decide_next_after_code_review,
)

BUTTON_CODE = """import React from 'react';

export const Button = ({ children }: { children?: React.ReactNode }) => <button>{children}</button>;
export default Button;
"""


def _review(score: float, feedback: str = "") -> CodeReview:
    scores = ReviewScores(
        props_design=score, imports_and_library=score, typescript=score, tailwind=score, accessibility=score
    )
    return CodeReview(scores=scores, average_score=score, passed=score >= 8.0, feedback=feedback)


def test_decide_next_approves_passing_score() -> None:
    state = {"code_review_result": _review(8.0).model_dump(), "iteration_count": 1}

    assert decide_next_after_code_review(state) == "approve_component"


def test_decide_next_loops_below_threshold_until_cap() -> None:
    review = _review(5.0).model_dump()

    assert decide_next_after_code_review({"code_review_result": review, "iteration_count": 6}) == "prepare_feedback"
    assert (
        decide_next_after_code_review({"code_review_result": review, "iteration_count": MAX_REFINEMENT_ITERATIONS})
        == "approve_component"
    )


def test_unresolved_import_clamps_imports_axis_and_recomputes_average() -> None:
    code = "import { Missing } from '@/ui/elements/Missing';\nexport const Card = () => <Missing />;\n"
    overlay = run_all_validations(code, "Card", {"elements": ["Button"]}, typecheck_enabled=False)

    review = apply_validation_results(_review(9.0), overlay)

    assert review.scores.imports_and_library == 3.0
    assert review.average_score == (9.0 * 4 + 3.0) / 5
    assert review.passed is False
    assert any(issue.startswith("[Import] Component 'Missing'") for issue in review.critical_issues)
    assert apply_validation_results(review, overlay) == review


def test_inline_primitives_clamp_imports_axis_to_six() -> None:
    code = "export const Toolbar = () => (<div><button>A</button><button>B</button></div>);\n"
    overlay = run_all_validations(code, "Toolbar", {"elements": ["Button"]}, typecheck_enabled=False)

    review = apply_validation_results(_review(9.0), overlay)

    assert overlay.reusability is not None and overlay.reusability.score < 0.7
    assert review.scores.imports_and_library == 6.0
    assert any(issue.startswith("[Reusability]") for issue in review.critical_issues)


def test_clamp_never_raises_a_score() -> None:
    overlay = run_all_validations(
        "import { Missing } from '@/ui/icons/Missing';\n", "Thing", {}, typecheck_enabled=False
    )

    review = apply_validation_results(_review(2.0), overlay)

    assert review.scores.imports_and_library == 2.0


def test_clean_overlay_never_raises_the_reviewer_average() -> None:
    scores = ReviewScores(props_design=9, imports_and_library=9, typescript=9, tailwind=9, accessibility=6)
    rejected = CodeReview(scores=scores, average_score=7.0, passed=False)

    review = apply_validation_results(rejected, ValidationOverlay())

    assert review.average_score == 7.0
    assert review.passed is False


def test_import_issue_lists_available_names() -> None:
    check = validate_imports(
        "import { Chip } from '@/ui/elements/Chip';",
        {"elements": ["A", "B", "C", "D", "E", "F"]},
    )

    assert not check.valid
    assert check.issues == [
        "Component 'Chip' imported from '@/ui/elements/Chip' not found in library. Available elements: A, B, C, D, E"
    ]


def test_deterministic_refinement_approves_scaffold() -> None:
    graph = RefinementGraph(typecheck_enabled=False)

    result = graph.run(make_spec("Button", variants=("primary", "secondary")), library_context={}, output_path="ui")

    assert result.approved
    assert result.iterations == 1
    assert result.quality_score == baseline_review().average_score
    assert "export const Button" in result.code
    assert "'primary' | 'secondary'" in result.code


def test_low_scores_stop_at_iteration_cap() -> None:
    generator = StubStructuredModel(GeneratedCode(code=BUTTON_CODE))
    reviewer = StubStructuredModel(_review(5.0, feedback="Add aria attributes"))
    graph = RefinementGraph(generator=generator, reviewer=reviewer, typecheck_enabled=False)

    result = graph.run(make_spec("Button"), library_context={}, output_path="ui")

    assert result.approved
    assert result.iterations == MAX_REFINEMENT_ITERATIONS
    assert result.quality_score == 5.0
    assert len(generator.calls) == MAX_REFINEMENT_ITERATIONS
    assert len(reviewer.calls) == MAX_REFINEMENT_ITERATIONS
    assert isinstance(generator.calls[0], list)
    assert "Apply ONLY the fixes" in generator.calls[1]
    assert "Add aria attributes" in generator.calls[1]


def test_refinement_tracks_usage() -> None:
    generator = StubStructuredModel(GeneratedCode(code=BUTTON_CODE), usage={"input_tokens": 1000, "output_tokens": 500})
    reviewer = StubStructuredModel(_review(9.0), usage={"input_tokens": 200, "output_tokens": 100})
    graph = RefinementGraph(generator=generator, reviewer=reviewer, typecheck_enabled=False)

    result = graph.run(make_spec("Button"), library_context={}, output_path="ui")

    assert result.iterations == 1
    assert result.usage["tokensUsed"] == 1800
    assert result.usage["costEstimate"] > 0


def test_failed_reusability_check_adds_no_usage() -> None:
    generator = StubStructuredModel(GeneratedCode(code=BUTTON_CODE))
    reviewer = StubStructuredModel(_review(5.0), _review(9.0))
    reusability = StubStructuredModel(
        ReusabilityAnalysis(is_reusable=True, reusability_score=1.0),
        RuntimeError("reusability timeout"),
        usage={"input_tokens": 100, "output_tokens": 0},
    )
    graph = RefinementGraph(generator=generator, reviewer=reviewer, reusability=reusability, typecheck_enabled=False)

    result = graph.run(make_spec("Button"), library_context={}, output_path="ui")

    assert result.iterations == 2
    assert len(reusability.calls) == 2
    assert result.usage["tokensUsed"] == 100


def test_generation_failure_keeps_previous_code() -> None:
    generator = StubStructuredModel(GeneratedCode(code=BUTTON_CODE), RuntimeError("rate limited"))
    reviewer = StubStructuredModel(_review(4.0))
    graph = RefinementGraph(generator=generator, reviewer=reviewer, typecheck_enabled=False)

    result = graph.run(make_spec("Button"), library_context={}, output_path="ui")

    assert result.code == BUTTON_CODE
    assert result.failure_reason == "rate limited"
    assert result.iterations == MAX_REFINEMENT_ITERATIONS


def test_review_failure_scores_zero_and_loops() -> None:
    generator = StubStructuredModel(GeneratedCode(code=BUTTON_CODE))
    reviewer = StubStructuredModel(RuntimeError("review timeout"), _review(9.0))
    graph = RefinementGraph(generator=generator, reviewer=reviewer, typecheck_enabled=False)

    result = graph.run(make_spec("Button"), library_context={}, output_path="ui")

    assert result.iterations == 2
    assert result.quality_score == 9.0
    assert "Review failed: review timeout" in generator.calls[1]
