"""Deterministic and AI-assisted checks layered over the code review.

The review rubric is holistic; these checks can only lower its per-axis
scores. ``run_all_validations`` collects issues plus per-axis caps and
``apply_validation_results`` folds them into a ``CodeReview``.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .llm import StructuredOutputModel
from .models import CodeReview, ReusabilityAnalysis, ReusabilityIssue

logger = logging.getLogger(__name__)

QUALITY_THRESHOLD = 8.0
IMPORT_SCORE_CAP = 3.0
TYPESCRIPT_SCORE_CAP = 3.0
REUSABILITY_SCORE_CAP = 6.0
REUSABILITY_MIN_SCORE = 0.7

_LIBRARY_IMPORT = re.compile(
    r"""import\s+\{([^}]+)\}\s+from\s+['"]@/ui/(icons|elements|components|modules)/([^'"]+)['"]"""
)
_SUGGESTION_LIMIT = 5

# Raw HTML tag -> library primitive that replaces it.
_PRIMITIVE_TAGS: dict[str, str] = {
    "button": "Button",
    "input": "Input",
    "img": "Image",
    "select": "Select",
    "textarea": "Textarea",
    "label": "Label",
    "a": "Link",
}


@dataclass
class ImportCheck:
    valid: bool
    issues: list[str] = field(default_factory=list)
    invalid_imports: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class TypecheckResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def total_errors(self) -> int:
        return len(self.errors)


@dataclass
class ReusabilityCheck:
    is_reusable: bool
    score: float
    issues: list[ReusabilityIssue] = field(default_factory=list)
    summary: str = ""


@dataclass
class ValidationOverlay:
    """Issues and per-axis score caps produced by ``run_all_validations``."""

    critical_issues: list[str] = field(default_factory=list)
    score_caps: dict[str, float] = field(default_factory=dict)
    imports: ImportCheck | None = None
    typecheck: TypecheckResult | None = None
    reusability: ReusabilityCheck | None = None

    @property
    def all_passed(self) -> bool:
        return not self.critical_issues and not self.score_caps

    def cap(self, axis: str, limit: float) -> None:
        self.score_caps[axis] = min(self.score_caps.get(axis, 10.0), limit)


def validate_imports(code: str, library_context: Mapping[str, list[str]]) -> ImportCheck:
    """Check every ``@/ui/<category>/<Name>`` import against the library inventory."""
    invalid: list[dict[str, Any]] = []
    for match in _LIBRARY_IMPORT.finditer(code):
        imported_names = [name.strip() for name in match.group(1).split(",") if name.strip()]
        category = match.group(2)
        file_name = match.group(3)
        available = list(library_context.get(category, []))
        if file_name in available:
            continue
        invalid.append(
            {
                "import_statement": match.group(0),
                "imported_names": imported_names,
                "file_name": file_name,
                "path": f"@/ui/{category}/{file_name}",
                "category": category,
                "suggestions": available[:_SUGGESTION_LIMIT],
            }
        )
    issues = [
        f"Component '{entry['file_name']}' imported from '{entry['path']}' not found in library. "
        f"Available {entry['category']}: {', '.join(entry['suggestions']) if entry['suggestions'] else 'none'}"
        for entry in invalid
    ]
    return ImportCheck(valid=not invalid, issues=issues, invalid_imports=invalid)


def typecheck(code: str, component_name: str, *, timeout: int = 10) -> TypecheckResult:
    """Run ``tsc --noEmit`` over ``code`` in a scratch directory.

    The check is skipped (and reported valid) when ``npx`` is not installed or
    the compiler does not finish within ``timeout`` seconds.
    """
    npx = shutil.which("npx")
    if npx is None:
        logger.debug("npx not found; skipping typecheck for %s", component_name)
        return TypecheckResult(valid=True, skipped=True)

    with tempfile.TemporaryDirectory(prefix="figma-codegen-tsc-") as scratch:
        source = Path(scratch) / f"{component_name or 'Component'}.tsx"
        source.write_text(code, encoding="utf-8")
        command = [
            npx,
            "--no-install",
            "tsc",
            "--noEmit",
            "--jsx",
            "react-jsx",
            "--esModuleInterop",
            "--skipLibCheck",
            "--strict",
            "false",
            str(source),
        ]
        try:
            completed = subprocess.run(command, capture_output=True, text=True, timeout=timeout, check=False)
        except subprocess.TimeoutExpired:
            logger.warning("Typecheck for %s timed out after %ss; skipping", component_name, timeout)
            return TypecheckResult(valid=True, skipped=True)
        except OSError as exc:
            logger.warning("Typecheck for %s could not start: %s", component_name, exc)
            return TypecheckResult(valid=True, skipped=True)

    output = f"{completed.stdout}\n{completed.stderr}"
    errors = [line.replace(f"{scratch}/", "").strip() for line in output.splitlines() if "error TS" in line]
    if completed.returncode != 0 and not errors:
        # Non-zero without compiler diagnostics means tsc itself is unavailable.
        logger.debug("tsc unavailable for %s: %s", component_name, output.strip()[:200])
        return TypecheckResult(valid=True, skipped=True)
    return TypecheckResult(valid=not errors, errors=errors)


def scan_inline_primitives(code: str, library_context: Mapping[str, list[str]]) -> ReusabilityCheck:
    """Deterministic reuse scan: raw HTML tags that duplicate an available primitive."""
    available = {
        name
        for category in ("elements", "components", "icons")
        for name in library_context.get(category, [])
    }
    issues: list[ReusabilityIssue] = []
    for tag, primitive in _PRIMITIVE_TAGS.items():
        if primitive not in available:
            continue
        occurrences = len(re.findall(rf"<{tag}[\s/>]", code))
        if not occurrences:
            continue
        category = next(
            category for category in ("elements", "components", "icons") if primitive in library_context.get(category, [])
        )
        issues.append(
            ReusabilityIssue(
                severity="high" if occurrences > 1 else "medium",
                html_element=tag,
                library_component=primitive,
                suggestion=f"Replace {occurrences} inline <{tag}> element(s) with the library {primitive} component",
                import_path=f"@/ui/{category}/{primitive}",
            )
        )
    score = max(0.0, 1.0 - 0.2 * sum(1 if issue.severity == "medium" else 2 for issue in issues))
    return ReusabilityCheck(
        is_reusable=not issues,
        score=round(score, 2),
        issues=issues,
        summary="No inline primitives found" if not issues else f"{len(issues)} inline primitive type(s) found",
    )


def check_reusability(
    code: str,
    library_context: Mapping[str, list[str]],
    model: StructuredOutputModel[ReusabilityAnalysis] | None = None,
) -> ReusabilityCheck:
    """Score how well ``code`` reuses library primitives.

    With a model the judgement is AI-assisted; any model failure counts as fully
    reusable so the check never blocks a review. Without a model the
    deterministic tag scan is used.
    """
    if model is None:
        return scan_inline_primitives(code, library_context)

    available = [
        *library_context.get("elements", []),
        *library_context.get("components", []),
        *library_context.get("icons", []),
    ]
    prompt = (
        "Analyze this React component for reusability issues. Identify inline HTML elements "
        "(<button>, <input>, <img>, ...) used where an equivalent library component is available. "
        "Score 1.0 for full reuse down to 0.0 for extensive inline HTML. For each issue give the HTML "
        "element, the best matching library component, its import path (@/ui/elements/Name) and a severity.\n\n"
        f"COMPONENT CODE:\n```tsx\n{code}\n```\n\n"
        f"AVAILABLE LIBRARY COMPONENTS: {', '.join(available) if available else 'None available'}"
    )
    try:
        analysis = model.invoke(prompt)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Reusability validation failed: %s", exc)
        return ReusabilityCheck(is_reusable=True, score=1.0, summary="Reusability check skipped due to error")
    return ReusabilityCheck(
        is_reusable=analysis.is_reusable,
        score=analysis.reusability_score,
        issues=list(analysis.issues),
        summary=analysis.summary,
    )


def run_all_validations(
    code: str,
    component_name: str,
    library_context: Mapping[str, list[str]],
    *,
    reusability_model: StructuredOutputModel[ReusabilityAnalysis] | None = None,
    typecheck_enabled: bool = True,
    typecheck_timeout: int = 10,
) -> ValidationOverlay:
    overlay = ValidationOverlay()

    imports = validate_imports(code, library_context)
    overlay.imports = imports
    if not imports.valid:
        logger.info("Import validation: %d invalid import(s)", len(imports.invalid_imports))
        overlay.critical_issues.extend(f"[Import] {issue}" for issue in imports.issues)
        overlay.cap("imports_and_library", IMPORT_SCORE_CAP)

    if typecheck_enabled:
        ts_result = typecheck(code, component_name, timeout=typecheck_timeout)
        overlay.typecheck = ts_result
        if not ts_result.valid:
            logger.info("TypeScript validation: %d error(s)", ts_result.total_errors)
            overlay.critical_issues.extend(f"[TypeScript] {error}" for error in ts_result.errors)
            overlay.cap("typescript", TYPESCRIPT_SCORE_CAP)

    reusability = check_reusability(code, library_context, reusability_model)
    overlay.reusability = reusability
    logger.info("Reusability: %.0f%% (%d issue(s))", reusability.score * 100, len(reusability.issues))
    if not reusability.is_reusable and reusability.issues:
        overlay.critical_issues.extend(f"[Reusability] {issue.suggestion}" for issue in reusability.issues)
        if reusability.score < REUSABILITY_MIN_SCORE:
            overlay.cap("imports_and_library", REUSABILITY_SCORE_CAP)
    return overlay


def apply_validation_results(review: CodeReview, overlay: ValidationOverlay) -> CodeReview:
    """Merge overlay issues into ``review``, clamp capped axes, recompute average and pass flag.

    Clamping uses ``min`` so neither an axis nor the average is ever raised, and
    applying the same overlay twice yields the same review.
    """
    scores = review.scores.model_dump()
    for axis, cap in overlay.score_caps.items():
        if axis in scores:
            scores[axis] = min(scores[axis], cap)
    new_scores = review.scores.model_validate(scores)
    average = min(review.average_score, new_scores.mean())
    merged_issues = list(review.critical_issues)
    merged_issues.extend(issue for issue in overlay.critical_issues if issue not in merged_issues)
    return review.model_copy(
        update={
            "scores": new_scores,
            "average_score": average,
            "passed": average >= QUALITY_THRESHOLD,
            "critical_issues": merged_issues,
        }
    )
