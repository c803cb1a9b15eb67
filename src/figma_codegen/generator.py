from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence

from .models import (
    AtomicLevel,
    ComponentDecision,
    ComponentSpec,
    GeneratedComponentRecord,
    RoutingDecision,
    StrategyAction,
    VisualAnalysis,
    WorkflowStatus,
)
from .refinement import GENERATION_FAILED_PLACEHOLDER, RefinementResult
from .state import LEVEL_CATEGORIES, LibraryContext, add_error, empty_library_context, utc_now
from .steps import Continue, StepOutcome
from .tools import atomic_write_text, resolve_path, write_component_file
from .usage import add_usage_totals
from .utils import normalize_icon_name, render_icon_component, to_pascal_case

logger = logging.getLogger(__name__)


class ComponentRefiner(Protocol):
    def run(
        self,
        spec: ComponentSpec,
        *,
        library_context: LibraryContext,
        output_path: str,
        screenshot_url: str | None = None,
        seed_code: str | None = None,
    ) -> RefinementResult:
        ...


def component_path(output_path: str, spec: ComponentSpec) -> Path:
    category = LEVEL_CATEGORIES[spec.atomic_level.value]
    return Path(output_path) / category / f"{to_pascal_case(spec.name)}.tsx"


def generate_icons(icons: Iterable[Mapping[str, str]], output_path: str) -> list[GeneratedComponentRecord]:
    """Write one React component per unique icon under ``<output_path>/icons``."""
    records: list[GeneratedComponentRecord] = []
    seen: set[str] = set()
    for icon in icons:
        name = normalize_icon_name(str(icon.get("name", "")))
        if name in seen or name == "Icon":
            continue
        seen.add(name)
        file_path = Path(output_path) / "icons" / f"{name}.tsx"
        try:
            code = render_icon_component(name, str(icon.get("svg", "")))
            atomic_write_text(resolve_path(file_path), code)
        except OSError as exc:
            logger.warning("Failed to write icon %s: %s", name, exc)
            continue
        records.append(
            GeneratedComponentRecord(
                name=name,
                file_path=str(file_path),
                atomic_level=AtomicLevel.ATOM,
                lines_of_code=len(code.splitlines()),
                quality_score=10.0,
                confidence=1.0,
                approved=True,
                timestamp=utc_now(),
            )
        )
    if records:
        logger.info("Generated %d icon component(s)", len(records))
    return records


def update_proposal_paths(target: Path) -> tuple[Path, Path]:
    return target.with_name(f"{target.stem}.update.tsx"), target.with_name(f"{target.stem}.diff.md")


def render_update_notes(name: str, reason: str, target: Path, original: str, updated: str) -> str:
    update_path, _ = update_proposal_paths(target)
    diff = "".join(
        difflib.unified_diff(
            original.splitlines(keepends=True),
            updated.splitlines(keepends=True),
            fromfile=target.name,
            tofile=update_path.name,
        )
    )
    return (
        f"# Component Update: {name}\n\n"
        f"## Reason for Update\n{reason}\n\n"
        "## Update Details\n"
        f"- Original: {target.name}\n"
        f"- Updated: {update_path.name}\n"
        f"- Generated: {utc_now()}\n\n"
        "## Diff\n"
        f"```diff\n{diff or '(no changes)'}\n```\n\n"
        "## Review Checklist\n"
        "- [ ] Existing props work\n"
        "- [ ] No breaking changes\n"
        "- [ ] New features are optional\n"
        f"- [ ] Replace {target.name} and delete the .update.tsx and .diff.md files when satisfied\n"
    )


def _find_spec(analysis: VisualAnalysis, name: str) -> ComponentSpec | None:
    wanted = to_pascal_case(name)
    for spec in analysis.components:
        if spec.name == name or to_pascal_case(spec.name) == wanted:
            return spec
    return None


def _usable_code(result: RefinementResult) -> bool:
    return bool(result.code.strip()) and result.code != GENERATION_FAILED_PLACEHOLDER


def _record(
    spec: ComponentSpec,
    result: RefinementResult,
    file_path: Path,
    action: StrategyAction,
    *,
    include_code: bool = False,
) -> GeneratedComponentRecord:
    return GeneratedComponentRecord(
        name=to_pascal_case(spec.name),
        file_path=str(file_path),
        action=action,
        atomic_level=spec.atomic_level,
        lines_of_code=len(result.code.splitlines()),
        quality_score=result.quality_score,
        iterations=result.iterations,
        confidence=spec.confidence,
        approved=result.approved,
        timestamp=utc_now(),
        code=result.code if include_code else None,
    )


class ComponentGenerator:
    """Generator step of the library workflow: icons, updates and new components."""

    def __init__(self, refiner: ComponentRefiner) -> None:
        self.refiner = refiner

    def __call__(self, state: Mapping[str, Any]) -> StepOutcome:
        output_path = str(state.get("output_path") or "nextjs-app/ui")
        figma_data = state.get("figma_data") or {}
        library: LibraryContext = dict(state.get("library_context") or empty_library_context())  # type: ignore[assignment]

        records = generate_icons(figma_data.get("icons") or [], output_path)
        if records:
            library["icons"] = sorted({*library.get("icons", []), *(record.name for record in records)})

        decisions = [ComponentDecision.model_validate(item) for item in state.get("component_strategy") or []]
        if not decisions and not records:
            raise ValueError("No component strategy available for generation")

        analysis = VisualAnalysis.model_validate(state.get("visual_analysis") or {"summary": "", "component_count": 0, "components": []})
        screenshot_url = figma_data.get("screenshotUrl")
        errors: list[dict[str, Any]] = []
        usage: dict[str, Any] = {}

        for decision in decisions:
            if decision.action == StrategyAction.SKIP:
                continue
            spec = _find_spec(analysis, decision.component.name)
            if spec is None:
                logger.warning("Component spec not found for %s; skipping", decision.component.name)
                continue
            try:
                if decision.action == StrategyAction.UPDATE_EXISTING:
                    record, delta = self._update(spec, decision, library, output_path, screenshot_url)
                else:
                    record, delta = self._create(spec, library, output_path, screenshot_url)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Generation failed for %s: %s", spec.name, exc)
                errors.extend(add_error(f"{spec.name}: {exc}", "generation")["errors"])
                continue
            usage = add_usage_totals(usage, delta)
            if record is not None:
                records.append(record)

        logger.info("Generation complete: %d record(s), %d error(s)", len(records), len(errors))
        update: dict[str, Any] = {
            "generated_components": [record.model_dump(mode="json") for record in records],
            "library_context": library,
        }
        if errors:
            update["errors"] = errors
            update["status"] = WorkflowStatus.ERROR.value
        if usage:
            update["metadata"] = add_usage_totals(state.get("metadata"), usage)
        return Continue("finalizer", update)

    def _create(
        self,
        spec: ComponentSpec,
        library: LibraryContext,
        output_path: str,
        screenshot_url: str | None,
    ) -> tuple[GeneratedComponentRecord | None, dict[str, Any]]:
        logger.info("Creating %s (%s)", spec.name, spec.atomic_level.value)
        result = self.refiner.run(spec, library_context=library, output_path=output_path, screenshot_url=screenshot_url)
        if not result.approved or not _usable_code(result):
            raise RuntimeError(result.failure_reason or f"refinement produced no approved code for {spec.name}")
        file_path = component_path(output_path, spec)
        write_result = write_component_file(str(file_path), result.code, create_backup=True)
        logger.info(
            "Wrote %s (%d lines, score %.1f, %d iteration(s))",
            file_path,
            write_result["lines_written"],
            result.quality_score,
            result.iterations,
        )
        return _record(spec, result, file_path, StrategyAction.CREATE_NEW), result.usage

    def _update(
        self,
        spec: ComponentSpec,
        decision: ComponentDecision,
        library: LibraryContext,
        output_path: str,
        screenshot_url: str | None,
    ) -> tuple[GeneratedComponentRecord | None, dict[str, Any]]:
        candidates = [Path(decision.target_path), component_path(output_path, spec)]
        target = next((path for path in candidates if resolve_path(path).is_file()), None)
        if target is None:
            logger.warning("%s does not exist; skipping update", spec.name)
            return None, {}
        original = resolve_path(target).read_text(encoding="utf-8")
        logger.info("Updating %s from %s", spec.name, target)
        result = self.refiner.run(
            spec,
            library_context=library,
            output_path=output_path,
            screenshot_url=screenshot_url,
            seed_code=original,
        )
        if not _usable_code(result):
            raise RuntimeError(result.failure_reason or f"refinement produced no code for {spec.name}")
        update_path, diff_path = update_proposal_paths(target)
        atomic_write_text(resolve_path(update_path), result.code)
        atomic_write_text(
            resolve_path(diff_path),
            render_update_notes(spec.name, decision.reason, target, original, result.code),
        )
        logger.info("Update for %s saved to %s for review", spec.name, update_path.name)
        return _record(spec, result, update_path, StrategyAction.UPDATE_EXISTING), result.usage


_LEVELS_BY_GROUP: dict[str, tuple[AtomicLevel, ...]] = {
    "atom": (AtomicLevel.ATOM,),
    "molecule": (AtomicLevel.MOLECULE, AtomicLevel.ORGANISM),
}


class LevelGenerationStep:
    """Staged-workflow generation for one group of atomic levels, ordered by priority."""

    def __init__(self, refiner: ComponentRefiner, *, groups: Sequence[str], label: str) -> None:
        self.refiner = refiner
        self.groups = tuple(groups)
        self.label = label

    def _ordered_groups(self, state: Mapping[str, Any]) -> list[str]:
        if len(self.groups) == 1:
            return list(self.groups)
        routing = RoutingDecision.model_validate(state["routing_decision"])
        ordered = [group for group in routing.priority_order if group in self.groups]
        ordered.extend(group for group in self.groups if group not in ordered)
        return ordered

    def __call__(self, state: Mapping[str, Any]) -> StepOutcome:
        if not state.get("visual_analysis"):
            raise ValueError(f"No visual analysis available for {self.label} generation")
        if len(self.groups) > 1 and not state.get("routing_decision"):
            raise ValueError(f"Missing visual analysis or routing decision for {self.label} generation")
        analysis = VisualAnalysis.model_validate(state["visual_analysis"])
        output_path = str(state.get("output_path") or "nextjs-app/ui")
        library: LibraryContext = state.get("library_context") or empty_library_context()
        screenshot_url = (state.get("figma_data") or {}).get("screenshotUrl")

        records: list[GeneratedComponentRecord] = []
        errors: list[dict[str, Any]] = []
        usage: dict[str, Any] = {}
        for group in self._ordered_groups(state):
            levels = _LEVELS_BY_GROUP[group]
            for spec in (item for item in analysis.components if item.atomic_level in levels):
                try:
                    result = self.refiner.run(
                        spec, library_context=library, output_path=output_path, screenshot_url=screenshot_url
                    )
                    if not _usable_code(result):
                        raise RuntimeError(result.failure_reason or f"refinement produced no code for {spec.name}")
                    file_path = component_path(output_path, spec)
                    write_component_file(str(file_path), result.code, create_backup=True)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Generation failed for %s: %s", spec.name, exc)
                    errors.extend(add_error(f"{spec.name}: {exc}", "generation")["errors"])
                    continue
                usage = add_usage_totals(usage, result.usage)
                records.append(_record(spec, result, file_path, StrategyAction.CREATE_NEW, include_code=True))

        logger.info("%s generation: %d component(s), %d error(s)", self.label.capitalize(), len(records), len(errors))
        update: dict[str, Any] = {"generated_components": [record.model_dump(mode="json") for record in records]}
        if errors:
            update["errors"] = errors
            update["status"] = WorkflowStatus.ERROR.value
        if usage:
            update["metadata"] = add_usage_totals(state.get("metadata"), usage)
        return Continue("validation", update)
