"""Run reports, component inventory and Storybook stories written by the finalizer."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping

from .tools import LIBRARY_CATEGORIES, atomic_write_text, resolve_path

logger = logging.getLogger(__name__)

_PASCAL_CASE = re.compile(r"^[A-Z][A-Za-z0-9]*$")
_VARIANT_UNION = re.compile(r"\bvariant\??\s*:\s*([^;\n]+)")
_QUOTED = re.compile(r"'([^']+)'|\"([^\"]+)\"")


@dataclass(frozen=True)
class ReportPaths:
    markdown: Path
    json: Path


@dataclass
class StoriesResult:
    generated: list[dict[str, str]] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)


def _timestamp() -> str:
    return datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")


def compute_stats(state: Mapping[str, Any]) -> dict[str, int]:
    strategy = state.get("component_strategy") or []
    analysis = state.get("visual_analysis") or {}
    return {
        "totalAnalyzed": len(analysis.get("components") or []),
        "totalPlanned": len(strategy),
        "created": sum(1 for item in strategy if item.get("action") == "create_new"),
        "updated": sum(1 for item in strategy if item.get("action") == "update_existing"),
        "skipped": sum(1 for item in strategy if item.get("action") == "skip"),
        "successfullyGenerated": len(state.get("generated_components") or []),
        "errors": len(state.get("errors") or []),
    }


def render_summary(state: Mapping[str, Any]) -> str:
    stats = compute_stats(state)
    lines = [
        "WORKFLOW SUMMARY",
        f"  Components identified: {stats['totalAnalyzed']}",
        f"  Create new: {stats['created']}  Update existing: {stats['updated']}  Skip: {stats['skipped']}",
        f"  Generated: {stats['successfullyGenerated']}",
    ]
    for record in state.get("generated_components") or []:
        score = record.get("quality_score")
        suffix = f" (score {score:.1f}, {record.get('iterations', 0)} iteration(s))" if score else ""
        lines.append(f"    - {record.get('name')}: {record.get('file_path')}{suffix}")
    lines.append(f"  Errors: {stats['errors']}")
    for error in state.get("errors") or []:
        lines.append(f"    - [{error.get('phase')}] {error.get('message')}")
    return "\n".join(lines)


def _markdown(state: Mapping[str, Any]) -> str:
    stats = compute_stats(state)
    metadata = state.get("metadata") or {}
    lines = [
        "# Design-to-Code Workflow Report",
        "",
        f"- Input: `{state.get('input', '')}`",
        f"- Output path: `{state.get('output_path', '')}`",
        f"- Status: **{state.get('status', 'unknown')}**",
        f"- Started: {metadata.get('startTime', 'n/a')}",
        f"- Finished: {metadata.get('endTime', 'n/a')}",
        f"- Tokens used: {metadata.get('tokensUsed', 0)}",
        f"- Estimated cost: ${float(metadata.get('costEstimate', 0.0)):.4f}",
        "",
        "## Summary",
        "",
        "| Metric | Count |",
        "|---|---|",
    ]
    lines.extend(f"| {key} | {value} |" for key, value in stats.items())

    strategy = state.get("component_strategy") or []
    if strategy:
        lines += ["", "## Strategy", "", "| Component | Action | Target | Usage | Risk | Reason |", "|---|---|---|---|---|---|"]
        for item in strategy:
            safety = item.get("safety_checks") or {}
            lines.append(
                f"| {item['component']['name']} | {item['action']} | `{item.get('target_path', '')}` | "
                f"{safety.get('usage_count', 0)} | {safety.get('risk_level', 'low')} | {item.get('reason', '')} |"
            )
        risky = [
            item["component"]["name"]
            for item in strategy
            if item.get("action") == "update_existing" and (item.get("safety_checks") or {}).get("risk_level") == "high"
        ]
        if risky:
            lines += ["", f"> High-risk updates: {', '.join(risky)}. Review the `.update.tsx` proposals carefully."]

    generated = state.get("generated_components") or []
    if generated:
        lines += [
            "",
            "## Generated Components",
            "",
            "| Name | Level | File | Lines | Score | Iterations |",
            "|---|---|---|---|---|---|",
        ]
        for record in generated:
            lines.append(
                f"| {record.get('name')} | {record.get('atomic_level')} | `{record.get('file_path')}` | "
                f"{record.get('lines_of_code', 0)} | {float(record.get('quality_score') or 0.0):.1f} | "
                f"{record.get('iterations', 0)} |"
            )

    errors = state.get("errors") or []
    if errors:
        lines += ["", "## Errors", ""]
        lines.extend(f"- `{error.get('phase')}` {error.get('timestamp')}: {error.get('message')}" for error in errors)
    return "\n".join(lines) + "\n"


def _report_payload(state: Mapping[str, Any]) -> dict[str, Any]:
    generated = [{key: value for key, value in record.items() if key != "code"} for record in state.get("generated_components") or []]
    return {
        "input": state.get("input"),
        "outputPath": state.get("output_path"),
        "status": state.get("status"),
        "summary": compute_stats(state),
        "routingDecision": state.get("routing_decision"),
        "componentStrategy": state.get("component_strategy") or [],
        "generatedComponents": generated,
        "validationResults": state.get("validation_results") or [],
        "errors": state.get("errors") or [],
        "metadata": state.get("metadata") or {},
    }


def generate_report(state: Mapping[str, Any], reports_dir: str | Path) -> ReportPaths:
    """Write ``workflow-report-<ts>.md`` and ``workflow-report-<ts>.json`` into ``reports_dir``."""
    root = resolve_path(reports_dir)
    stamp = _timestamp()
    paths = ReportPaths(
        markdown=root / f"workflow-report-{stamp}.md",
        json=root / f"workflow-report-{stamp}.json",
    )
    atomic_write_text(paths.markdown, _markdown(state))
    atomic_write_text(paths.json, json.dumps(_report_payload(state), indent=2, default=str))
    logger.info("Reports written: %s, %s", paths.markdown, paths.json)
    return paths


def write_inventory(library_context: Mapping[str, list[str]], reports_dir: str | Path, output_path: str | Path) -> Path:
    """Write ``component-inventory-<ts>.json``: component names and files grouped by category."""
    root = resolve_path(output_path)
    categories: dict[str, list[dict[str, str]]] = {}
    for category in LIBRARY_CATEGORIES:
        categories[category] = [
            {"name": name, "path": str(root / category / f"{name}.tsx")}
            for name in library_context.get(category, [])
        ]
    payload = {
        "generatedAt": datetime.now(UTC).isoformat(),
        "outputPath": str(root),
        "totalComponents": sum(len(items) for items in categories.values()),
        "categories": categories,
    }
    path = resolve_path(reports_dir) / f"component-inventory-{_timestamp()}.json"
    atomic_write_text(path, json.dumps(payload, indent=2))
    logger.info("Component inventory written: %s (%d components)", path, payload["totalComponents"])
    return path


def _variant_names(code: str) -> list[str]:
    match = _VARIANT_UNION.search(code)
    if match is None:
        return []
    names: list[str] = []
    for single, double in _QUOTED.findall(match.group(1)):
        value = single or double
        if value and value not in names:
            names.append(value)
    return names


def _story_export_name(variant: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", variant)
    name = "".join(word[:1].upper() + word[1:] for word in words) or "Variant"
    return f"_{name}" if name[:1].isdigit() else name


def render_story(name: str, category: str, code: str) -> str:
    """CSF3 story module with a Default story plus one story per ``variant`` union member."""
    stories = ["export const Default: Story = {\n  args: {},\n};"]
    seen = {"Default"}
    for variant in _variant_names(code):
        export_name = _story_export_name(variant)
        if export_name in seen:
            continue
        seen.add(export_name)
        stories.append(f"export const {export_name}: Story = {{\n  args: {{ variant: '{variant}' }},\n}};")
    title = f"{category[:1].upper()}{category[1:]}/{name}"
    return (
        "import type { Meta, StoryObj } from '@storybook/react';\n"
        f"import {{ {name} }} from '@/ui/{category}/{name}';\n\n"
        f"const meta: Meta<typeof {name}> = {{\n"
        f"  title: '{title}',\n"
        f"  component: {name},\n"
        "  tags: ['autodocs'],\n"
        "};\n\n"
        "export default meta;\n"
        "type Story = StoryObj<typeof meta>;\n\n"
        + "\n\n".join(stories)
        + "\n"
    )


def generate_stories(inventory_path: str | Path, stories_dir: str | Path) -> StoriesResult:
    """Write one ``<Name>.stories.tsx`` per inventory component whose file exists on disk."""
    inventory = json.loads(resolve_path(inventory_path).read_text(encoding="utf-8"))
    root = resolve_path(stories_dir)
    result = StoriesResult()
    for category, items in (inventory.get("categories") or {}).items():
        for item in items:
            name = str(item.get("name", ""))
            entry = {"name": name, "category": category}
            if not _PASCAL_CASE.match(name):
                result.skipped.append({**entry, "reason": "not a PascalCase component name"})
                continue
            source = Path(item.get("path", ""))
            if not source.is_file():
                result.skipped.append({**entry, "reason": "component file not found"})
                continue
            try:
                story = render_story(name, category, source.read_text(encoding="utf-8"))
                path = root / category / f"{name}.stories.tsx"
                atomic_write_text(path, story)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Failed to write story for %s: %s", name, exc)
                result.errors.append({**entry, "error": str(exc)})
                continue
            result.generated.append({**entry, "path": str(path)})
    logger.info(
        "Stories: %d generated, %d skipped, %d error(s)",
        len(result.generated),
        len(result.skipped),
        len(result.errors),
    )
    return result
