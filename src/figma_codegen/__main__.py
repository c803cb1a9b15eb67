"""Entry point for `python -m figma_codegen` and the `figma-codegen` CLI script."""

from __future__ import annotations

import argparse
import logging
import sys

from figma_codegen.design_source import design_source_for
from figma_codegen.models import SUCCESSFUL_STATUSES
from figma_codegen.reports import compute_stats
from figma_codegen.settings import RuntimeSettings
from figma_codegen.workflow import DesignToCodeWorkflow, LibraryWorkflow


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate React/TypeScript components from a Figma design")
    parser.add_argument("input", help="Figma file URL (with optional node-id) or path to a local design export (.json)")
    parser.add_argument("--output-path", default=None, help="Component library root (default: FIGMA_CODEGEN_OUTPUT_PATH)")
    parser.add_argument(
        "--recursion-limit",
        type=int,
        default=None,
        help="Maximum graph steps per run (default: FIGMA_CODEGEN_RECURSION_LIMIT)",
    )
    parser.add_argument("--stream", action="store_true", help="Log each node update as the graph runs")
    parser.add_argument(
        "--workflow",
        default="library",
        choices=["library", "staged"],
        help="library: plan against existing components; staged: route by complexity and validate",
    )
    parser.add_argument("--offline", action="store_true", help="Use deterministic steps instead of LLM calls")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if not args.input.strip():
            raise ValueError("input must be a non-empty design reference")
        settings = RuntimeSettings.from_env().with_overrides(
            output_path=args.output_path,
            recursion_limit=args.recursion_limit,
        )
        design_source = design_source_for(args.input)
    except (OSError, ValueError, RuntimeError) as exc:
        logging.error("Unable to load input: %s", exc)
        return 1

    workflow_cls = LibraryWorkflow if args.workflow == "library" else DesignToCodeWorkflow
    try:
        workflow = workflow_cls.from_settings(settings, design_source=design_source, use_llm=not args.offline)
        try:
            result = workflow.run(args.input, stream=args.stream)
        finally:
            workflow.close()
    except Exception as exc:  # noqa: BLE001
        logging.exception("Workflow execution failed: %s", exc)
        return 1

    status = str(result.get("status", "unknown"))
    print(f"status={status}")
    for key, value in compute_stats(result).items():
        print(f"{key}={value}")
    for record in result.get("generated_components") or []:
        print(f"generated={record.get('name')} {record.get('file_path')}")
    for error in result.get("errors") or []:
        print(f"error=[{error.get('phase')}] {error.get('message')}", file=sys.stderr)

    return 0 if status in SUCCESSFUL_STATUSES else 1


if __name__ == "__main__":
    raise SystemExit(main())
