from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    model_frontier: str = "gpt-4o"
    model_efficient: str = "gpt-4o-mini"
    model_economy: str = "gpt-4o-mini"
    output_path: str = "nextjs-app/ui"
    usage_search_root: str = "nextjs-app"
    reports_dir: str = "reports"
    stories_dir: str = "storybook-app/stories"
    recursion_limit: int = 25
    checkpoint_db: str = ""
    typecheck_timeout: int = 10
    cleanup_ports: tuple[int, ...] = field(default_factory=tuple)

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            model_frontier=os.getenv("FIGMA_CODEGEN_MODEL_FRONTIER", "gpt-4o"),
            model_efficient=os.getenv("FIGMA_CODEGEN_MODEL_EFFICIENT", "gpt-4o-mini"),
            model_economy=os.getenv("FIGMA_CODEGEN_MODEL_ECONOMY", "gpt-4o-mini"),
            output_path=os.getenv("FIGMA_CODEGEN_OUTPUT_PATH", "nextjs-app/ui"),
            usage_search_root=os.getenv("FIGMA_CODEGEN_USAGE_SEARCH_ROOT", "nextjs-app"),
            reports_dir=os.getenv("FIGMA_CODEGEN_REPORTS_DIR", "reports"),
            stories_dir=os.getenv("FIGMA_CODEGEN_STORIES_DIR", "storybook-app/stories"),
            recursion_limit=_get_env_int("FIGMA_CODEGEN_RECURSION_LIMIT", default=25, minimum=5),
            checkpoint_db=os.getenv("FIGMA_CODEGEN_CHECKPOINT_DB", ""),
            typecheck_timeout=_get_env_int("FIGMA_CODEGEN_TYPECHECK_TIMEOUT", default=10, minimum=1, maximum=600),
            cleanup_ports=_get_env_ports("FIGMA_CODEGEN_CLEANUP_PORTS"),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        # -- Model name validation --
        model_frontier = self.model_frontier.strip()
        if not model_frontier:
            raise ValueError("FIGMA_CODEGEN_MODEL_FRONTIER must be non-empty")
        model_efficient = self.model_efficient.strip()
        if not model_efficient:
            raise ValueError("FIGMA_CODEGEN_MODEL_EFFICIENT must be non-empty")
        model_economy = self.model_economy.strip()
        if not model_economy:
            raise ValueError("FIGMA_CODEGEN_MODEL_ECONOMY must be non-empty")

        # -- Numeric bounds validation --
        if self.recursion_limit > 10_000:
            raise ValueError(
                f"FIGMA_CODEGEN_RECURSION_LIMIT must be <= 10000, got: {self.recursion_limit}"
            )

        # -- String field validation --
        if not self.output_path.strip():
            raise ValueError("FIGMA_CODEGEN_OUTPUT_PATH must be non-empty")
        if not self.usage_search_root.strip():
            raise ValueError("FIGMA_CODEGEN_USAGE_SEARCH_ROOT must be non-empty")
        if not self.reports_dir.strip():
            raise ValueError("FIGMA_CODEGEN_REPORTS_DIR must be non-empty")
        if not self.stories_dir.strip():
            raise ValueError("FIGMA_CODEGEN_STORIES_DIR must be non-empty")

        return RuntimeSettings(
            model_frontier=model_frontier,
            model_efficient=model_efficient,
            model_economy=model_economy,
            output_path=self.output_path.strip(),
            usage_search_root=self.usage_search_root.strip(),
            reports_dir=self.reports_dir.strip(),
            stories_dir=self.stories_dir.strip(),
            recursion_limit=self.recursion_limit,
            checkpoint_db=self.checkpoint_db.strip(),
            typecheck_timeout=self.typecheck_timeout,
            cleanup_ports=tuple(self.cleanup_ports),
        )

    def with_overrides(self, *, output_path: str | None = None, recursion_limit: int | None = None) -> "RuntimeSettings":
        return RuntimeSettings(
            model_frontier=self.model_frontier,
            model_efficient=self.model_efficient,
            model_economy=self.model_economy,
            output_path=output_path if output_path is not None else self.output_path,
            usage_search_root=self.usage_search_root,
            reports_dir=self.reports_dir,
            stories_dir=self.stories_dir,
            recursion_limit=recursion_limit if recursion_limit is not None else self.recursion_limit,
            checkpoint_db=self.checkpoint_db,
            typecheck_timeout=self.typecheck_timeout,
            cleanup_ports=self.cleanup_ports,
        ).normalized()

    def checkpoint_path(self, repo_root: Path) -> Path | None:
        if not self.checkpoint_db:
            return None
        path = Path(self.checkpoint_db)
        return path if path.is_absolute() else repo_root / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_ports(name: str) -> tuple[int, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    ports: list[int] = []
    for chunk in raw.split(","):
        value = chunk.strip()
        if not value:
            continue
        try:
            port = int(value)
        except ValueError as exc:
            raise ValueError(f"{name} must be a comma-separated list of ports, got: {raw!r}") from exc
        if not 1 <= port <= 65_535:
            raise ValueError(f"{name} ports must be within 1..65535, got: {port}")
        ports.append(port)
    return tuple(ports)
