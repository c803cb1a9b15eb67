from __future__ import annotations

from dataclasses import dataclass

from .settings import RuntimeSettings


VALID_TIERS: frozenset[str] = frozenset({"frontier", "efficient", "economy"})

DEFAULT_MODELS_BY_TIER: dict[str, str] = {
    "frontier": "gpt-4o",
    "efficient": "gpt-4o-mini",
    "economy": "gpt-4o-mini",
}

TASK_TIERS: dict[str, str] = {
    "analysis": "frontier",
    "routing": "efficient",
    "strategy": "frontier",
    "generation": "frontier",
    "review": "frontier",
    "reusability": "economy",
}


@dataclass(frozen=True)
class RuntimeModelSelection:
    """Maps model tier names to concrete model identifiers for pipeline tasks.

    Each pipeline task (analysis, routing, generation, ...) is pinned to a
    tier in ``TASK_TIERS``. This dataclass holds the concrete model names for
    each tier so that ``resolve`` can translate a task to a model at runtime.
    """

    by_tier: dict[str, str]

    def __post_init__(self) -> None:
        """Validate that all required tiers are present and no tier maps to an empty model name."""
        missing = VALID_TIERS - set(self.by_tier)
        if missing:
            raise ValueError(
                f"RuntimeModelSelection missing required tiers: {', '.join(sorted(missing))}. "
                f"All of {sorted(VALID_TIERS)} must be configured."
            )
        for tier, model_name in self.by_tier.items():
            if not model_name or not model_name.strip():
                raise ValueError(f"RuntimeModelSelection tier '{tier}' has empty model name")

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "RuntimeModelSelection":
        return cls(
            by_tier={
                "frontier": settings.model_frontier,
                "efficient": settings.model_efficient,
                "economy": settings.model_economy,
            }
        )

    def resolve(self, task: str) -> str:
        """Resolve a pipeline task to a concrete model name.

        Args:
            task: One of the keys of ``TASK_TIERS``.

        Returns:
            The concrete model name string.

        Raises:
            ValueError: If the task is unknown.
        """
        tier = TASK_TIERS.get(task)
        if tier is None:
            available = ", ".join(sorted(TASK_TIERS))
            raise ValueError(f"Unknown pipeline task '{task}'. Valid tasks: {available}")
        return self.by_tier[tier]
