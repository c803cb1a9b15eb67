from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class AtomicLevel(str, Enum):
    ATOM = "atom"
    MOLECULE = "molecule"
    ORGANISM = "organism"


class GenerationStrategy(str, Enum):
    ATOM_GENERATION = "ATOM_GENERATION"
    MOLECULE_GENERATION = "MOLECULE_GENERATION"
    MIXED_GENERATION = "MIXED_GENERATION"


class StrategyAction(str, Enum):
    CREATE_NEW = "create_new"
    UPDATE_EXISTING = "update_existing"
    SKIP = "skip"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    NEEDS_REVISION = "needs_revision"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    ERROR = "error"


SUCCESSFUL_STATUSES: frozenset[str] = frozenset(
    {WorkflowStatus.SUCCESS.value, WorkflowStatus.COMPLETED_WITH_ERRORS.value}
)


@dataclass(frozen=True)
class ValidationIssue:
    severity: str
    location: str
    message: str


# -- Analysis --


class PropSpec(BaseModel):
    name: str
    type: str
    required: bool = False


class VisualProperties(BaseModel):
    background_color: str = ""
    text_color: str = ""
    border_color: str = ""
    border_width: str = ""
    border_radius: str = ""
    padding: str = ""
    font_size: str = ""
    font_weight: str = ""
    shadow: str = ""


class Composition(BaseModel):
    contains_components: list[str] = Field(default_factory=list)
    layout_pattern: str = ""
    content_elements: list[str] = Field(default_factory=list)


class VariantVisual(BaseModel):
    variant_name: str
    visual_properties: VisualProperties = Field(default_factory=VisualProperties)
    composition: Composition = Field(default_factory=Composition)


class InteractiveBehavior(BaseModel):
    trigger: str
    effect: str
    state_indicators: list[str] = Field(default_factory=list)


class ComponentSpec(BaseModel):
    """One design element identified by analysis."""

    name: str
    atomic_level: AtomicLevel
    description: str = ""
    style_variants: list[str] = Field(min_length=1)
    size_variants: list[str] = Field(default_factory=list)
    other_variants: list[str] = Field(default_factory=list)
    states: list[str] = Field(min_length=1)
    props: list[PropSpec] = Field(default_factory=list)
    variant_visual_map: list[VariantVisual] = Field(default_factory=list)
    interactive_behaviors: list[InteractiveBehavior] = Field(default_factory=list)
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    priority: Literal["high", "medium", "low"] = "medium"

    def validation_issues(self) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if not self.name.strip():
            issues.append(ValidationIssue("ERROR", "name", "component name must be non-empty"))
        if len(self.variant_visual_map) != len(self.style_variants):
            issues.append(
                ValidationIssue(
                    "ERROR",
                    f"{self.name}.variant_visual_map",
                    (
                        f"variant_visual_map has {len(self.variant_visual_map)} entries but "
                        f"style_variants has {len(self.style_variants)}; each style variant needs exactly one "
                        "visual-properties entry"
                    ),
                )
            )
        return issues

    def is_valid(self) -> bool:
        return not [issue for issue in self.validation_issues() if issue.severity == "ERROR"]


class VisualAnalysis(BaseModel):
    summary: str
    component_count: int = Field(ge=0)
    components: list[ComponentSpec]


# -- Routing --


class EstimatedComponents(BaseModel):
    atoms: int = Field(ge=0)
    molecules: int = Field(ge=0)


class RoutingDecision(BaseModel):
    strategy: GenerationStrategy
    reasoning: str
    complexity_score: int = Field(ge=1, le=10)
    estimated_components: EstimatedComponents
    priority_order: list[str]


# -- Strategy --


class StrategyComponent(BaseModel):
    name: str
    type: str
    props: list[str] = Field(default_factory=list)
    variants: list[str] = Field(default_factory=list)


class SafetyChecks(BaseModel):
    usage_count: int = Field(default=0, ge=0)
    risk_level: RiskLevel = RiskLevel.LOW
    breaking_changes: bool = False


class ComponentDecision(BaseModel):
    component: StrategyComponent
    action: StrategyAction
    target_path: str
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    safety_checks: SafetyChecks = Field(default_factory=SafetyChecks)


class StrategyDecision(BaseModel):
    strategies: list[ComponentDecision]


# -- Generation and review --


class GeneratedCode(BaseModel):
    code: str


class ReviewScores(BaseModel):
    props_design: float = Field(ge=0, le=10)
    imports_and_library: float = Field(ge=0, le=10)
    typescript: float = Field(ge=0, le=10)
    tailwind: float = Field(ge=0, le=10)
    accessibility: float = Field(ge=0, le=10)

    def mean(self) -> float:
        values = list(self.model_dump().values())
        return sum(values) / len(values)


class CodeReview(BaseModel):
    scores: ReviewScores
    average_score: float = Field(ge=0, le=10)
    passed: bool
    critical_issues: list[str] = Field(default_factory=list)
    minor_issues: list[str] = Field(default_factory=list)
    feedback: str = ""
    confidence_ready: bool = False


class ReusabilityIssue(BaseModel):
    severity: Literal["high", "medium", "low"]
    html_element: str
    library_component: str
    suggestion: str
    import_path: str


class ReusabilityAnalysis(BaseModel):
    is_reusable: bool
    reusability_score: float = Field(ge=0.0, le=1.0)
    issues: list[ReusabilityIssue] = Field(default_factory=list)
    summary: str = ""


# -- Validation (outer graph) --


class ValidationResult(BaseModel):
    component: str
    validation_type: Literal["visual", "accessibility", "typescript", "overlap"] = "typescript"
    success: bool
    score: float = Field(ge=0, le=10)
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class WorkflowError(BaseModel):
    message: str
    phase: str
    timestamp: str


class GeneratedComponentRecord(BaseModel):
    name: str
    file_path: str
    action: StrategyAction = StrategyAction.CREATE_NEW
    atomic_level: AtomicLevel
    lines_of_code: int = Field(default=0, ge=0)
    quality_score: float = Field(default=0.0, ge=0, le=10)
    iterations: int = Field(default=0, ge=0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    approved: bool = False
    timestamp: str
    code: str | None = None
