from importlib.metadata import version

from .analysis import AnalysisStep, RoutingStep, route_components
from .checks import QUALITY_THRESHOLD, apply_validation_results, run_all_validations, validate_imports
from .design_source import FigmaDesignSource, LocalDesignSource, design_source_for
from .finalize import Finalizer
from .generator import ComponentGenerator, LevelGenerationStep
from .model_selection import DEFAULT_MODELS_BY_TIER, RuntimeModelSelection
from .models import (
    AtomicLevel,
    CodeReview,
    ComponentDecision,
    ComponentSpec,
    GeneratedComponentRecord,
    GenerationStrategy,
    ReviewScores,
    RoutingDecision,
    StrategyAction,
    StrategyDecision,
    ValidationIssue,
    ValidationResult,
    VisualAnalysis,
    WorkflowStatus,
)
from .refinement import MAX_REFINEMENT_ITERATIONS, RefinementGraph, RefinementResult, decide_next_after_code_review
from .state import WorkflowState, create_initial_state, determine_ui_category, merge_state
from .steps import Continue, Halt, run_step
from .strategy import MAX_TOOL_ROUNDS, StrategyPlanner, route_after_strategy, run_tool_loop
from .utils import to_pascal_case
from .workflow import DesignToCodeWorkflow, LibraryWorkflow


def get_version() -> str:
    try:
        return version("figma-codegen")
    except Exception:
        return "0.0.0"


__all__ = [
    "AnalysisStep",
    "AtomicLevel",
    "CodeReview",
    "ComponentDecision",
    "ComponentGenerator",
    "ComponentSpec",
    "Continue",
    "DEFAULT_MODELS_BY_TIER",
    "DesignToCodeWorkflow",
    "FigmaDesignSource",
    "Finalizer",
    "GeneratedComponentRecord",
    "GenerationStrategy",
    "Halt",
    "LevelGenerationStep",
    "LibraryWorkflow",
    "LocalDesignSource",
    "MAX_REFINEMENT_ITERATIONS",
    "MAX_TOOL_ROUNDS",
    "QUALITY_THRESHOLD",
    "RefinementGraph",
    "RefinementResult",
    "ReviewScores",
    "RoutingDecision",
    "RoutingStep",
    "RuntimeModelSelection",
    "StrategyAction",
    "StrategyDecision",
    "StrategyPlanner",
    "ValidationIssue",
    "ValidationResult",
    "VisualAnalysis",
    "WorkflowState",
    "WorkflowStatus",
    "apply_validation_results",
    "create_initial_state",
    "decide_next_after_code_review",
    "design_source_for",
    "determine_ui_category",
    "get_version",
    "merge_state",
    "route_after_strategy",
    "route_components",
    "run_all_validations",
    "run_step",
    "run_tool_loop",
    "to_pascal_case",
    "validate_imports",
]
