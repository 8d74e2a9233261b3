from motionforge.agent.apply import AtomicApplyResult, RuntimeApplyAdapter, apply_plan_steps_atomic
from motionforge.agent.diff import PlanPreviewDiff, build_project_diff, create_empty_diff, simulate_plan_diff
from motionforge.agent.planner import (
    GeneratedPlan,
    PlanConstraints,
    PlannerError,
    PlannerInput,
    PlannerStateSnapshot,
    generate_plan,
    validate_constraints,
)
from motionforge.agent.recipes import RECIPE_DEFINITIONS, list_recipe_triggers, recipe_suggestions
from motionforge.agent.skill import generate_script_from_goal

__all__ = [
    "AtomicApplyResult",
    "GeneratedPlan",
    "PlanConstraints",
    "PlanPreviewDiff",
    "PlannerError",
    "PlannerInput",
    "PlannerStateSnapshot",
    "RECIPE_DEFINITIONS",
    "RuntimeApplyAdapter",
    "apply_plan_steps_atomic",
    "build_project_diff",
    "create_empty_diff",
    "generate_plan",
    "generate_script_from_goal",
    "list_recipe_triggers",
    "recipe_suggestions",
    "simulate_plan_diff",
    "validate_constraints",
]
