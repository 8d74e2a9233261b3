"""Closed table of deterministic animation recipes the planner can match."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

RecipeId = Literal[
    "bounce",
    "anticipation-and-hit",
    "idle-loop",
    "camera-dolly",
    "turn-in-place",
    "recoil",
]


class RecipeDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: RecipeId
    label: str
    trigger_phrases: tuple[str, ...]
    default_duration_sec: float
    touched_tracks: tuple[str, ...]
    loop_friendly: bool


RECIPE_DEFINITIONS: tuple[RecipeDefinition, ...] = (
    RecipeDefinition(
        id="bounce",
        label="Bounce (Squash/Stretch)",
        trigger_phrases=("bounce", "squash stretch bounce"),
        default_duration_sec=1,
        touched_tracks=("position.y", "scale.x", "scale.y", "scale.z"),
        loop_friendly=False,
    ),
    RecipeDefinition(
        id="anticipation-and-hit",
        label="Anticipation and Hit",
        trigger_phrases=("anticipation-and-hit", "anticipation hit", "anticipation"),
        default_duration_sec=1.2,
        touched_tracks=("position.z", "rotation.x", "rotation.z"),
        loop_friendly=False,
    ),
    RecipeDefinition(
        id="idle-loop",
        label="Idle Loop",
        trigger_phrases=("idle-loop", "idle loop", "hover idle", "breathing idle"),
        default_duration_sec=2,
        touched_tracks=("position.y", "rotation.y"),
        loop_friendly=True,
    ),
    RecipeDefinition(
        id="camera-dolly",
        label="Camera Dolly",
        trigger_phrases=("camera-dolly", "camera dolly", "dolly shot"),
        default_duration_sec=3,
        touched_tracks=("position.z", "position.x"),
        loop_friendly=False,
    ),
    RecipeDefinition(
        id="turn-in-place",
        label="Turn In Place",
        trigger_phrases=("turn-in-place", "turn in place", "rotate 90", "turn 90"),
        default_duration_sec=1,
        touched_tracks=("rotation.y",),
        loop_friendly=False,
    ),
    RecipeDefinition(
        id="recoil",
        label="Recoil",
        trigger_phrases=("recoil", "kick back", "kickback"),
        default_duration_sec=0.4,
        touched_tracks=("position.z", "rotation.x"),
        loop_friendly=False,
    ),
)


def recipe_suggestions() -> list[str]:
    """One representative phrase per recipe, in table order."""
    return [recipe.trigger_phrases[0] if recipe.trigger_phrases else recipe.id for recipe in RECIPE_DEFINITIONS]


def list_recipe_triggers() -> list[dict[str, object]]:
    return [{"id": recipe.id, "triggerPhrases": list(recipe.trigger_phrases)} for recipe in RECIPE_DEFINITIONS]


def detect_recipe(goal: str) -> RecipeDefinition | None:
    normalized = goal.strip().lower()
    for recipe in RECIPE_DEFINITIONS:
        if any(phrase in normalized for phrase in recipe.trigger_phrases):
            return recipe
    return None
