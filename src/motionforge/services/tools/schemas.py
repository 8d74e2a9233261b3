"""Input models for the mf.* tools.

Every model accepts camelCase or snake_case keys. Unknown keys are ignored.
"""
from __future__ import annotations

from typing import Any, Literal, NamedTuple

from pydantic import Field, PositiveFloat, PositiveInt

from motionforge.agent.planner import PlanConstraints
from motionforge.models import WireModel
from motionforge.pipeline.make_bundle import PipelineConstraints, TakeInput


class _Empty(WireModel):
    pass


class PingInput(WireModel):
    nonce: str | None = None


class ProjectLoadJsonInput(WireModel):
    json_text: str = Field(min_length=1, alias="json")
    staged: bool = True


class CommandExecuteInput(WireModel):
    action: str = Field(min_length=1)
    input: Any = None


class PlanGenerateInput(WireModel):
    goal: str = Field(min_length=1)
    constraints: PlanConstraints | None = None


class PlanIdInput(WireModel):
    plan_id: str = Field(min_length=1)


class PlanApplyInput(PlanIdInput):
    confirm: bool


class ScriptDefaults(WireModel):
    fps: PositiveFloat | None = None
    duration_sec: PositiveFloat | None = None


class ScriptValidateInput(WireModel):
    script: str = Field(min_length=1)


class ScriptCompileInput(ScriptValidateInput):
    defaults: ScriptDefaults | None = None
    staged: bool | None = None


class ScriptRunInput(ScriptValidateInput):
    apply_mode: Literal["previewOnly", "apply"]
    confirm: bool = False
    staged: bool = False


class SkillConstraints(WireModel):
    duration_sec: PositiveFloat | None = None
    fps: PositiveFloat | None = None
    style: Literal["snappy", "smooth", "heavy", "floaty"] | None = None


class SkillTarget(WireModel):
    select: str | None = Field(default=None, min_length=1)


class SkillGenerateScriptInput(WireModel):
    goal: str = Field(min_length=1)
    constraints: SkillConstraints | None = None
    target: SkillTarget | None = None


class ExportBundleInput(WireModel):
    out_dir: str = Field(min_length=1)


class UnityPackageOptions(WireModel):
    scale: PositiveFloat | None = None
    y_up: bool | None = None
    include_project_json: bool | None = None


class ExportUnityPackageInput(ExportBundleInput):
    options: UnityPackageOptions | None = None


class ReadFileBase64Input(WireModel):
    path: str = Field(min_length=1)
    max_bytes: PositiveInt = Field(default=256 * 1024, le=1024 * 1024)


class WriteFileInput(WireModel):
    path: str = Field(min_length=1)
    base64: str = Field(min_length=1)


class MakeBundleTarget(WireModel):
    select: str | None = Field(default=None, min_length=1)
    bind_path: str | None = Field(default=None, min_length=1)


class PipelineMakeBundleInput(WireModel):
    goal: str = Field(min_length=1)
    out_dir: str = Field(min_length=1)
    confirm: bool
    in_json: str | None = Field(default=None, min_length=1)
    in_bundle_base64: str | None = Field(default=None, min_length=1)
    takes: list[TakeInput] | None = None
    constraints: PipelineConstraints | None = None
    target: MakeBundleTarget | None = None
    unity: bool | None = None


class UnityTarget(WireModel):
    select: str = Field(min_length=1)
    bind_path: str | None = Field(default=None, min_length=1)


class UnityRecipeMakeBundleInput(WireModel):
    goal: str = Field(min_length=1)
    target: UnityTarget
    out_dir: str = Field(min_length=1)
    confirm: bool
    constraints: PipelineConstraints | None = None


TOOL_INPUTS: dict[str, type[WireModel]] = {
    "mf.ping": PingInput,
    "mf.capabilities": _Empty,
    "mf.project.loadJson": ProjectLoadJsonInput,
    "mf.project.commit": _Empty,
    "mf.project.discard": _Empty,
    "mf.state.snapshot": _Empty,
    "mf.command.execute": CommandExecuteInput,
    "mf.plan.generate": PlanGenerateInput,
    "mf.plan.previewDiff": PlanIdInput,
    "mf.plan.apply": PlanApplyInput,
    "mf.plan.discard": PlanIdInput,
    "mf.script.compile": ScriptCompileInput,
    "mf.script.run": ScriptRunInput,
    "mf.script.validate": ScriptValidateInput,
    "mf.script.examples": _Empty,
    "mf.skill.generateScript": SkillGenerateScriptInput,
    "mf.export.bundle": ExportBundleInput,
    "mf.export.unityPackage": ExportUnityPackageInput,
    "mf.export.projectJson": _Empty,
    "mf.io.readFileBase64": ReadFileBase64Input,
    "mf.io.writeFile": WriteFileInput,
    "mf.pipeline.makeBundle": PipelineMakeBundleInput,
    "mf.unity.recipe.makeBundle": UnityRecipeMakeBundleInput,
}


class ToolDefinition(NamedTuple):
    name: str
    description: str
    output: str


TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = (
    ToolDefinition("mf.ping", "Liveness probe.", "{ ok: true, version, commit?, nonce? }"),
    ToolDefinition("mf.capabilities", "List available tools and actions.", "{ tools: [...], actions: [...] }"),
    ToolDefinition("mf.project.loadJson", "Stage project JSON load with validation.", "{ projectId, summary }"),
    ToolDefinition("mf.project.commit", "Commit staged load atomically.", "{ ok }"),
    ToolDefinition("mf.project.discard", "Discard staged load.", "{ ok }"),
    ToolDefinition(
        "mf.state.snapshot",
        "Read deterministic state snapshot.",
        "{ scene, selection, assets, animation, dirty, version }",
    ),
    ToolDefinition(
        "mf.command.execute",
        "Execute headless deterministic action through command bus.",
        "{ ok, result, events }",
    ),
    ToolDefinition(
        "mf.plan.generate",
        "Generate deterministic command plan from natural-language goal.",
        "{ ok, planId, summary, steps, safety }",
    ),
    ToolDefinition(
        "mf.plan.previewDiff",
        "Preview diff for a generated plan by simulation on cloned runtime.",
        "{ ok, diff }",
    ),
    ToolDefinition("mf.plan.apply", "Apply generated plan atomically with confirm gate.", "{ ok, events, result }"),
    ToolDefinition("mf.plan.discard", "Discard generated plan from in-memory registry.", "{ ok }"),
    ToolDefinition(
        "mf.script.compile",
        "Validate and compile MotionForge Script into a deterministic plan.",
        "{ ok, planId, ast, summary, warnings }",
    ),
    ToolDefinition(
        "mf.script.run",
        "Compile script, preview diff, and optionally apply with confirm gate.",
        "{ ok, planId, diff, events?, warnings }",
    ),
    ToolDefinition(
        "mf.script.validate",
        "Validate MotionForge Script with path-based diagnostics.",
        "{ ok, errors, warnings }",
    ),
    ToolDefinition("mf.script.examples", "List deterministic script examples.", "{ ok, examples[] }"),
    ToolDefinition(
        "mf.skill.generateScript",
        "Deterministic goal/constraints to MotionForge Script mapping.",
        "{ ok, script, matchedPreset, warnings }",
    ),
    ToolDefinition("mf.export.bundle", "Write bundle zip artifact to disk.", "{ path, bytes, warnings }"),
    ToolDefinition(
        "mf.export.unityPackage",
        "Write Unity interchange package zip artifact to disk.",
        "{ path, bytes, warnings }",
    ),
    ToolDefinition("mf.export.projectJson", "Export latest normalized project JSON.", "{ json }"),
    ToolDefinition(
        "mf.io.readFileBase64",
        "Read small file content as base64 with size guard.",
        "{ path, bytes, base64 }",
    ),
    ToolDefinition("mf.io.writeFile", "Write base64 content to path.", "{ path, bytes }"),
    ToolDefinition(
        "mf.pipeline.makeBundle",
        "Deterministic staged pipeline: goal -> script(s) -> preview/apply -> commit -> bundle + proof.",
        "{ ok, outZipPath, manifestPath, proofPath, previewOnly, errors?, warnings? }",
    ),
    ToolDefinition(
        "mf.unity.recipe.makeBundle",
        "Unity-targeted deterministic recipe pipeline with bindPath guarantees.",
        "{ ok, outZipPath, proofPath, warnings? }",
    ),
)


def tool_description(name: str) -> str:
    for definition in TOOL_DEFINITIONS:
        if definition.name == name:
            return definition.description
    raise KeyError(name)
