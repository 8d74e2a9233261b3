"""Goal-to-bundle pipeline.

``run_make_bundle_pipeline`` drives the MCP tool surface (through a
``call_tool(name, payload)`` callable) to load a project, script one take at a
time, preview or apply the result and write ``proof.json`` next to the exported
bundle. Proof documents contain no timestamps, so identical inputs produce
byte-identical proofs.
"""
from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import re
import zipfile
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from motionforge.models import Take, WireModel
from motionforge.pipeline.hashing import (
    sha256_hex_from_bytes,
    sha256_hex_from_string,
    stable_json_stringify,
)

logger = logging.getLogger(__name__)

ToolCaller = Callable[[str, dict[str, Any]], dict[str, Any]]

PROOF_FILE_NAME = "proof.json"
SKILL_STYLES = ("snappy", "smooth", "heavy", "floaty")

_NUM = r"[-+]?(?:\d+\.?\d*|\d*\.?\d+)"
_KEY_LINE_RE = re.compile(rf"^(key\s+(?:position|rotation|scale)\s+[xyz]\s+at\s+)({_NUM})(\s*=\s*.+)$", re.I)
_DELETE_LINE_RE = re.compile(rf"^(delete\s+key\s+(?:position|rotation|scale)\s+[xyz]\s+at\s+)({_NUM})$", re.I)
_HELPER_LINE_RES = (
    re.compile(rf"^(bounce\s+amplitude\s+{_NUM}\s+at\s+)({_NUM})\.\.({_NUM})$", re.I),
    re.compile(rf"^(recoil\s+distance\s+{_NUM}\s+at\s+)({_NUM})\.\.({_NUM})$", re.I),
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class TakeInput(WireModel):
    name: str
    start_time: float
    end_time: float


class PipelineConstraints(WireModel):
    duration_sec: float | None = None
    style: str | None = None
    fps: float | None = None


class PipelineTarget(WireModel):
    select: str | None = None
    bind_path: str | None = None


class MakeBundleInput(WireModel):
    goal: str
    out_dir: str
    confirm: bool = False
    staged: bool = True
    unity: bool = False
    in_json: str | None = None
    in_bundle_base64: str | None = None
    takes: list[TakeInput] | None = None
    constraints: PipelineConstraints | None = None
    target: PipelineTarget | None = None


class Tooling(WireModel):
    mcp_version: str
    commit: str | None = None


class ErrorInfo(WireModel):
    code: str
    message: str


class DiffCounts(WireModel):
    keyframes_added: int = 0
    keyframes_moved: int = 0
    keyframes_deleted: int = 0
    tracks_touched: int = 0


class TakeDiff(DiffCounts):
    take: str


class DiffSummary(WireModel):
    scripts: list[TakeDiff] = Field(default_factory=list)
    totals: DiffCounts = Field(default_factory=DiffCounts)


class ProofOutputs(WireModel):
    out_dir: str
    project_json_path: str | None = None
    bundle_zip_path: str | None = None
    manifest_path: str | None = None


class ProofBytes(WireModel):
    project_json: int | None = None
    bundle_zip: int | None = None
    manifest: int | None = None


class ProofDocument(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    schema_version: Literal[1] = 1
    preview_only: bool
    goal: str
    takes: list[Take]
    input_hash: str
    output_project_hash: str | None = None
    bundle_hash: str | None = None
    tooling: Tooling
    diff_summary: DiffSummary
    outputs: ProofOutputs
    bytes: ProofBytes
    warnings: list[str] = Field(default_factory=list)
    errors: list[ErrorInfo] = Field(default_factory=list)


class MakeBundleOutput(WireModel):
    ok: bool
    preview_only: bool
    out_zip_path: str | None = None
    manifest_path: str | None = None
    proof_path: str
    warnings: list[str] = Field(default_factory=list)
    errors: list[ErrorInfo] = Field(default_factory=list)


def build_proof_document(**fields: Any) -> ProofDocument:
    return ProofDocument(**fields)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_number(value: float) -> str:
    """Render with at most four decimals and no trailing zeros."""
    rounded = round(value, 4)
    if rounded == int(rounded):
        return str(int(rounded))
    return repr(rounded)


def normalize_bind_path_value(value: str) -> str:
    out = re.sub(r"/+", "/", value.strip().replace("\\", "/")).strip("/")
    return out or "Object"


def normalize_skill_style(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip().lower()
    return normalized if normalized in SKILL_STYLES else None


def _take_id_segment(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_") or "segment"


def _valid_range(start: float, end: float) -> bool:
    return start >= 0 and end > start and end != float("inf")


def _sort_takes(takes: list[Take]) -> list[Take]:
    return sorted(takes, key=lambda take: (take.start_time, take.id))


def normalize_take_inputs(takes: list[TakeInput]) -> list[Take]:
    """Assign ``take_<slug>`` ids, suffixing ``_2``, ``_3``... on collision."""
    seen: set[str] = set()
    rows = []
    for index, take in enumerate(t for t in takes if _valid_range(t.start_time, t.end_time)):
        base_id = f"take_{_take_id_segment(take.name)}"
        take_id, suffix = base_id, 2
        while take_id in seen:
            take_id = f"{base_id}_{suffix}"
            suffix += 1
        seen.add(take_id)
        rows.append(Take(
            id=take_id,
            name=take.name.strip() or f"Take {index + 1}",
            start_time=round(take.start_time, 4),
            end_time=round(take.end_time, 4),
        ))
    return _sort_takes(rows)


def derive_takes_from_goal(goal: str, duration_seconds: float) -> list[Take]:
    normalized = goal.strip().lower()
    takes = []
    if "idle" in normalized:
        takes.append(Take(id="take_idle", name="Idle", start_time=0, end_time=2))
    if "recoil" in normalized:
        takes.append(Take(id="take_recoil", name="Recoil", start_time=2, end_time=2.4))
    if "turn" in normalized:
        takes.append(Take(id="take_turn", name="Turn", start_time=0, end_time=1))
    if not takes:
        end = duration_seconds if duration_seconds > 0 else 2
        takes.append(Take(id="take_main", name="Main", start_time=0, end_time=end))
    return _sort_takes(takes)


def infer_take_goal(take: Take, goal: str) -> str:
    lower = take.name.lower()
    if "idle" in lower:
        return "idle loop"
    if "recoil" in lower:
        return "recoil"
    if "turn" in lower:
        return "turn in place"
    if "bounce" in lower:
        return "bounce"
    return goal


def _offset(raw: str, offset: float) -> str:
    return format_number(float(raw) + offset)


def rebase_script_for_take(script: str, take: Take, full_duration: float, target_object_id: str) -> str:
    """Shift a take-local script onto the take's start time within the full clip."""
    lines = [line.strip() for line in re.split(r"\r?\n", script) if line.strip()]
    out: list[str] = []
    has_select = has_duration = False

    for line in lines:
        if line.startswith("select "):
            if not has_select:
                out.append(f'select "{target_object_id}"')
                has_select = True
            continue
        if line.startswith("duration "):
            out.append(f"duration {format_number(full_duration)}")
            has_duration = True
            continue
        if line.startswith("label "):
            out.append(f'label "{take.name}"')
            continue
        if line.startswith("take "):
            continue

        match = _KEY_LINE_RE.match(line)
        if match:
            out.append(f"{match.group(1)}{_offset(match.group(2), take.start_time)}{match.group(3)}")
            continue
        match = _DELETE_LINE_RE.match(line)
        if match:
            out.append(f"{match.group(1)}{_offset(match.group(2), take.start_time)}")
            continue
        match = _HELPER_LINE_RES[0].match(line) or _HELPER_LINE_RES[1].match(line)
        if match:
            start = _offset(match.group(2), take.start_time)
            end = _offset(match.group(3), take.start_time)
            out.append(f"{match.group(1)}{start}..{end}")
            continue
        out.append(line)

    if not has_select:
        out.insert(0, f'select "{target_object_id}"')
    if not has_duration:
        out.insert(1, f"duration {format_number(full_duration)}")
    return "\n".join(out)


def build_take_script(target_object_id: str, duration_seconds: float, takes: list[Take]) -> str:
    lines = [
        f'select "{target_object_id}"',
        f"duration {format_number(duration_seconds)}",
        'label "Set Takes"',
    ]
    for take in takes:
        lines.append(
            f'take "{take.name}" from {format_number(take.start_time)} to {format_number(take.end_time)}'
        )
    return "\n".join(lines)


def summarize_diff(diff: Any) -> DiffCounts:
    rows = diff.get("animation") if isinstance(diff, dict) else None
    counts = DiffCounts()
    if not isinstance(rows, list):
        return counts
    for row in rows:
        if not isinstance(row, dict):
            continue
        tracks = row.get("tracks")
        counts.tracks_touched += len(tracks) if isinstance(tracks, list) else 0
        for key, attr in (
            ("keyframesAdded", "keyframes_added"),
            ("keyframesMoved", "keyframes_moved"),
            ("keyframesDeleted", "keyframes_deleted"),
        ):
            value = row.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                setattr(counts, attr, getattr(counts, attr) + int(value))
    return counts


def _read_zip_text(payload: bytes, name: str, missing_message: str) -> str:
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        if name not in archive.namelist():
            raise ValueError(missing_message)
        return archive.read(name).decode("utf-8")


def project_json_from_bundle_base64(encoded: str) -> str:
    try:
        payload = base64.b64decode(encoded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Bundle is not valid base64: {exc}")
    try:
        return _read_zip_text(payload, "project.json", "Bundle is missing project.json.")
    except zipfile.BadZipFile as exc:
        raise ValueError(f"Bundle is not a valid zip archive: {exc}")


def _rows(project: dict, key: str) -> list[dict]:
    rows = project.get(key)
    return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []


def _primary_target(project: dict) -> str | None:
    for key in ("objects", "modelInstances"):
        for row in _rows(project, key):
            if isinstance(row.get("id"), str) and row["id"]:
                return row["id"]
    return None


def resolve_target_object_id(project: dict, requested: str | None) -> str | None:
    select = (requested or "").strip()
    if not select:
        return _primary_target(project)
    for field_name in ("id", "name"):
        for key in ("objects", "modelInstances"):
            for row in _rows(project, key):
                if row.get(field_name) == select:
                    return row.get("id")
    return select


def _resolve_unity_bind_path(project: dict, target_select: str, explicit: str | None) -> str:
    if explicit and explicit.strip():
        return normalize_bind_path_value(explicit)
    for key in ("objects", "modelInstances"):
        for row in _rows(project, key):
            name = row.get("name")
            if row.get("id") == target_select and isinstance(name, str) and name.strip():
                return normalize_bind_path_value(name)
    return normalize_bind_path_value(target_select)


def ensure_unity_bind_paths(
    project_json: str,
    target_select: str | None = None,
    target_bind_path: str | None = None,
) -> tuple[str, list[str]]:
    """Fill every missing ``bindPath`` for Unity clip binding.

    Returns the canonical JSON and one warning per filled path.
    """
    project = json.loads(project_json)
    warnings: list[str] = []
    by_id: dict[str, str] = {}
    select = (target_select or "").strip()
    override = (target_bind_path or "").strip()

    for label in ("objects", "modelInstances"):
        rows = project.get(label)
        if not isinstance(rows, list):
            continue
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                continue
            row_id = row["id"] if isinstance(row.get("id"), str) else ""
            name = row["name"] if isinstance(row.get("name"), str) else row_id
            bind_path = row["bindPath"].strip() if isinstance(row.get("bindPath"), str) else ""
            if not bind_path:
                if select and row_id == select and override:
                    bind_path = override
                else:
                    bind_path = name or row_id or f"{label}_{index + 1}"
                warnings.append(
                    f'Filled missing bindPath for {label}[{index}] as "{normalize_bind_path_value(bind_path)}".'
                )
            row["bindPath"] = normalize_bind_path_value(bind_path)
            if row_id:
                by_id[row_id] = row["bindPath"]

    animation = project.get("animation")
    tracks = animation.get("tracks") if isinstance(animation, dict) else None
    if isinstance(tracks, list):
        for index, track in enumerate(tracks):
            if not isinstance(track, dict):
                continue
            object_id = track["objectId"] if isinstance(track.get("objectId"), str) else ""
            existing = track["bindPath"].strip() if isinstance(track.get("bindPath"), str) else ""
            if existing:
                track["bindPath"] = normalize_bind_path_value(existing)
                continue
            resolved = by_id.get(object_id, object_id)
            if select and object_id == select and override:
                resolved = override
            track["bindPath"] = normalize_bind_path_value(resolved or f"track_{index + 1}")
            warnings.append(f'Filled missing bindPath for animation.tracks[{index}] as "{track["bindPath"]}".')

    return stable_json_stringify(project), warnings


def _duration_of(project: dict) -> float:
    animation = project.get("animation")
    value = animation.get("durationSeconds") if isinstance(animation, dict) else None
    if isinstance(value, (int, float)) and not isinstance(value, bool) and 0 < value < float("inf"):
        return round(value, 4)
    return 2


def _checked(result: Any) -> dict[str, Any]:
    if not isinstance(result, dict) or not isinstance(result.get("ok"), bool):
        raise ValueError("Invalid tool response payload.")
    return result


def _error_of(result: dict[str, Any], code: str, message: str) -> ErrorInfo:
    error = result.get("error")
    if isinstance(error, dict) and "code" in error and "message" in error:
        return ErrorInfo(code=str(error["code"]), message=str(error["message"]))
    return ErrorInfo(code=code, message=message)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class _Run:
    """Mutable bookkeeping for one pipeline run."""

    def __init__(self, request: MakeBundleInput, tooling: Tooling, out_dir: Path):
        self.request = request
        self.tooling = tooling
        self.out_dir = out_dir
        self.proof_path = out_dir / PROOF_FILE_NAME
        self.warnings: list[str] = []
        self.errors: list[ErrorInfo] = []
        self.takes: list[Take] = []
        self.input_hash = ""
        self.diff = DiffSummary()

    def write_proof(self, preview_only: bool, **extra: Any) -> ProofDocument:
        proof = build_proof_document(
            preview_only=preview_only,
            goal=self.request.goal,
            takes=self.takes,
            input_hash=self.input_hash,
            output_project_hash=extra.get("output_project_hash"),
            bundle_hash=extra.get("bundle_hash"),
            tooling=self.tooling,
            diff_summary=self.diff,
            outputs=ProofOutputs(
                out_dir=str(self.out_dir),
                project_json_path=extra.get("project_json_path"),
                bundle_zip_path=extra.get("bundle_zip_path"),
                manifest_path=extra.get("manifest_path"),
            ),
            bytes=ProofBytes(
                project_json=extra.get("project_json_bytes"),
                bundle_zip=extra.get("bundle_zip_bytes"),
                manifest=extra.get("manifest_bytes"),
            ),
            warnings=list(self.warnings),
            errors=list(self.errors),
        )
        self.proof_path.write_text(stable_json_stringify(proof.to_wire()), encoding="utf-8")
        return proof

    def fail(self, write_proof: bool = True, out_zip_path: str | None = None, **extra: Any) -> MakeBundleOutput:
        if write_proof:
            self.write_proof(True, bundle_zip_path=out_zip_path, **extra)
        logger.info("make-bundle finished without output: %s", ", ".join(e.code for e in self.errors))
        return MakeBundleOutput(
            ok=False,
            preview_only=True,
            out_zip_path=out_zip_path,
            manifest_path=None,
            proof_path=str(self.proof_path),
            warnings=self.warnings,
            errors=self.errors,
        )


def run_make_bundle_pipeline(
    call_tool: ToolCaller,
    request: MakeBundleInput | dict[str, Any],
    tooling: Tooling | dict[str, Any],
) -> MakeBundleOutput:
    if isinstance(request, dict):
        request = MakeBundleInput.model_validate(request)
    if isinstance(tooling, dict):
        tooling = Tooling.model_validate(tooling)

    out_dir = Path(request.out_dir).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    run = _Run(request, tooling, out_dir)
    staged = request.staged

    # ── Resolve input ────────────────────────────────────────────────
    input_json = request.in_json
    if not input_json and request.in_bundle_base64:
        try:
            input_json = project_json_from_bundle_base64(request.in_bundle_base64)
        except ValueError as exc:
            run.errors.append(ErrorInfo(code="MF_ERR_INVALID_BUNDLE", message=str(exc)))
            return run.fail(write_proof=False)
    if not input_json:
        exported = _checked(call_tool("mf.export.projectJson", {}))
        if not exported["ok"]:
            run.errors.append(_error_of(exported, "MF_ERR_EXPORT_PROJECT", "Failed to export project JSON."))
            return run.fail(write_proof=False)
        input_json = str(exported.get("json") or "")

    run.input_hash = sha256_hex_from_string(input_json)
    loaded = _checked(call_tool("mf.project.loadJson", {"json": input_json, "staged": staged}))
    if not loaded["ok"]:
        run.errors.append(_error_of(loaded, "MF_ERR_LOAD_JSON", "Failed to load input project."))
        return run.fail(write_proof=False)

    project = json.loads(input_json)
    target = request.target or PipelineTarget()
    target_object_id = resolve_target_object_id(project, target.select)
    if not target_object_id:
        if staged:
            call_tool("mf.project.discard", {})
        run.errors.append(ErrorInfo(code="MF_ERR_NO_OBJECTS", message="Project has no animatable objects."))
        return run.fail()

    # ── Takes ────────────────────────────────────────────────────────
    constraints = request.constraints or PipelineConstraints()
    requested = constraints.duration_sec
    duration = requested if requested is not None and 0 < requested < float("inf") else _duration_of(project)
    run.takes = (
        normalize_take_inputs(request.takes) if request.takes else derive_takes_from_goal(request.goal, duration)
    )
    required_duration = max([duration] + [take.end_time for take in run.takes])
    style = normalize_skill_style(constraints.style)
    if constraints.style and style is None:
        run.warnings.append(f'Ignored unsupported style "{constraints.style}".')

    apply_mode = "apply" if request.confirm else "previewOnly"
    for take in run.takes:
        skill_constraints: dict[str, Any] = {"durationSec": round(take.end_time - take.start_time, 4)}
        if constraints.fps is not None and 0 < constraints.fps < float("inf"):
            skill_constraints["fps"] = constraints.fps
        if style:
            skill_constraints["style"] = style
        generated = _checked(call_tool("mf.skill.generateScript", {
            "goal": infer_take_goal(take, request.goal),
            "constraints": skill_constraints,
            "target": {"select": target_object_id},
        }))
        if not generated["ok"]:
            if staged:
                call_tool("mf.project.discard", {})
            run.errors.append(
                _error_of(generated, "MF_ERR_SKILL_GENERATE_SCRIPT", "Failed to generate script from goal.")
            )
            break
        run.warnings.extend(w for w in generated.get("warnings") or [] if isinstance(w, str))

        script = rebase_script_for_take(str(generated.get("script") or ""), take, required_duration, target_object_id)
        validated = _checked(call_tool("mf.script.validate", {"script": script}))
        if not validated["ok"]:
            run.errors.append(_error_of(validated, "MF_ERR_SCRIPT_VALIDATE", "Script validation failed."))
            break

        ran = _checked(call_tool("mf.script.run", {
            "script": script,
            "applyMode": apply_mode,
            "confirm": request.confirm,
            "staged": staged,
        }))
        if not ran["ok"]:
            run.errors.append(_error_of(ran, "MF_ERR_SCRIPT_RUN", "Script run failed."))
            break
        counts = summarize_diff(ran.get("diff"))
        run.diff.scripts.append(TakeDiff(take=take.name, **counts.model_dump()))

    if not run.errors:
        take_run = _checked(call_tool("mf.script.run", {
            "script": build_take_script(target_object_id, required_duration, run.takes),
            "applyMode": apply_mode,
            "confirm": request.confirm,
            "staged": staged,
        }))
        if not take_run["ok"]:
            run.errors.append(_error_of(take_run, "MF_ERR_SCRIPT_RUN", "Take metadata apply failed."))

    totals = run.diff.totals
    for row in run.diff.scripts:
        totals.keyframes_added += row.keyframes_added
        totals.keyframes_moved += row.keyframes_moved
        totals.keyframes_deleted += row.keyframes_deleted
        totals.tracks_touched += row.tracks_touched

    # ── Preview only ─────────────────────────────────────────────────
    if not request.confirm or run.errors:
        if not request.confirm and not any(e.code == "MF_ERR_CONFIRM_REQUIRED" for e in run.errors):
            run.errors.insert(0, ErrorInfo(
                code="MF_ERR_CONFIRM_REQUIRED",
                message="confirm=true is required to apply and commit.",
            ))
        if staged:
            call_tool("mf.project.discard", {})
        return run.fail()

    # ── Commit and export ────────────────────────────────────────────
    if staged:
        committed = _checked(call_tool("mf.project.commit", {}))
        if not committed["ok"]:
            run.errors.append(_error_of(committed, "MF_ERR_COMMIT", "Failed to commit staged project."))
            return run.fail()

    exported = _checked(call_tool("mf.export.projectJson", {}))
    if not exported["ok"]:
        run.errors.append(_error_of(exported, "MF_ERR_EXPORT_PROJECT", "Failed to export project JSON."))
        return run.fail()
    final_json = str(exported.get("json") or "")

    if request.unity:
        bind_target = (
            _resolve_unity_bind_path(project, target.select, target.bind_path) if target.select else None
        )
        final_json, unity_warnings = ensure_unity_bind_paths(final_json, target.select, bind_target)
        run.warnings.extend(unity_warnings)
        reloaded = _checked(call_tool("mf.project.loadJson", {"json": final_json, "staged": False}))
        if not reloaded["ok"]:
            run.errors.append(
                _error_of(reloaded, "MF_ERR_LOAD_JSON", "Failed to apply unity bindPath normalization.")
            )
            return run.fail()

    project_json_path = out_dir / "project.json"
    project_json_path.write_text(final_json, encoding="utf-8")
    written = {
        "output_project_hash": sha256_hex_from_string(final_json),
        "project_json_path": str(project_json_path),
        "project_json_bytes": len(final_json.encode("utf-8")),
    }

    bundle = _checked(call_tool("mf.export.bundle", {"outDir": str(out_dir)}))
    if not bundle["ok"]:
        run.errors.append(_error_of(bundle, "MF_ERR_EXPORT_BUNDLE", "Bundle export failed."))
        return run.fail(**written)

    out_zip_path = Path(str(bundle.get("path") or out_dir / "motionforge-bundle.zip")).resolve()
    bundle_bytes = out_zip_path.read_bytes()
    written.update(bundle_hash=sha256_hex_from_bytes(bundle_bytes), bundle_zip_bytes=len(bundle_bytes))
    try:
        manifest_raw = _read_zip_text(
            bundle_bytes, "motionforge-manifest.json", "Bundle is missing motionforge-manifest.json."
        )
    except (ValueError, zipfile.BadZipFile) as exc:
        run.errors.append(ErrorInfo(code="MF_ERR_EXPORT_BUNDLE", message=str(exc)))
        return run.fail(out_zip_path=str(out_zip_path), **written)

    manifest_path = out_dir / "motionforge-manifest.json"
    manifest_path.write_text(manifest_raw, encoding="utf-8")
    run.write_proof(
        False,
        bundle_zip_path=str(out_zip_path),
        manifest_path=str(manifest_path),
        manifest_bytes=len(manifest_raw.encode("utf-8")),
        **written,
    )
    logger.info("make-bundle wrote %s", out_zip_path)
    return MakeBundleOutput(
        ok=True,
        preview_only=False,
        out_zip_path=str(out_zip_path),
        manifest_path=str(manifest_path),
        proof_path=str(run.proof_path),
        warnings=run.warnings,
        errors=run.errors,
    )
