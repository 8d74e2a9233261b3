from motionforge.pipeline.hashing import (
    sha256_hex_from_bytes,
    sha256_hex_from_string,
    stable_json_stringify,
    to_stable_json_value,
)
from motionforge.pipeline.make_bundle import (
    MakeBundleInput,
    MakeBundleOutput,
    ProofDocument,
    Tooling,
    derive_takes_from_goal,
    ensure_unity_bind_paths,
    run_make_bundle_pipeline,
)

__all__ = [
    "MakeBundleInput",
    "MakeBundleOutput",
    "ProofDocument",
    "Tooling",
    "derive_takes_from_goal",
    "ensure_unity_bind_paths",
    "run_make_bundle_pipeline",
    "sha256_hex_from_bytes",
    "sha256_hex_from_string",
    "stable_json_stringify",
    "to_stable_json_value",
]
