"""MotionForge animation script: parser, validator and plan compiler."""
from motionforge.script.compiler import CompiledScriptPlan, compile_script_to_plan
from motionforge.script.parser import parse_script
from motionforge.script.validator import ScriptValidationResult, validate_script

__all__ = [
    "CompiledScriptPlan",
    "ScriptValidationResult",
    "compile_script_to_plan",
    "parse_script",
    "validate_script",
]
