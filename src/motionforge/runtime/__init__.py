from motionforge.runtime.errors import RuntimeCommandError, as_runtime_error
from motionforge.runtime.events import RuntimeEvent, RuntimeEventLog
from motionforge.runtime.runtime import (
    CommandResult,
    MotionForgeRuntime,
    RestorePoint,
    read_zip_entry,
)

__all__ = [
    "CommandResult",
    "MotionForgeRuntime",
    "RestorePoint",
    "RuntimeCommandError",
    "RuntimeEvent",
    "RuntimeEventLog",
    "as_runtime_error",
    "read_zip_entry",
]
