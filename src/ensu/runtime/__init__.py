"""On-device model runtime: engine seams and the model lifecycle."""

from .base import ModelHandle, ModelRuntime, ProgressReport
from .lifecycle import ModelLifecycleManager
from .models import LoadProgress, LoadResult, ModelLoadState
from .phases import classify_phase

__all__ = [
    "LoadProgress",
    "LoadResult",
    "ModelHandle",
    "ModelLifecycleManager",
    "ModelLoadState",
    "ModelRuntime",
    "ProgressReport",
    "classify_phase",
]
