"""Data models for on-device model loading."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ModelLoadState(str, Enum):
    """Load phases, in the only order a single load may move through them.

    ``ERROR`` and ``CANCELLED`` are absorbing: reachable from any
    non-terminal phase and left only when a fresh load is requested.
    """

    IDLE = "idle"
    INITIALIZING = "initializing"
    DOWNLOADING = "downloading"
    LOADING = "loading"
    COMPILING = "compiling"
    GPU_SETUP = "gpu_setup"
    READY = "ready"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ModelLoadState.ERROR, ModelLoadState.CANCELLED)

    @property
    def is_loading(self) -> bool:
        return self in _IN_FLIGHT


FORWARD_ORDER = (
    ModelLoadState.IDLE,
    ModelLoadState.INITIALIZING,
    ModelLoadState.DOWNLOADING,
    ModelLoadState.LOADING,
    ModelLoadState.COMPILING,
    ModelLoadState.GPU_SETUP,
    ModelLoadState.READY,
)

_IN_FLIGHT = frozenset(FORWARD_ORDER[1:-1])

PHASE_LABELS = {
    ModelLoadState.IDLE: "Idle",
    ModelLoadState.INITIALIZING: "Initializing",
    ModelLoadState.DOWNLOADING: "Downloading",
    ModelLoadState.LOADING: "Loading",
    ModelLoadState.COMPILING: "Compiling",
    ModelLoadState.GPU_SETUP: "GPU Setup",
    ModelLoadState.READY: "Ready",
    ModelLoadState.ERROR: "Error",
    ModelLoadState.CANCELLED: "Cancelled",
}


class LoadResult(str, Enum):
    """Outcome of ``ensure_loaded`` that is not an error."""

    READY = "ready"
    CANCELLED = "cancelled"


class LoadProgress(BaseModel):
    """Snapshot of a model load, as surfaced to UI collaborators."""

    model_config = ConfigDict(frozen=True)

    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    phase: ModelLoadState = ModelLoadState.IDLE
    phase_text: str = Field(default="", description="Progress text reported by the engine")
    model_id: str | None = None
    size_mb: int | None = Field(default=None, description="Approximate model size when known")

    @property
    def percent(self) -> int:
        return round(self.progress * 100)

    @property
    def status_text(self) -> str:
        """One-line status such as ``Downloading · 400/1000 MB``."""
        label = PHASE_LABELS[self.phase]
        if self.size_mb:
            if self.phase is ModelLoadState.DOWNLOADING:
                downloaded = round(self.size_mb * self.progress)
                return f"{label} · {downloaded}/{self.size_mb} MB"
            return f"{label} · {self.percent}% · ~{self.size_mb} MB"
        return f"{label} · {self.percent}%"
