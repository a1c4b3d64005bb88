"""Best-effort classification of engine progress text into load phases.

Engines describe progress in free text ("Fetching param cache[3/40]",
"Loading model from cache", ...). The table below maps marker substrings
to phases; the first match wins and text without any marker is treated
as generic loading.
"""

from .models import FORWARD_ORDER, ModelLoadState

PHASE_MARKERS: tuple[tuple[str, ModelLoadState], ...] = (
    ("fetch", ModelLoadState.DOWNLOADING),
    ("download", ModelLoadState.DOWNLOADING),
    ("compil", ModelLoadState.COMPILING),
    ("shader", ModelLoadState.GPU_SETUP),
    ("gpu", ModelLoadState.GPU_SETUP),
    ("load", ModelLoadState.LOADING),
)

UNKNOWN_PHASE = ModelLoadState.LOADING


def classify_phase(text: str) -> ModelLoadState:
    """Map one progress message to a load phase."""
    lowered = text.lower()
    for marker, phase in PHASE_MARKERS:
        if marker in lowered:
            return phase
    return UNKNOWN_PHASE


def advance(current: ModelLoadState, candidate: ModelLoadState) -> ModelLoadState:
    """Return the later of two forward phases; a load never moves backwards."""
    if current not in FORWARD_ORDER or candidate not in FORWARD_ORDER:
        return candidate
    if FORWARD_ORDER.index(candidate) > FORWARD_ORDER.index(current):
        return candidate
    return current
