"""Chat turns: streaming a reply into a session.

Usage:
    from ensu.chat import StreamCoordinator

    coordinator = StreamCoordinator(system_prompt=config.defaults.system_prompt)
    run = await coordinator.run(provider, store, "Hello")
    async for event in run:
        ...
    outcome = await run.wait()
"""

from .coordinator import StreamCoordinator, StreamRun
from .models import FinishReason, StreamEvent, TurnOutcome

__all__ = [
    "StreamCoordinator",
    "StreamRun",
    "StreamEvent",
    "FinishReason",
    "TurnOutcome",
]
