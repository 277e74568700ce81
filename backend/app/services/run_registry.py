"""In-process registry of running syncs, used for cancellation and same-process serialization."""

import asyncio
import logging
from typing import Dict, Optional

log = logging.getLogger(__name__)


class RunRegistry:
    def __init__(self):
        self._cancel_events: Dict[int, asyncio.Event] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock_for(self, mapping_id: int) -> asyncio.Lock:
        if mapping_id not in self._locks:
            self._locks[mapping_id] = asyncio.Lock()
        return self._locks[mapping_id]

    def register(self, mapping_id: int, cancel_event: Optional[asyncio.Event] = None) -> asyncio.Event:
        event = cancel_event or asyncio.Event()
        self._cancel_events[mapping_id] = event
        return event

    def unregister(self, mapping_id: int) -> None:
        self._cancel_events.pop(mapping_id, None)

    def is_running(self, mapping_id: int) -> bool:
        return mapping_id in self._cancel_events

    def cancel(self, mapping_id: int) -> bool:
        """Signal a running sync to stop after its current page. False when nothing is running here."""
        event = self._cancel_events.get(mapping_id)
        if event is None:
            return False
        event.set()
        log.info(f"Cancellation requested for mapping {mapping_id}")
        return True


# Global registry for the API process
run_registry = RunRegistry()
