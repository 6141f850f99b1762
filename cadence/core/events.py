"""
Cadence Event System — types and constants.

Every schedule state transition produces an event.
Events flow through the middleware chain, then to subscribers.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any


class EventType:
    """
    Event type constants.

    Hierarchical naming: "category:action"
    Supports wildcard matching: "schedule:*" matches "schedule:fired"
    """

    # System lifecycle
    SYSTEM_START = "system:start"
    SYSTEM_STOP = "system:stop"

    # Timer lifecycle
    SCHEDULE_ARMED = "schedule:armed"
    SCHEDULE_CANCELLED = "schedule:cancelled"
    SCHEDULE_DORMANT = "schedule:dormant"

    # Execution outcomes
    SCHEDULE_FIRED = "schedule:fired"
    SCHEDULE_EXECUTED = "schedule:executed"
    SCHEDULE_SKIPPED = "schedule:skipped"
    SCHEDULE_WAITING = "schedule:waiting"
    SCHEDULE_INTERRUPTED = "schedule:interrupted"
    SCHEDULE_FAILED = "schedule:failed"

    # Schedule list management
    SCHEDULE_TOGGLED = "schedule:toggled"
    SCHEDULES_LOADED = "schedules:loaded"
    SCHEDULES_UPDATED = "schedules:updated"
    STORE_ERROR = "schedules:store_error"

    # Wildcard
    ALL = "*"


@dataclass(slots=True)
class Event:
    """
    A single event in the Cadence system.

    - Typed (hierarchical string)
    - Timestamped
    - Human-readable message for log sinks
    - Extensible (data dict for event-specific payload)
    """

    type: str
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)
