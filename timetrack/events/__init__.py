from timetrack.events.event_bus import EventBus
from timetrack.events.event_bus import EventHandler
from timetrack.events.event_bus import SyncEvent

__all__ = ["EventBus", "EventHandler", "SyncEvent"]
