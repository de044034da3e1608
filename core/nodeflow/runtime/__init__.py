"""Runtime plumbing shared by the executor and the storage manager."""

from nodeflow.runtime.event_bus import EventBus, EventType, Subscription, WorkflowEvent

__all__ = ["EventBus", "EventType", "Subscription", "WorkflowEvent"]
