"""Activity tracking for PhaseForge runs."""

from .activity_logger import ActivityEvent, ActivityLogger, EventType, new_session_id

__all__ = ["ActivityEvent", "ActivityLogger", "EventType", "new_session_id"]
