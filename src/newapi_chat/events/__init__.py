"""Engine event bus."""

from newapi_chat.events.bus import EventBus

__all__ = ["EventBus"]
