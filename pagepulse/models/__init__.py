from .pageview import DeviceType, Pageview
from .event import TrackedEvent

__all__ = [
    "DeviceType",
    "Pageview",
    "TrackedEvent",
]
