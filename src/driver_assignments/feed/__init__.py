"""
Change Feed Module

Push (realtime websocket) and pull (polling) change channels, and the debounced
subscriber that turns their notifications into refetch signals.
"""

from driver_assignments.feed.channels import ChangeChannel
from driver_assignments.feed.channels import ChangeEvent
from driver_assignments.feed.channels import PollingChangeChannel
from driver_assignments.feed.channels import RealtimeChangeChannel
from driver_assignments.feed.subscriber import ChangeFeedSubscriber
from driver_assignments.feed.subscriber import ChangeFeedSubscription

__all__ = [
    "ChangeChannel",
    "ChangeEvent",
    "ChangeFeedSubscriber",
    "ChangeFeedSubscription",
    "PollingChangeChannel",
    "RealtimeChangeChannel",
]
