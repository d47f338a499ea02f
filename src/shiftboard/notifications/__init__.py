"""
Notification system for Shiftboard.

This package persists per-user notifications, resolves domain events to
templates, and fans deliveries out in bounded chunks to a push transport.

Public API:
    - NotificationDispatcher: Persists one notification and attempts one push
    - EventResolver: Resolves an event name to a template and dispatches it
    - PushTransport: Base class for push transports
    - FcmPushTransport: Firebase Cloud Messaging HTTP v1 transport
    - DisabledPushTransport: Transport used when push is switched off
    - chunk / dedupe_by_address / run_chunked: Batch fan-out primitives
"""

from __future__ import annotations

# Core types
from .types import BatchSendResult, DispatchResult, FanoutResult, PushMessage, TriggerResult

# Fan-out primitives
from .fanout import chunk, dedupe_by_address, run_chunked

# Transports
from .push import DisabledPushTransport, FcmPushTransport, PushTransport, build_push_transport

# Services
from .dispatch import NotificationDispatcher
from .events import EventResolver

__all__ = [
    # Core types
    "BatchSendResult",
    "DispatchResult",
    "FanoutResult",
    "PushMessage",
    "TriggerResult",
    # Fan-out
    "chunk",
    "dedupe_by_address",
    "run_chunked",
    # Transports
    "DisabledPushTransport",
    "FcmPushTransport",
    "PushTransport",
    "build_push_transport",
    # Services
    "NotificationDispatcher",
    "EventResolver",
]
