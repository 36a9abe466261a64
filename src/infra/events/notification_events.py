from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping

import structlog

LOGGER = structlog.get_logger(__name__)

NotificationEventType = Literal[
    "PROPOSAL_CREATED",
    "PROPOSAL_APPROVED",
    "PROPOSAL_REJECTED",
]


@dataclass(frozen=True, slots=True)
class Notification:
    user_id: str
    event_type: NotificationEventType
    payload: Mapping[str, Any] = field(default_factory=dict)


Subscriber = Callable[[Notification], Awaitable[None]]
UnsubscribeCallback = Callable[[], Awaitable[None]]

_subscribers: dict[str, set[Subscriber]] = {}
# Strong references to in-flight callback tasks until they finish.
_pending: set["asyncio.Task[None]"] = set()
_lock = asyncio.Lock()


async def subscribe(user_id: str, callback: Subscriber) -> UnsubscribeCallback:
    """Register a subscriber for a user's notifications and return an unsubscribe coroutine."""
    async with _lock:
        listeners = _subscribers.setdefault(user_id, set())
        listeners.add(callback)
        listener_count = len(listeners)
    LOGGER.debug(
        "notification.events.subscribe",
        user_id=user_id,
        listeners=listener_count,
    )

    async def _unsubscribe() -> None:
        remaining = 0
        async with _lock:
            listeners = _subscribers.get(user_id)
            if not listeners:
                return
            listeners.discard(callback)
            remaining = len(listeners)
            if not listeners:
                _subscribers.pop(user_id, None)
        LOGGER.debug(
            "notification.events.unsubscribe",
            user_id=user_id,
            listeners=remaining,
        )

    return _unsubscribe


async def publish(notification: Notification) -> int:
    """Deliver a notification to the user's subscribers; returns how many were scheduled."""
    async with _lock:
        listeners = list(_subscribers.get(notification.user_id, ()))
    if not listeners:
        return 0

    LOGGER.debug(
        "notification.events.publish",
        user_id=notification.user_id,
        event_type=notification.event_type,
        proposal_id=notification.payload.get("proposal_id"),
    )
    for callback in listeners:
        task = asyncio.create_task(_invoke(callback, notification))
        _pending.add(task)
        task.add_done_callback(_pending.discard)
    return len(listeners)


async def _invoke(callback: Subscriber, notification: Notification) -> None:
    try:
        await callback(notification)
    except Exception as exc:
        LOGGER.warning(
            "notification.events.callback_error",
            error=str(exc),
            user_id=notification.user_id,
            event_type=notification.event_type,
        )


def pending_deliveries() -> int:
    """Number of callback tasks scheduled by ``publish`` that have not finished."""
    return len(_pending)


def reset_subscribers() -> None:
    """Drop every registered subscriber (test isolation)."""
    _subscribers.clear()
    _pending.clear()


__all__ = [
    "Notification",
    "NotificationEventType",
    "pending_deliveries",
    "publish",
    "reset_subscribers",
    "subscribe",
]
