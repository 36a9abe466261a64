"""Best-effort notification fan-out for proposal lifecycle transitions.

Exactly one delivery attempt per recipient. A failing recipient is logged and
skipped; it never aborts the remaining deliveries nor the transition that
triggered them (those have already committed).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol

import structlog

from src.governance.models import Proposal, ProposalPriority, ProposalStatus
from src.infra.events.notification_events import (
    Notification,
    NotificationEventType,
)
from src.infra.events.notification_events import publish as publish_notification

LOGGER = structlog.get_logger(__name__)


class NotificationSink(Protocol):
    async def notify(
        self, user_id: str, event_type: NotificationEventType, payload: Mapping[str, Any]
    ) -> None: ...


class BusNotificationSink:
    """Deliver through the in-process per-user notification bus."""

    async def notify(
        self, user_id: str, event_type: NotificationEventType, payload: Mapping[str, Any]
    ) -> None:
        await publish_notification(
            Notification(user_id=user_id, event_type=event_type, payload=dict(payload))
        )


@dataclass(frozen=True, slots=True)
class FanoutReport:
    event_type: NotificationEventType
    delivered: int
    failed: int

    @property
    def attempted(self) -> int:
        return self.delivered + self.failed


def _priority_for(proposal: Proposal) -> str:
    if proposal.priority is ProposalPriority.URGENT:
        return ProposalPriority.HIGH.value
    return ProposalPriority.MEDIUM.value


def build_payload(proposal: Proposal, message: str) -> dict[str, Any]:
    return {
        "band_id": proposal.band_id,
        "proposal_id": str(proposal.proposal_id),
        "title": proposal.title,
        "message": message,
        "priority": _priority_for(proposal),
        "related_type": "PROPOSAL",
    }


class NotificationFanout:
    def __init__(self, sink: NotificationSink, *, enabled: bool = True) -> None:
        self._sink = sink
        self._enabled = enabled

    async def notify_new_proposal(
        self, proposal: Proposal, recipients: Iterable[str]
    ) -> FanoutReport:
        """Announce a freshly created proposal to eligible voters."""
        payload = build_payload(
            proposal, f"A new proposal needs your vote: {proposal.title}"
        )
        return await self._dispatch("PROPOSAL_CREATED", payload, recipients)

    async def notify_outcome(self, proposal: Proposal, recipients: Iterable[str]) -> FanoutReport:
        """Announce a terminal outcome to every active member."""
        if proposal.status is ProposalStatus.APPROVED:
            event_type: NotificationEventType = "PROPOSAL_APPROVED"
            message = f'Proposal "{proposal.title}" was approved'
        else:
            event_type = "PROPOSAL_REJECTED"
            message = f'Proposal "{proposal.title}" was rejected'
        return await self._dispatch(event_type, build_payload(proposal, message), recipients)

    async def _dispatch(
        self,
        event_type: NotificationEventType,
        payload: Mapping[str, Any],
        recipients: Iterable[str],
    ) -> FanoutReport:
        if not self._enabled:
            LOGGER.debug(
                "governance.notify.disabled",
                event_type=event_type,
                proposal_id=payload.get("proposal_id"),
            )
            return FanoutReport(event_type=event_type, delivered=0, failed=0)

        delivered = 0
        failed = 0
        for user_id in recipients:
            try:
                await self._sink.notify(user_id, event_type, payload)
            except Exception as exc:
                failed += 1
                LOGGER.warning(
                    "governance.notify.failed",
                    user_id=user_id,
                    event_type=event_type,
                    proposal_id=payload.get("proposal_id"),
                    error=str(exc),
                )
            else:
                delivered += 1

        LOGGER.info(
            "governance.notify.dispatched",
            event_type=event_type,
            proposal_id=payload.get("proposal_id"),
            delivered=delivered,
            failed=failed,
        )
        return FanoutReport(event_type=event_type, delivered=delivered, failed=failed)


__all__ = [
    "BusNotificationSink",
    "FanoutReport",
    "NotificationFanout",
    "NotificationSink",
    "build_payload",
]
