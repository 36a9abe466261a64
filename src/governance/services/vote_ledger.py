"""Vote ledger: at most one vote per (proposal, member), last write wins.

Uniqueness lives in the store (``UNIQUE (proposal_id, user_id)`` plus an
``ON CONFLICT`` upsert); the ledger never reads-then-writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog

from src.db.gateway.proposal_governance import ProposalGovernanceGateway
from src.governance.models import Tally, Vote, VoteChoice
from src.infra.types.db import ConnectionProtocol

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class VoteReceipt:
    """``created`` is False when an earlier vote by the same member was overwritten."""

    proposal_id: UUID
    user_id: str
    vote: VoteChoice
    created: bool


class VoteLedger:
    def __init__(self, gateway: ProposalGovernanceGateway) -> None:
        self._gateway = gateway

    async def upsert_vote(
        self,
        connection: ConnectionProtocol,
        *,
        proposal_id: UUID,
        voter_id: str,
        choice: VoteChoice,
        comment: str | None,
        now: datetime,
    ) -> VoteReceipt | None:
        """Record the vote; None when the proposal stopped accepting votes."""
        created = await self._gateway.upsert_vote(
            connection,
            proposal_id=proposal_id,
            user_id=voter_id,
            choice=choice,
            comment=comment,
            now=now,
        )
        if created is None:
            return None
        LOGGER.info(
            "governance.vote.recorded",
            proposal_id=str(proposal_id),
            user_id=voter_id,
            vote=choice.value,
            created=created,
        )
        return VoteReceipt(
            proposal_id=proposal_id, user_id=voter_id, vote=choice, created=created
        )

    async def tally(self, connection: ConnectionProtocol, *, proposal_id: UUID) -> Tally:
        return await self._gateway.fetch_tally(connection, proposal_id=proposal_id)

    async def votes(self, connection: ConnectionProtocol, *, proposal_id: UUID) -> list[Vote]:
        return list(await self._gateway.fetch_votes(connection, proposal_id=proposal_id))

    async def votes_by_user(
        self, connection: ConnectionProtocol, *, proposal_id: UUID, voter_id: str
    ) -> Vote | None:
        return await self._gateway.fetch_vote(
            connection, proposal_id=proposal_id, user_id=voter_id
        )


__all__ = ["VoteLedger", "VoteReceipt"]
