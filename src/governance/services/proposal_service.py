"""Proposal governance service implementation using Result pattern."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence, cast
from uuid import UUID

import structlog

from src.config.settings import GovernanceSettings, get_settings
from src.db.gateway.proposal_governance import ProposalGovernanceGateway
from src.db.pool import get_pool
from src.governance.models import (
    Member,
    Proposal,
    ProposalDraft,
    ProposalStatus,
    ProposalSummary,
    ProposalType,
    Tally,
    Vote,
    VoteChoice,
)
from src.governance.services.eligibility import DEFAULT_RESOLVER, EligibilityResolver
from src.governance.services.governance_errors import (
    AlreadyClosedError,
    GovernanceError,
    GovernanceErrorCode,
    InvalidConfigurationError,
    NotAuthorizedError,
    NotFoundError,
    VotingClosedError,
)
from src.governance.services.notification_fanout import (
    BusNotificationSink,
    NotificationFanout,
    NotificationSink,
)
from src.governance.services.resolution import (
    QuorumInfo,
    Resolution,
    apply_quorum_policy,
    evaluate_quorum,
    percentage,
    resolve_tally,
)
from src.governance.services.vote_ledger import VoteLedger, VoteReceipt
from src.infra.db.connection_context import store_connection
from src.infra.result import (
    Err,
    Error,
    Ok,
    Result,
    ValidationError,
    async_returns_result,
)
from src.infra.result import SystemError as InfraSystemError
from src.infra.types.db import PoolProtocol

LOGGER = structlog.get_logger(__name__)

_EXCEPTION_MAP: dict[type[Exception], type[Error]] = {
    ValueError: ValidationError,
    RuntimeError: InfraSystemError,
    Exception: GovernanceError,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class TallySummary:
    """Vote counts for display; percentages are over YES + NO only."""

    yes: int
    no: int
    abstain: int
    total: int
    eligible_voters: int
    yes_percentage: float
    no_percentage: float

    @classmethod
    def from_tally(cls, tally: Tally, *, eligible_voters: int) -> "TallySummary":
        return cls(
            yes=tally.yes,
            no=tally.no,
            abstain=tally.abstain,
            total=tally.total,
            eligible_voters=eligible_voters,
            yes_percentage=percentage(tally.yes, tally.decisive),
            no_percentage=percentage(tally.no, tally.decisive),
        )


@dataclass(frozen=True, slots=True)
class ProposalDetail:
    proposal: Proposal
    votes: Sequence[Vote]
    tally: TallySummary
    is_expired: bool


@dataclass(frozen=True, slots=True)
class CloseOutcome:
    proposal: Proposal
    tally: Tally
    quorum: QuorumInfo
    resolution: Resolution
    message: str

    @property
    def outcome(self) -> ProposalStatus:
        return self.resolution.outcome

    @property
    def configuration_error(self) -> InvalidConfigurationError | None:
        return self.resolution.configuration_error


def _membership_error(
    member: Member | None, *, band_id: str, action: str
) -> NotAuthorizedError | None:
    """Missing or non-ACTIVE membership; role checks are left to the caller."""
    if member is None or member.band_id != band_id:
        return NotAuthorizedError(
            f"You must be a member of this band to {action}.",
            context={"band_id": band_id, "action": action},
        )
    if not member.is_active:
        return NotAuthorizedError(
            f"You must be an active member of this band to {action}.",
            error_code=GovernanceErrorCode.GOVERNANCE_NOT_AUTHORIZED_INACTIVE,
            context={
                "band_id": band_id,
                "user_id": member.user_id,
                "status": member.status,
                "action": action,
            },
        )
    return None


def _role_error(member: Member, *, action: str) -> NotAuthorizedError:
    return NotAuthorizedError(
        error_code=GovernanceErrorCode.GOVERNANCE_NOT_AUTHORIZED_ROLE,
        context={
            "band_id": member.band_id,
            "user_id": member.user_id,
            "role": member.role,
            "action": action,
        },
    )


class ProposalService:
    """Create, vote on, close and query band proposals.

    Every operation returns ``Result[T, Error]``: domain rejections are
    ``GovernanceError`` subclasses, an unavailable store yields
    ``DatabaseError`` or ``SystemError``.
    """

    def __init__(
        self,
        *,
        gateway: ProposalGovernanceGateway | None = None,
        sink: NotificationSink | None = None,
        eligibility: EligibilityResolver | None = None,
        settings: GovernanceSettings | None = None,
        pool: PoolProtocol | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._gateway = gateway or ProposalGovernanceGateway(schema=self._settings.db_schema)
        self._ledger = VoteLedger(self._gateway)
        self._eligibility = eligibility or DEFAULT_RESOLVER
        self._fanout = NotificationFanout(
            sink or BusNotificationSink(),
            enabled=self._settings.notifications_enabled,
        )
        self._pool = pool
        self._clock = clock or _utcnow

    def _get_pool(self) -> PoolProtocol:
        if self._pool is not None:
            return self._pool
        return cast(PoolProtocol, get_pool())

    # --- Lifecycle ---
    @async_returns_result(GovernanceError, exception_map=_EXCEPTION_MAP)
    async def create_proposal(
        self,
        *,
        band_id: str,
        creator_id: str,
        draft: ProposalDraft,
    ) -> Result[Proposal, Error]:
        """Open a proposal; its deadline is fixed here from the band's voting period."""
        now = self._clock()
        async with store_connection(self._get_pool(), operation="proposal.create") as conn:
            band = await self._gateway.fetch_band_config(conn, band_id=band_id)
            if band is None:
                return Err(
                    NotFoundError(
                        "Band not found.",
                        error_code=GovernanceErrorCode.GOVERNANCE_NOT_FOUND_BAND,
                        context={"band_id": band_id},
                    )
                )
            member = await self._gateway.fetch_member(conn, band_id=band_id, user_id=creator_id)
            denied = _membership_error(member, band_id=band_id, action="create proposals")
            if denied is not None:
                return Err(denied)
            assert member is not None
            if not self._eligibility.can_create(band, member):
                return Err(_role_error(member, action="create proposals"))
            if band.voting_period_days < 1:
                return Err(
                    InvalidConfigurationError(
                        "Band voting period must be at least one day.",
                        context={
                            "band_id": band_id,
                            "voting_period_days": band.voting_period_days,
                        },
                    )
                )

            voting_ends_at = now + timedelta(days=band.voting_period_days)
            async with conn.transaction():
                proposal = await self._gateway.create_proposal(
                    conn,
                    band_id=band_id,
                    created_by_id=creator_id,
                    draft=draft,
                    voting_ends_at=voting_ends_at,
                    created_at=now,
                )
                recipients = await self._gateway.list_active_member_ids(
                    conn,
                    band_id=band_id,
                    roles=self._eligibility.voter_role_list(),
                    exclude_user_id=creator_id,
                )

        LOGGER.info(
            "governance.proposal.created",
            proposal_id=str(proposal.proposal_id),
            band_id=band_id,
            created_by_id=creator_id,
            voting_ends_at=proposal.voting_ends_at.isoformat(),
        )
        await self._fanout.notify_new_proposal(proposal, recipients)
        return Ok(proposal)

    @async_returns_result(GovernanceError, exception_map=_EXCEPTION_MAP)
    async def cast_vote(
        self,
        *,
        proposal_id: UUID,
        voter_id: str,
        vote: VoteChoice | str,
        comment: str | None = None,
    ) -> Result[VoteReceipt, Error]:
        """Record or overwrite the voter's ballot while the proposal accepts votes."""
        try:
            choice = VoteChoice(vote)
        except ValueError:
            return Err(
                ValidationError(
                    "Invalid vote value.",
                    context={"vote": str(vote), "valid_choices": [c.value for c in VoteChoice]},
                )
            )

        now = self._clock()
        async with store_connection(self._get_pool(), operation="proposal.vote") as conn:
            proposal = await self._gateway.fetch_proposal(conn, proposal_id=proposal_id)
            if proposal is None:
                return Err(NotFoundError(context={"proposal_id": str(proposal_id)}))
            if proposal.status is not ProposalStatus.OPEN:
                return Err(
                    VotingClosedError(
                        "This proposal is no longer open for voting.",
                        context={
                            "proposal_id": str(proposal_id),
                            "status": proposal.status.value,
                        },
                    )
                )
            if not proposal.accepts_votes(now):
                return Err(
                    VotingClosedError(
                        error_code=GovernanceErrorCode.GOVERNANCE_VOTING_DEADLINE_PASSED,
                        context={
                            "proposal_id": str(proposal_id),
                            "voting_ends_at": proposal.voting_ends_at.isoformat(),
                        },
                    )
                )

            band = await self._gateway.fetch_band_config(conn, band_id=proposal.band_id)
            if band is None:
                return Err(
                    NotFoundError(
                        "Band not found.",
                        error_code=GovernanceErrorCode.GOVERNANCE_NOT_FOUND_BAND,
                        context={"band_id": proposal.band_id},
                    )
                )
            member = await self._gateway.fetch_member(
                conn, band_id=proposal.band_id, user_id=voter_id
            )
            denied = _membership_error(member, band_id=proposal.band_id, action="vote")
            if denied is not None:
                return Err(denied)
            assert member is not None
            if not self._eligibility.can_vote(band, member):
                return Err(_role_error(member, action="vote"))

            receipt = await self._ledger.upsert_vote(
                conn,
                proposal_id=proposal_id,
                voter_id=voter_id,
                choice=choice,
                comment=comment,
                now=now,
            )
            if receipt is None:
                # Closed or expired between the read above and the upsert.
                return Err(
                    VotingClosedError(
                        context={"proposal_id": str(proposal_id), "user_id": voter_id}
                    )
                )
            return Ok(receipt)

    @async_returns_result(GovernanceError, exception_map=_EXCEPTION_MAP)
    async def close_proposal(
        self,
        *,
        proposal_id: UUID,
        closer_id: str,
    ) -> Result[CloseOutcome, Error]:
        """Resolve an OPEN proposal into APPROVED or REJECTED.

        The row is locked and the status update is conditional on OPEN, so of
        several concurrent closers exactly one commits a resolution; the rest
        receive ``AlreadyClosedError``. Outcome notifications go out after
        the commit.
        """
        now = self._clock()
        async with store_connection(self._get_pool(), operation="proposal.close") as conn:
            async with conn.transaction():
                proposal = await self._gateway.fetch_proposal(
                    conn, proposal_id=proposal_id, for_update=True
                )
                if proposal is None:
                    return Err(NotFoundError(context={"proposal_id": str(proposal_id)}))
                if proposal.status is not ProposalStatus.OPEN:
                    return Err(
                        AlreadyClosedError(
                            context={
                                "proposal_id": str(proposal_id),
                                "status": proposal.status.value,
                            }
                        )
                    )

                member = await self._gateway.fetch_member(
                    conn, band_id=proposal.band_id, user_id=closer_id
                )
                denied = _membership_error(
                    member, band_id=proposal.band_id, action="close proposals"
                )
                if denied is not None:
                    return Err(denied)
                assert member is not None
                if not self._eligibility.can_close(proposal, member):
                    return Err(_role_error(member, action="close proposals"))

                band = await self._gateway.fetch_band_config(conn, band_id=proposal.band_id)
                if band is None:
                    return Err(
                        NotFoundError(
                            "Band not found.",
                            error_code=GovernanceErrorCode.GOVERNANCE_NOT_FOUND_BAND,
                            context={"band_id": proposal.band_id},
                        )
                    )

                tally = await self._ledger.tally(conn, proposal_id=proposal_id)
                eligible_voters = await self._gateway.count_active_members(
                    conn,
                    band_id=proposal.band_id,
                    roles=self._eligibility.voter_role_list(),
                )
                quorum = evaluate_quorum(
                    tally,
                    eligible_voters=eligible_voters,
                    required_percentage=band.quorum_percentage,
                )
                resolution = apply_quorum_policy(
                    resolve_tally(tally, band.voting_method),
                    quorum,
                    enforce=self._settings.enforce_quorum,
                )

                closed = await self._gateway.close_proposal(
                    conn,
                    proposal_id=proposal_id,
                    status=resolution.outcome,
                    closed_at=now,
                )
                if closed is None:
                    return Err(AlreadyClosedError(context={"proposal_id": str(proposal_id)}))
                recipients = await self._gateway.list_active_member_ids(
                    conn, band_id=proposal.band_id
                )

        LOGGER.info(
            "governance.proposal.closed",
            proposal_id=str(proposal_id),
            band_id=closed.band_id,
            closed_by=closer_id,
            outcome=resolution.outcome.value,
            method=resolution.method,
            yes=tally.yes,
            no=tally.no,
            abstain=tally.abstain,
            quorum_met=quorum.met,
        )
        await self._fanout.notify_outcome(closed, recipients)
        message = "Proposal approved" if resolution.approved else "Proposal rejected"
        return Ok(
            CloseOutcome(
                proposal=closed,
                tally=tally,
                quorum=quorum,
                resolution=resolution,
                message=message,
            )
        )

    # --- Queries ---
    @async_returns_result(GovernanceError, exception_map=_EXCEPTION_MAP)
    async def get_proposal(self, *, proposal_id: UUID) -> Result[ProposalDetail, Error]:
        now = self._clock()
        async with store_connection(self._get_pool(), operation="proposal.get") as conn:
            proposal = await self._gateway.fetch_proposal(conn, proposal_id=proposal_id)
            if proposal is None:
                return Err(NotFoundError(context={"proposal_id": str(proposal_id)}))
            votes = await self._ledger.votes(conn, proposal_id=proposal_id)
            eligible_voters = await self._gateway.count_active_members(
                conn,
                band_id=proposal.band_id,
                roles=self._eligibility.voter_role_list(),
            )
        tally = Tally.from_votes(votes)
        return Ok(
            ProposalDetail(
                proposal=proposal,
                votes=votes,
                tally=TallySummary.from_tally(tally, eligible_voters=eligible_voters),
                is_expired=proposal.is_expired(now),
            )
        )

    @async_returns_result(GovernanceError, exception_map=_EXCEPTION_MAP)
    async def list_pending_votes_for_user(self, *, user_id: str) -> Result[list[Proposal], Error]:
        """OPEN, unexpired proposals the user may vote on but has not, soonest deadline first."""
        now = self._clock()
        async with store_connection(self._get_pool(), operation="proposal.pending") as conn:
            proposals = await self._gateway.list_pending_for_user(
                conn,
                user_id=user_id,
                voter_roles=self._eligibility.voter_role_list(),
                now=now,
            )
        return Ok(list(proposals))

    @async_returns_result(GovernanceError, exception_map=_EXCEPTION_MAP)
    async def list_band_proposals(
        self,
        *,
        band_id: str,
        status: ProposalStatus | None = None,
        proposal_type: ProposalType | None = None,
    ) -> Result[list[ProposalSummary], Error]:
        async with store_connection(self._get_pool(), operation="proposal.list_band") as conn:
            summaries = await self._gateway.list_band_proposals(
                conn, band_id=band_id, status=status, proposal_type=proposal_type
            )
        return Ok(list(summaries))

    @async_returns_result(GovernanceError, exception_map=_EXCEPTION_MAP)
    async def get_my_vote(self, *, proposal_id: UUID, user_id: str) -> Result[Vote | None, Error]:
        async with store_connection(self._get_pool(), operation="proposal.my_vote") as conn:
            proposal = await self._gateway.fetch_proposal(conn, proposal_id=proposal_id)
            if proposal is None:
                return Err(NotFoundError(context={"proposal_id": str(proposal_id)}))
            vote = await self._ledger.votes_by_user(
                conn, proposal_id=proposal_id, voter_id=user_id
            )
        return Ok(vote)


__all__ = [
    "CloseOutcome",
    "ProposalDetail",
    "ProposalService",
    "TallySummary",
]
