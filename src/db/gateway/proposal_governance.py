from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Sequence, cast
from uuid import UUID

from src.governance.models import (
    BandGovernanceConfig,
    Member,
    Proposal,
    ProposalDraft,
    ProposalPriority,
    ProposalStatus,
    ProposalSummary,
    ProposalType,
    Tally,
    Vote,
    VoteChoice,
)
from src.infra.types.db import ConnectionProtocol

_PROPOSAL_COLUMNS = (
    "proposal_id, band_id, created_by_id, title, description, type, priority, details, "
    "status, voting_ends_at, closed_at, created_at, updated_at"
)
_PREFIXED_PROPOSAL_COLUMNS = ", ".join(f"p.{c}" for c in _PROPOSAL_COLUMNS.split(", "))
_VOTE_COLUMNS = "proposal_id, user_id, vote, comment, created_at, updated_at"


def _band_config_from_row(row: Mapping[str, Any]) -> BandGovernanceConfig:
    return BandGovernanceConfig(
        band_id=str(row["band_id"]),
        voting_method=str(row["voting_method"]),
        voting_period_days=int(row["voting_period_days"]),
        who_can_create_proposals=frozenset(row["who_can_create_proposals"] or ()),
        who_can_approve=frozenset(row["who_can_approve"] or ()),
        quorum_percentage=int(row.get("quorum_percentage") or 0),
    )


def _member_from_row(row: Mapping[str, Any]) -> Member:
    return Member(
        user_id=str(row["user_id"]),
        band_id=str(row["band_id"]),
        role=str(row["role"]),
        status=str(row["status"]),
    )


def _proposal_from_row(row: Mapping[str, Any]) -> Proposal:
    return Proposal(
        proposal_id=cast(UUID, row["proposal_id"]),
        band_id=str(row["band_id"]),
        created_by_id=str(row["created_by_id"]),
        title=str(row["title"]),
        description=str(row["description"]),
        type=ProposalType(row["type"]),
        priority=ProposalPriority(row["priority"]),
        details=dict(row["details"] or {}),
        status=ProposalStatus(row["status"]),
        voting_ends_at=row["voting_ends_at"],
        closed_at=row["closed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _vote_from_row(row: Mapping[str, Any]) -> Vote:
    return Vote(
        proposal_id=cast(UUID, row["proposal_id"]),
        user_id=str(row["user_id"]),
        vote=VoteChoice(row["vote"]),
        comment=cast(str | None, row["comment"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class ProposalGovernanceGateway:
    """Encapsulate SQL for bands' governance config, members, proposals and votes."""

    def __init__(self, *, schema: str = "governance") -> None:
        self._schema = schema

    # --- Band configuration & membership (read-only) ---
    async def fetch_band_config(
        self, connection: ConnectionProtocol, *, band_id: str
    ) -> BandGovernanceConfig | None:
        row = await connection.fetchrow(
            f"""
                SELECT band_id, voting_method, voting_period_days,
                       who_can_create_proposals, who_can_approve, quorum_percentage
                FROM {self._schema}.band_settings
                WHERE band_id = $1
            """,
            band_id,
        )
        if row is None:
            return None
        return _band_config_from_row(row)

    async def fetch_member(
        self, connection: ConnectionProtocol, *, band_id: str, user_id: str
    ) -> Member | None:
        row = await connection.fetchrow(
            f"""
                SELECT user_id, band_id, role, status
                FROM {self._schema}.band_members
                WHERE band_id = $1 AND user_id = $2
            """,
            band_id,
            user_id,
        )
        if row is None:
            return None
        return _member_from_row(row)

    async def list_active_member_ids(
        self,
        connection: ConnectionProtocol,
        *,
        band_id: str,
        roles: Sequence[str] | None = None,
        exclude_user_id: str | None = None,
    ) -> Sequence[str]:
        """ACTIVE members of a band, optionally restricted to ``roles``."""
        rows = await connection.fetch(
            f"""
                SELECT user_id
                FROM {self._schema}.band_members
                WHERE band_id = $1
                  AND status = 'ACTIVE'
                  AND ($2::text[] IS NULL OR role = ANY($2::text[]))
                  AND ($3::text IS NULL OR user_id <> $3::text)
                ORDER BY user_id
            """,
            band_id,
            list(roles) if roles is not None else None,
            exclude_user_id,
        )
        return [str(r["user_id"]) for r in rows]

    async def count_active_members(
        self, connection: ConnectionProtocol, *, band_id: str, roles: Sequence[str]
    ) -> int:
        val = await connection.fetchval(
            f"""
                SELECT COUNT(*)
                FROM {self._schema}.band_members
                WHERE band_id = $1 AND status = 'ACTIVE' AND role = ANY($2::text[])
            """,
            band_id,
            list(roles),
        )
        return int(val or 0)

    # --- Proposals ---
    async def create_proposal(
        self,
        connection: ConnectionProtocol,
        *,
        band_id: str,
        created_by_id: str,
        draft: ProposalDraft,
        voting_ends_at: datetime,
        created_at: datetime,
    ) -> Proposal:
        row = await connection.fetchrow(
            f"""
                INSERT INTO {self._schema}.proposals (
                    band_id, created_by_id, title, description, type, priority,
                    details, status, voting_ends_at, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, 'OPEN', $8, $9, $9)
                RETURNING {_PROPOSAL_COLUMNS}
            """,
            band_id,
            created_by_id,
            draft.title,
            draft.description,
            draft.type.value,
            draft.priority.value,
            dict(draft.details),
            voting_ends_at,
            created_at,
        )
        assert row is not None
        return _proposal_from_row(row)

    async def fetch_proposal(
        self,
        connection: ConnectionProtocol,
        *,
        proposal_id: UUID,
        for_update: bool = False,
    ) -> Proposal | None:
        lock = " FOR UPDATE" if for_update else ""
        row = await connection.fetchrow(
            f"SELECT {_PROPOSAL_COLUMNS} FROM {self._schema}.proposals "
            f"WHERE proposal_id = $1{lock}",
            proposal_id,
        )
        if row is None:
            return None
        return _proposal_from_row(row)

    async def close_proposal(
        self,
        connection: ConnectionProtocol,
        *,
        proposal_id: UUID,
        status: ProposalStatus,
        closed_at: datetime,
    ) -> Proposal | None:
        """Transition OPEN -> ``status``; returns None when the row was no longer OPEN."""
        if not status.is_terminal or status is ProposalStatus.CLOSED:
            raise ValueError(f"Cannot close a proposal into status {status.value}")
        row = await connection.fetchrow(
            f"""
                UPDATE {self._schema}.proposals
                SET status = $2, closed_at = $3, updated_at = $3
                WHERE proposal_id = $1 AND status = 'OPEN'
                RETURNING {_PROPOSAL_COLUMNS}
            """,
            proposal_id,
            status.value,
            closed_at,
        )
        if row is None:
            return None
        return _proposal_from_row(row)

    async def list_band_proposals(
        self,
        connection: ConnectionProtocol,
        *,
        band_id: str,
        status: ProposalStatus | None = None,
        proposal_type: ProposalType | None = None,
    ) -> Sequence[ProposalSummary]:
        rows = await connection.fetch(
            f"""
                SELECT {_PREFIXED_PROPOSAL_COLUMNS},
                       (SELECT COUNT(*) FROM {self._schema}.votes v
                        WHERE v.proposal_id = p.proposal_id) AS vote_count
                FROM {self._schema}.proposals p
                WHERE p.band_id = $1
                  AND ($2::text IS NULL OR p.status = $2::text)
                  AND ($3::text IS NULL OR p.type = $3::text)
                ORDER BY p.created_at DESC
            """,
            band_id,
            status.value if status is not None else None,
            proposal_type.value if proposal_type is not None else None,
        )
        return [
            ProposalSummary(proposal=_proposal_from_row(r), vote_count=int(r["vote_count"]))
            for r in rows
        ]

    async def list_pending_for_user(
        self,
        connection: ConnectionProtocol,
        *,
        user_id: str,
        voter_roles: Sequence[str],
        now: datetime,
    ) -> Sequence[Proposal]:
        """OPEN, not-yet-expired proposals in the user's voting bands without their vote."""
        rows = await connection.fetch(
            f"""
                SELECT {_PREFIXED_PROPOSAL_COLUMNS}
                FROM {self._schema}.proposals p
                JOIN {self._schema}.band_members m
                  ON m.band_id = p.band_id AND m.user_id = $1
                WHERE m.status = 'ACTIVE'
                  AND m.role = ANY($2::text[])
                  AND p.status = 'OPEN'
                  AND p.voting_ends_at > $3
                  AND NOT EXISTS (
                      SELECT 1 FROM {self._schema}.votes v
                      WHERE v.proposal_id = p.proposal_id AND v.user_id = $1
                  )
                ORDER BY p.voting_ends_at ASC, p.proposal_id ASC
            """,
            user_id,
            list(voter_roles),
            now,
        )
        return [_proposal_from_row(r) for r in rows]

    # --- Votes ---
    async def upsert_vote(
        self,
        connection: ConnectionProtocol,
        *,
        proposal_id: UUID,
        user_id: str,
        choice: VoteChoice,
        comment: str | None,
        now: datetime,
    ) -> bool | None:
        """Insert or overwrite the (proposal, user) vote while voting is open.

        Returns True for a fresh vote, False for an overwrite, None when the
        proposal is no longer OPEN or its deadline has passed. ``FOR SHARE``
        makes a concurrent close wait for (or block) the vote.
        """
        row = await connection.fetchrow(
            f"""
                WITH open_proposal AS (
                    SELECT proposal_id
                    FROM {self._schema}.proposals
                    WHERE proposal_id = $1
                      AND status = 'OPEN'
                      AND voting_ends_at > $5
                    FOR SHARE
                )
                INSERT INTO {self._schema}.votes AS v (
                    proposal_id, user_id, vote, comment, created_at, updated_at
                )
                SELECT op.proposal_id, $2, $3, $4, $5, $5
                FROM open_proposal op
                ON CONFLICT (proposal_id, user_id) DO UPDATE
                SET vote = EXCLUDED.vote,
                    comment = EXCLUDED.comment,
                    updated_at = EXCLUDED.updated_at
                RETURNING (xmax = 0) AS created
            """,
            proposal_id,
            user_id,
            choice.value,
            comment,
            now,
        )
        if row is None:
            return None
        return bool(row["created"])

    async def fetch_tally(self, connection: ConnectionProtocol, *, proposal_id: UUID) -> Tally:
        row = await connection.fetchrow(
            f"""
                SELECT
                    COUNT(*) FILTER (WHERE vote = 'YES') AS yes,
                    COUNT(*) FILTER (WHERE vote = 'NO') AS no,
                    COUNT(*) FILTER (WHERE vote = 'ABSTAIN') AS abstain
                FROM {self._schema}.votes
                WHERE proposal_id = $1
            """,
            proposal_id,
        )
        if row is None:
            return Tally(yes=0, no=0, abstain=0)
        return Tally(yes=int(row["yes"]), no=int(row["no"]), abstain=int(row["abstain"]))

    async def fetch_votes(
        self, connection: ConnectionProtocol, *, proposal_id: UUID
    ) -> Sequence[Vote]:
        rows = await connection.fetch(
            f"SELECT {_VOTE_COLUMNS} FROM {self._schema}.votes "
            "WHERE proposal_id = $1 ORDER BY created_at DESC, user_id",
            proposal_id,
        )
        return [_vote_from_row(r) for r in rows]

    async def fetch_vote(
        self, connection: ConnectionProtocol, *, proposal_id: UUID, user_id: str
    ) -> Vote | None:
        row = await connection.fetchrow(
            f"SELECT {_VOTE_COLUMNS} FROM {self._schema}.votes "
            "WHERE proposal_id = $1 AND user_id = $2",
            proposal_id,
            user_id,
        )
        if row is None:
            return None
        return _vote_from_row(row)


__all__ = ["ProposalGovernanceGateway"]
