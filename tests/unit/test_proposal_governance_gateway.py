"""Unit tests for ProposalGovernanceGateway SQL helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import asyncpg
import pytest

from src.db.gateway.proposal_governance import ProposalGovernanceGateway
from src.governance.models import (
    ProposalDraft,
    ProposalPriority,
    ProposalStatus,
    ProposalType,
    VoteChoice,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _proposal_row(proposal_id: UUID, **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "proposal_id": proposal_id,
        "band_id": "band-1",
        "created_by_id": "founder",
        "title": "New van",
        "description": "Touring van",
        "type": "BUDGET",
        "priority": "HIGH",
        "details": {"budgetRequested": 9000},
        "status": "OPEN",
        "voting_ends_at": NOW + timedelta(days=7),
        "closed_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.mark.unit
class TestProposalGovernanceGateway:
    @pytest.fixture
    def gateway(self) -> ProposalGovernanceGateway:
        return ProposalGovernanceGateway()

    @pytest.fixture
    def mock_connection(self) -> AsyncMock:
        return AsyncMock(spec=asyncpg.Connection)

    @pytest.mark.asyncio
    async def test_fetch_band_config_maps_role_sets(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        mock_connection.fetchrow.return_value = {
            "band_id": "band-1",
            "voting_method": "SUPERMAJORITY_66",
            "voting_period_days": 5,
            "who_can_create_proposals": ["VOTING_MEMBER"],
            "who_can_approve": None,
            "quorum_percentage": None,
        }

        band = await gateway.fetch_band_config(mock_connection, band_id="band-1")

        assert band is not None
        assert band.voting_method == "SUPERMAJORITY_66"
        assert band.who_can_create_proposals == frozenset({"VOTING_MEMBER"})
        assert band.who_can_approve == frozenset()
        assert band.quorum_percentage == 0

    @pytest.mark.asyncio
    async def test_fetch_band_config_missing(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        mock_connection.fetchrow.return_value = None
        assert await gateway.fetch_band_config(mock_connection, band_id="x") is None

    @pytest.mark.asyncio
    async def test_create_proposal_binds_fixed_deadline(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        pid = uuid4()
        mock_connection.fetchrow.return_value = _proposal_row(pid)
        draft = ProposalDraft(
            title="New van",
            description="Touring van",
            type=ProposalType.BUDGET,
            priority=ProposalPriority.HIGH,
            details={"budgetRequested": 9000},
        )

        proposal = await gateway.create_proposal(
            mock_connection,
            band_id="band-1",
            created_by_id="founder",
            draft=draft,
            voting_ends_at=NOW + timedelta(days=7),
            created_at=NOW,
        )

        assert proposal.proposal_id == pid
        assert proposal.type is ProposalType.BUDGET
        assert proposal.status is ProposalStatus.OPEN
        sql, *args = mock_connection.fetchrow.await_args.args
        assert "INSERT INTO governance.proposals" in sql
        assert "'OPEN'" in sql
        assert args[4:8] == ["BUDGET", "HIGH", {"budgetRequested": 9000}, NOW + timedelta(days=7)]

    @pytest.mark.asyncio
    async def test_fetch_proposal_for_update_locks_row(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        pid = uuid4()
        mock_connection.fetchrow.return_value = _proposal_row(pid)

        await gateway.fetch_proposal(mock_connection, proposal_id=pid)
        plain_sql = mock_connection.fetchrow.await_args.args[0]
        await gateway.fetch_proposal(mock_connection, proposal_id=pid, for_update=True)
        locked_sql = mock_connection.fetchrow.await_args.args[0]

        assert "FOR UPDATE" not in plain_sql
        assert locked_sql.rstrip().endswith("FOR UPDATE")

    @pytest.mark.asyncio
    async def test_close_proposal_is_conditional_on_open(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        pid = uuid4()
        mock_connection.fetchrow.return_value = _proposal_row(
            pid, status="APPROVED", closed_at=NOW
        )

        closed = await gateway.close_proposal(
            mock_connection, proposal_id=pid, status=ProposalStatus.APPROVED, closed_at=NOW
        )

        assert closed is not None and closed.status is ProposalStatus.APPROVED
        sql, *args = mock_connection.fetchrow.await_args.args
        assert "status = 'OPEN'" in sql
        assert args == [pid, "APPROVED", NOW]

    @pytest.mark.asyncio
    async def test_close_proposal_lost_race_returns_none(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        mock_connection.fetchrow.return_value = None
        closed = await gateway.close_proposal(
            mock_connection, proposal_id=uuid4(), status=ProposalStatus.REJECTED, closed_at=NOW
        )
        assert closed is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ProposalStatus.OPEN, ProposalStatus.CLOSED])
    async def test_close_proposal_rejects_non_outcome_status(
        self,
        gateway: ProposalGovernanceGateway,
        mock_connection: AsyncMock,
        status: ProposalStatus,
    ) -> None:
        with pytest.raises(ValueError):
            await gateway.close_proposal(
                mock_connection, proposal_id=uuid4(), status=status, closed_at=NOW
            )
        mock_connection.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("created", "expected"), [(True, True), (False, False)])
    async def test_upsert_vote_reports_fresh_or_overwrite(
        self,
        gateway: ProposalGovernanceGateway,
        mock_connection: AsyncMock,
        created: bool,
        expected: bool,
    ) -> None:
        pid = uuid4()
        mock_connection.fetchrow.return_value = {"created": created}

        result = await gateway.upsert_vote(
            mock_connection,
            proposal_id=pid,
            user_id="alice",
            choice=VoteChoice.YES,
            comment=None,
            now=NOW,
        )

        assert result is expected
        sql, *args = mock_connection.fetchrow.await_args.args
        assert "ON CONFLICT (proposal_id, user_id) DO UPDATE" in sql
        assert "FOR SHARE" in sql
        assert "voting_ends_at > $5" in sql
        assert args == [pid, "alice", "YES", None, NOW]

    @pytest.mark.asyncio
    async def test_upsert_vote_on_closed_proposal_returns_none(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        mock_connection.fetchrow.return_value = None
        result = await gateway.upsert_vote(
            mock_connection,
            proposal_id=uuid4(),
            user_id="alice",
            choice=VoteChoice.NO,
            comment="late",
            now=NOW,
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_fetch_tally_counts(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        mock_connection.fetchrow.return_value = {"yes": 3, "no": 1, "abstain": 2}

        tally = await gateway.fetch_tally(mock_connection, proposal_id=uuid4())

        assert (tally.yes, tally.no, tally.abstain, tally.total, tally.decisive) == (3, 1, 2, 6, 4)

    @pytest.mark.asyncio
    async def test_list_pending_for_user_filters_deadline(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        pid = uuid4()
        mock_connection.fetch.return_value = [_proposal_row(pid)]

        rows = await gateway.list_pending_for_user(
            mock_connection, user_id="alice", voter_roles=["FOUNDER", "VOTING_MEMBER"], now=NOW
        )

        assert [p.proposal_id for p in rows] == [pid]
        sql, *args = mock_connection.fetch.await_args.args
        assert "p.voting_ends_at > $3" in sql
        assert "NOT EXISTS" in sql
        assert "ORDER BY p.voting_ends_at ASC" in sql
        assert args == ["alice", ["FOUNDER", "VOTING_MEMBER"], NOW]

    @pytest.mark.asyncio
    async def test_list_band_proposals_includes_vote_count(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        pid = uuid4()
        mock_connection.fetch.return_value = [{**_proposal_row(pid), "vote_count": 4}]

        summaries = await gateway.list_band_proposals(
            mock_connection, band_id="band-1", status=ProposalStatus.OPEN
        )

        assert summaries[0].vote_count == 4
        assert summaries[0].proposal.details == {"budgetRequested": 9000}
        _, *args = mock_connection.fetch.await_args.args
        assert args == ["band-1", "OPEN", None]

    @pytest.mark.asyncio
    async def test_custom_schema_is_used(self, mock_connection: AsyncMock) -> None:
        gateway = ProposalGovernanceGateway(schema="bands")
        mock_connection.fetchval.return_value = 7

        count = await gateway.count_active_members(
            mock_connection, band_id="band-1", roles=["FOUNDER"]
        )

        assert count == 7
        assert "FROM bands.band_members" in mock_connection.fetchval.await_args.args[0]

    @pytest.mark.asyncio
    async def test_fetch_vote_maps_choice(
        self, gateway: ProposalGovernanceGateway, mock_connection: AsyncMock
    ) -> None:
        pid = uuid4()
        mock_connection.fetchrow.return_value = {
            "proposal_id": pid,
            "user_id": "alice",
            "vote": "ABSTAIN",
            "comment": "conflict of interest",
            "created_at": NOW,
            "updated_at": NOW,
        }

        vote = await gateway.fetch_vote(mock_connection, proposal_id=pid, user_id="alice")

        assert vote is not None
        assert vote.vote is VoteChoice.ABSTAIN
        assert vote.comment == "conflict of interest"
