from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from src.governance.models import (
    BandGovernanceConfig,
    Member,
    MemberRole,
    Proposal,
    ProposalPriority,
    ProposalStatus,
    ProposalType,
)
from src.governance.services.eligibility import (
    CREATOR_ROLES,
    DEFAULT_RESOLVER,
    VOTER_ROLES,
    EligibilityResolver,
    can_create,
    can_vote,
)

BAND = BandGovernanceConfig(
    band_id="band-1", voting_method="SIMPLE_MAJORITY", voting_period_days=7
)


def _member(
    role: str, status: str = "ACTIVE", band_id: str = "band-1", user_id: str = "u1"
) -> Member:
    return Member(user_id=user_id, band_id=band_id, role=role, status=status)


def _proposal(created_by_id: str = "creator") -> Proposal:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return Proposal(
        proposal_id=uuid4(),
        band_id="band-1",
        created_by_id=created_by_id,
        title="t",
        description="d",
        type=ProposalType.GENERAL,
        priority=ProposalPriority.MEDIUM,
        details={},
        status=ProposalStatus.OPEN,
        voting_ends_at=now,
        closed_at=None,
        created_at=now,
        updated_at=now,
    )


@pytest.mark.unit
@pytest.mark.parametrize("role", list(MemberRole))
def test_can_vote_by_role(role: MemberRole) -> None:
    expected = role is not MemberRole.OBSERVER
    assert can_vote(BAND, _member(role.value)) is expected


@pytest.mark.unit
@pytest.mark.parametrize("status", ["PENDING", "INVITED", "REJECTED", "INACTIVE", "LEFT"])
def test_only_active_members_are_eligible(status: str) -> None:
    member = _member(MemberRole.FOUNDER.value, status=status)
    assert can_vote(BAND, member) is False
    assert can_create(BAND, member) is False
    assert DEFAULT_RESOLVER.can_close(_proposal(), member) is False


@pytest.mark.unit
def test_missing_or_foreign_member_is_not_eligible() -> None:
    assert can_vote(BAND, None) is False
    assert can_create(BAND, None) is False
    assert can_vote(BAND, _member("FOUNDER", band_id="band-2")) is False


@pytest.mark.unit
def test_creator_roles_are_unioned_with_band_list() -> None:
    widened = BandGovernanceConfig(
        band_id="band-1",
        voting_method="SIMPLE_MAJORITY",
        voting_period_days=7,
        who_can_create_proposals=frozenset({"VOTING_MEMBER"}),
    )
    narrowed = BandGovernanceConfig(
        band_id="band-1",
        voting_method="SIMPLE_MAJORITY",
        voting_period_days=7,
        who_can_create_proposals=frozenset({"FOUNDER"}),
    )

    assert can_create(BAND, _member("VOTING_MEMBER")) is False
    assert can_create(widened, _member("VOTING_MEMBER")) is True
    for role in CREATOR_ROLES:
        assert can_create(narrowed, _member(role)) is True
    assert can_create(widened, _member("OBSERVER")) is False


@pytest.mark.unit
def test_close_allowed_for_creator_or_founder_governor() -> None:
    proposal = _proposal(created_by_id="u1")
    assert DEFAULT_RESOLVER.can_close(proposal, _member("VOTING_MEMBER", user_id="u1")) is True
    assert DEFAULT_RESOLVER.can_close(proposal, _member("OBSERVER", user_id="u1")) is True
    assert DEFAULT_RESOLVER.can_close(proposal, _member("GOVERNOR", user_id="u2")) is True
    assert DEFAULT_RESOLVER.can_close(proposal, _member("FOUNDER", user_id="u3")) is True
    assert DEFAULT_RESOLVER.can_close(proposal, _member("MODERATOR", user_id="u4")) is False


@pytest.mark.unit
def test_custom_resolver_and_sql_role_list() -> None:
    resolver = EligibilityResolver(voter_roles=frozenset({"FOUNDER"}))
    assert resolver.can_vote(BAND, _member("GOVERNOR")) is False
    assert resolver.voter_role_list() == ["FOUNDER"]
    assert DEFAULT_RESOLVER.voter_role_list() == sorted(VOTER_ROLES)
