from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

__all__ = [
    "BandGovernanceConfig",
    "Member",
    "MemberRole",
    "MemberStatus",
    "Proposal",
    "ProposalDraft",
    "ProposalPriority",
    "ProposalStatus",
    "ProposalSummary",
    "ProposalType",
    "Tally",
    "Vote",
    "VoteChoice",
    "VotingMethod",
]


class MemberRole(str, Enum):
    FOUNDER = "FOUNDER"
    GOVERNOR = "GOVERNOR"
    MODERATOR = "MODERATOR"
    CONDUCTOR = "CONDUCTOR"
    VOTING_MEMBER = "VOTING_MEMBER"
    OBSERVER = "OBSERVER"


class MemberStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    INVITED = "INVITED"
    REJECTED = "REJECTED"
    INACTIVE = "INACTIVE"
    LEFT = "LEFT"


class VotingMethod(str, Enum):
    SIMPLE_MAJORITY = "SIMPLE_MAJORITY"
    SUPERMAJORITY_66 = "SUPERMAJORITY_66"
    SUPERMAJORITY_75 = "SUPERMAJORITY_75"
    UNANIMOUS = "UNANIMOUS"


class ProposalType(str, Enum):
    GENERAL = "GENERAL"
    BUDGET = "BUDGET"
    PROJECT = "PROJECT"
    POLICY = "POLICY"
    MEMBERSHIP = "MEMBERSHIP"


class ProposalPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ProposalStatus(str, Enum):
    """Persisted proposal state.

    Only ``OPEN -> APPROVED`` and ``OPEN -> REJECTED`` are ever written.
    ``CLOSED`` is a legacy value kept so old rows still load.
    """

    OPEN = "OPEN"
    CLOSED = "CLOSED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not ProposalStatus.OPEN


class VoteChoice(str, Enum):
    YES = "YES"
    NO = "NO"
    ABSTAIN = "ABSTAIN"


@dataclass(slots=True, frozen=True)
class BandGovernanceConfig:
    """Read-only governance settings of a band.

    ``voting_method`` stays a raw string: an unknown value must reach the
    resolution engine so it can fail closed instead of breaking the load.
    """

    band_id: str
    voting_method: str
    voting_period_days: int
    who_can_create_proposals: frozenset[str] = frozenset()
    who_can_approve: frozenset[str] = frozenset()
    quorum_percentage: int = 0


@dataclass(slots=True, frozen=True)
class Member:
    user_id: str
    band_id: str
    role: str
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE.value


@dataclass(slots=True, frozen=True)
class ProposalDraft:
    """Caller-supplied proposal content; ``details`` is opaque passthrough."""

    title: str
    description: str
    type: ProposalType = ProposalType.GENERAL
    priority: ProposalPriority = ProposalPriority.MEDIUM
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Proposal:
    proposal_id: UUID
    band_id: str
    created_by_id: str
    title: str
    description: str
    type: ProposalType
    priority: ProposalPriority
    details: Mapping[str, Any]
    status: ProposalStatus
    voting_ends_at: datetime
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Deadline passed while still OPEN; display only, never persisted."""
        return self.status is ProposalStatus.OPEN and now >= self.voting_ends_at

    def accepts_votes(self, now: datetime) -> bool:
        return self.status is ProposalStatus.OPEN and now < self.voting_ends_at


@dataclass(slots=True, frozen=True)
class ProposalSummary:
    proposal: Proposal
    vote_count: int


@dataclass(slots=True, frozen=True)
class Vote:
    proposal_id: UUID
    user_id: str
    vote: VoteChoice
    comment: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True, frozen=True)
class Tally:
    yes: int
    no: int
    abstain: int

    @property
    def total(self) -> int:
        return self.yes + self.no + self.abstain

    @property
    def decisive(self) -> int:
        """Votes that count toward a threshold; abstentions are excluded."""
        return self.yes + self.no

    @classmethod
    def from_votes(cls, votes: "list[Vote] | tuple[Vote, ...]") -> "Tally":
        yes = sum(1 for v in votes if v.vote is VoteChoice.YES)
        no = sum(1 for v in votes if v.vote is VoteChoice.NO)
        abstain = sum(1 for v in votes if v.vote is VoteChoice.ABSTAIN)
        return cls(yes=yes, no=no, abstain=abstain)
