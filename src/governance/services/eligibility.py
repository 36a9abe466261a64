"""Role-derived capability checks for proposal governance.

Single home for "who may create / vote / close". Every check takes the band
configuration and the member explicitly; there is no ambient role state.

Creator policy: a band's ``who_can_create_proposals`` is *unioned* with the
platform creator roles. Bands may widen the set but cannot narrow it below
the platform default.

Close policy: the proposal creator, or a FOUNDER/GOVERNOR. This is fixed and
does not consult ``who_can_approve`` (membership approval paths do).
"""

from __future__ import annotations

from dataclasses import dataclass

from src.governance.models import BandGovernanceConfig, Member, MemberRole, Proposal

VOTER_ROLES: frozenset[str] = frozenset(
    {
        MemberRole.FOUNDER.value,
        MemberRole.GOVERNOR.value,
        MemberRole.MODERATOR.value,
        MemberRole.CONDUCTOR.value,
        MemberRole.VOTING_MEMBER.value,
    }
)

CREATOR_ROLES: frozenset[str] = frozenset(
    {
        MemberRole.FOUNDER.value,
        MemberRole.GOVERNOR.value,
        MemberRole.MODERATOR.value,
        MemberRole.CONDUCTOR.value,
    }
)

CLOSER_ROLES: frozenset[str] = frozenset({MemberRole.FOUNDER.value, MemberRole.GOVERNOR.value})


@dataclass(frozen=True, slots=True)
class EligibilityResolver:
    voter_roles: frozenset[str] = VOTER_ROLES
    creator_roles: frozenset[str] = CREATOR_ROLES
    closer_roles: frozenset[str] = CLOSER_ROLES

    def can_vote(self, band: BandGovernanceConfig, member: Member | None) -> bool:
        if member is None or not member.is_active or member.band_id != band.band_id:
            return False
        return member.role in self.voter_roles

    def can_create(self, band: BandGovernanceConfig, member: Member | None) -> bool:
        if member is None or not member.is_active or member.band_id != band.band_id:
            return False
        return member.role in self.creator_roles or member.role in band.who_can_create_proposals

    def can_close(self, proposal: Proposal, member: Member | None) -> bool:
        if member is None or not member.is_active or member.band_id != proposal.band_id:
            return False
        return member.user_id == proposal.created_by_id or member.role in self.closer_roles

    def voter_role_list(self) -> list[str]:
        """Sorted voter roles, suitable as a SQL ``= ANY($n)`` parameter."""
        return sorted(self.voter_roles)


DEFAULT_RESOLVER = EligibilityResolver()


def can_vote(band: BandGovernanceConfig, member: Member | None) -> bool:
    return DEFAULT_RESOLVER.can_vote(band, member)


def can_create(band: BandGovernanceConfig, member: Member | None) -> bool:
    return DEFAULT_RESOLVER.can_create(band, member)


__all__ = [
    "CLOSER_ROLES",
    "CREATOR_ROLES",
    "DEFAULT_RESOLVER",
    "EligibilityResolver",
    "VOTER_ROLES",
    "can_create",
    "can_vote",
]
