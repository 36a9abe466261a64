"""Threshold resolution for closed proposals.

``resolve`` is a pure function of ``(yes, no, method)``. Abstentions never
reach it. Thresholds are compared in integer arithmetic (``yes * 100`` vs
``threshold * decisive``) so boundary cases such as exactly 75% are exact.

Quorum is a separate, optional policy layered on top; it is computed for
display on every close and only changes the outcome when explicitly enforced.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from src.governance.models import ProposalStatus, Tally, VotingMethod
from src.governance.services.governance_errors import InvalidConfigurationError

LOGGER = structlog.get_logger(__name__)

# Minimum yes share, in percent, for the percentage-based methods.
_PERCENT_THRESHOLDS: dict[VotingMethod, tuple[int, bool]] = {
    # (threshold, strict)
    VotingMethod.SIMPLE_MAJORITY: (50, True),
    VotingMethod.SUPERMAJORITY_66: (66, False),
    VotingMethod.SUPERMAJORITY_75: (75, False),
}


@dataclass(frozen=True, slots=True)
class Resolution:
    outcome: ProposalStatus
    yes: int
    no: int
    method: str
    yes_percentage: float
    configuration_error: InvalidConfigurationError | None = None

    @property
    def approved(self) -> bool:
        return self.outcome is ProposalStatus.APPROVED


@dataclass(frozen=True, slots=True)
class QuorumInfo:
    required_percentage: int
    participation_percentage: float
    eligible_voters: int
    participants: int

    @property
    def met(self) -> bool:
        return self.participation_percentage >= self.required_percentage


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)


def parse_method(method: VotingMethod | str) -> VotingMethod | None:
    if isinstance(method, VotingMethod):
        return method
    try:
        return VotingMethod(str(method))
    except ValueError:
        return None


def is_approved(yes: int, no: int, method: VotingMethod) -> bool:
    """Threshold rule for a known method; zero decisive votes never approve."""
    decisive = yes + no
    if decisive <= 0:
        return False
    if method is VotingMethod.UNANIMOUS:
        return no == 0 and yes > 0
    threshold, strict = _PERCENT_THRESHOLDS[method]
    if strict:
        return yes * 100 > threshold * decisive
    return yes * 100 >= threshold * decisive


def resolve(yes: int, no: int, method: VotingMethod | str) -> Resolution:
    """Compute APPROVED/REJECTED from decisive vote counts.

    An unrecognised method fails closed: the outcome is REJECTED and the
    returned resolution carries an ``InvalidConfigurationError``.
    """
    known = parse_method(method)
    yes_pct = percentage(yes, yes + no)
    if known is None:
        error = InvalidConfigurationError(
            f"Unknown voting method: {method!r}",
            context={"voting_method": str(method), "yes": yes, "no": no},
        )
        LOGGER.error(
            "governance.resolution.unknown_method",
            voting_method=str(method),
            yes=yes,
            no=no,
        )
        return Resolution(
            outcome=ProposalStatus.REJECTED,
            yes=yes,
            no=no,
            method=str(method),
            yes_percentage=yes_pct,
            configuration_error=error,
        )

    outcome = ProposalStatus.APPROVED if is_approved(yes, no, known) else ProposalStatus.REJECTED
    return Resolution(
        outcome=outcome,
        yes=yes,
        no=no,
        method=known.value,
        yes_percentage=yes_pct,
    )


def resolve_tally(tally: Tally, method: VotingMethod | str) -> Resolution:
    return resolve(tally.yes, tally.no, method)


def evaluate_quorum(tally: Tally, *, eligible_voters: int, required_percentage: int) -> QuorumInfo:
    """Participation counts every ballot, abstentions included."""
    return QuorumInfo(
        required_percentage=required_percentage,
        participation_percentage=percentage(tally.total, eligible_voters),
        eligible_voters=eligible_voters,
        participants=tally.total,
    )


def apply_quorum_policy(resolution: Resolution, quorum: QuorumInfo, *, enforce: bool) -> Resolution:
    if not enforce or quorum.met or not resolution.approved:
        return resolution
    LOGGER.info(
        "governance.resolution.quorum_not_met",
        required=quorum.required_percentage,
        actual=quorum.participation_percentage,
    )
    return Resolution(
        outcome=ProposalStatus.REJECTED,
        yes=resolution.yes,
        no=resolution.no,
        method=resolution.method,
        yes_percentage=resolution.yes_percentage,
        configuration_error=resolution.configuration_error,
    )


__all__ = [
    "QuorumInfo",
    "Resolution",
    "apply_quorum_policy",
    "evaluate_quorum",
    "is_approved",
    "parse_method",
    "percentage",
    "resolve",
    "resolve_tally",
]
