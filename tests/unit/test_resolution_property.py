"""Property-based tests for threshold resolution using Hypothesis."""

from __future__ import annotations

from fractions import Fraction

import pytest
from hypothesis import given
from hypothesis import strategies as st

from src.governance.models import ProposalStatus, Tally, VotingMethod
from src.governance.services.resolution import resolve, resolve_tally

counts = st.integers(min_value=0, max_value=10_000)
methods = st.sampled_from(list(VotingMethod))

_EXACT_THRESHOLDS = {
    VotingMethod.SUPERMAJORITY_66: Fraction(66),
    VotingMethod.SUPERMAJORITY_75: Fraction(75),
}


@given(yes=counts, no=counts, method=methods)
@pytest.mark.unit
def test_resolve_is_deterministic_and_total(yes: int, no: int, method: VotingMethod) -> None:
    """Property: same inputs, same outcome; known methods never error."""
    first = resolve(yes, no, method)
    second = resolve(yes, no, method)

    assert first == second
    assert first.outcome in (ProposalStatus.APPROVED, ProposalStatus.REJECTED)
    assert first.configuration_error is None


@given(yes=counts, no=counts, abstain=counts, method=methods)
@pytest.mark.unit
def test_abstain_never_changes_outcome(
    yes: int, no: int, abstain: int, method: VotingMethod
) -> None:
    """Property: adding abstentions changes neither outcome nor percentage."""
    without = resolve_tally(Tally(yes=yes, no=no, abstain=0), method)
    with_abstain = resolve_tally(Tally(yes=yes, no=no, abstain=abstain), method)

    assert with_abstain.outcome is without.outcome
    assert with_abstain.yes_percentage == without.yes_percentage


@given(yes=counts, no=counts, method=methods)
@pytest.mark.unit
def test_matches_exact_rational_rule(yes: int, no: int, method: VotingMethod) -> None:
    """Property: integer comparison agrees with exact yes/total*100 arithmetic."""
    total = yes + no
    outcome = resolve(yes, no, method).outcome
    if total == 0:
        assert outcome is ProposalStatus.REJECTED
        return

    share = Fraction(yes * 100, total)
    if method is VotingMethod.SIMPLE_MAJORITY:
        expected = share > 50
    elif method is VotingMethod.UNANIMOUS:
        expected = no == 0 and yes > 0
    else:
        expected = share >= _EXACT_THRESHOLDS[method]
    assert (outcome is ProposalStatus.APPROVED) is expected


@given(yes=counts, no=counts, method=methods)
@pytest.mark.unit
def test_one_more_yes_never_flips_to_reject(yes: int, no: int, method: VotingMethod) -> None:
    """Property: outcomes are monotone in YES votes."""
    if resolve(yes, no, method).outcome is ProposalStatus.APPROVED:
        assert resolve(yes + 1, no, method).outcome is ProposalStatus.APPROVED
