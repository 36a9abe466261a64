"""Proposal governance and voting engine for bands."""
