"""Unit tests for the claim status transition table (app.models.giftaid)."""

import pytest

from app.models.giftaid import CLAIM_TRANSITIONS, validate_claim_transition

ALLOWED = [
    ("draft", "ready"),
    ("ready", "ready"),
    ("ready", "submitted"),
    ("submitted", "accepted"),
    ("submitted", "rejected"),
    ("submitted", "failed"),
]


@pytest.mark.parametrize("old,new", ALLOWED)
def test_allowed_transitions(old, new):
    assert validate_claim_transition(old, new) is True


@pytest.mark.parametrize("old,new", [
    ("draft", "submitted"),
    ("ready", "draft"),
    ("submitted", "ready"),
    ("submitted", "draft"),
    ("accepted", "submitted"),
    ("rejected", "draft"),
    ("failed", "ready"),
    ("unknown", "ready"),
])
def test_forbidden_transitions(old, new):
    assert validate_claim_transition(old, new) is False


def test_terminal_states_have_no_exits():
    for status in ("accepted", "rejected", "failed"):
        assert CLAIM_TRANSITIONS[status] == []


def test_table_covers_every_allowed_pair():
    pairs = {(old, new) for old, targets in CLAIM_TRANSITIONS.items() for new in targets}
    assert pairs == set(ALLOWED)
