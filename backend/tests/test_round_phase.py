import pytest

from imposter.core.exceptions import ValidationError
from imposter.models.round_model import RoundPhase


@pytest.mark.parametrize("value, expected", [
    ("role_reveal", RoundPhase.ROLE_REVEAL),
    ("VOTE", RoundPhase.VOTE),
    (" reveal ", RoundPhase.REVEAL),
    ("role", RoundPhase.ROLE_REVEAL),
    ("clue", RoundPhase.ANSWER_ENTRY),
    ("voting", RoundPhase.VOTE),
    ("results", RoundPhase.REVEAL),
    (RoundPhase.DONE, RoundPhase.DONE),
])
def test_parse_accepts_current_and_legacy_names(value, expected):
    assert RoundPhase.parse(value) is expected


@pytest.mark.parametrize("value", ["lobby", "", None, "discussion"])
def test_parse_rejects_unknown_values(value):
    with pytest.raises(ValidationError):
        RoundPhase.parse(value)


def test_successor_chain_with_guess():
    chain = [RoundPhase.ROLE_REVEAL]
    while not chain[-1].is_terminal:
        chain.append(chain[-1].successor(guess_enabled=True))
    assert chain == list(RoundPhase)


def test_successor_skips_guess_when_disabled():
    assert RoundPhase.VOTE.successor(guess_enabled=False) is RoundPhase.REVEAL
    assert RoundPhase.VOTE.successor(guess_enabled=True) is RoundPhase.IMPOSTER_GUESS


def test_done_has_no_successor():
    with pytest.raises(ValueError):
        RoundPhase.DONE.successor()


def test_order():
    assert RoundPhase.REVEAL.at_least(RoundPhase.VOTE)
    assert not RoundPhase.ANSWER_ENTRY.at_least(RoundPhase.REVEAL_CLUES)
