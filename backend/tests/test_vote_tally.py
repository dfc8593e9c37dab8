from imposter.models.round_model import RoundOutcome
from imposter.services.vote_tally import all_voted, classify_outcome, tally_votes


def test_majority_on_imposter_is_caught():
    result = tally_votes([(1, 3), (2, 3), (4, 3), (3, 1)], join_order=[1, 2, 3, 4])
    assert result.counts == {3: 3, 1: 1}
    assert result.majority_suspect == 3
    assert not result.is_tie
    assert classify_outcome(result, imposter_id=3) is RoundOutcome.CAUGHT


def test_majority_on_innocent_player_escapes():
    result = tally_votes([(1, 2), (3, 2), (2, 1)], join_order=[1, 2, 3])
    assert result.majority_suspect == 2
    assert classify_outcome(result, imposter_id=3) is RoundOutcome.ESCAPED


def test_tie_always_escapes_even_when_imposter_is_among_leaders():
    result = tally_votes([(1, 2), (2, 3), (3, 2), (4, 3)], join_order=[1, 2, 3, 4])
    assert result.is_tie
    assert result.winners == (2, 3)
    assert result.majority_suspect is None
    assert classify_outcome(result, imposter_id=3) is RoundOutcome.ESCAPED


def test_three_way_tie_escapes():
    result = tally_votes([(1, 2), (2, 3), (3, 1)], join_order=[1, 2, 3])
    assert result.winners == (1, 2, 3)
    assert classify_outcome(result, imposter_id=1) is RoundOutcome.ESCAPED


def test_no_votes_escapes():
    result = tally_votes([], join_order=[1, 2, 3])
    assert result.total_votes == 0
    assert result.winners == ()
    assert classify_outcome(result, imposter_id=1) is RoundOutcome.ESCAPED


def test_tied_winners_follow_join_order_then_unknown_ids():
    result = tally_votes([(1, 9), (2, 4), (3, 2)], join_order=[4, 2, 1, 3])
    assert result.winners == (4, 2, 9)


def test_last_vote_per_voter_counts():
    result = tally_votes([(1, 2), (1, 3), (2, 3)], join_order=[1, 2, 3])
    assert result.counts == {3: 2}
    assert result.total_votes == 2


def test_tally_is_pure():
    votes = [(1, 2), (2, 3), (3, 2)]
    first = tally_votes(votes, join_order=[1, 2, 3])
    second = tally_votes(list(votes), join_order=[1, 2, 3])
    assert first == second
    assert votes == [(1, 2), (2, 3), (3, 2)]


def test_to_dict_reports_tie():
    data = tally_votes([(1, 2), (2, 1)], join_order=[1, 2]).to_dict()
    assert data["is_tie"] is True
    assert data["majority_suspect"] is None
    assert data["winners"] == [1, 2]


def test_all_voted():
    assert all_voted([(1, 2), (2, 1), (3, 1)], [1, 2, 3])
    assert not all_voted([(1, 2), (2, 1)], [1, 2, 3])
    assert not all_voted([], [])
