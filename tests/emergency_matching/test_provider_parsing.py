"""
Tests for strict parsing of provider ranking payloads.
"""
import pytest

from donormatch.services.emergency_matching.errors import ProviderParseError
from donormatch.services.emergency_matching.providers.parsing import (
    extract_json_array,
    parse_ordinal_ranking,
    parse_ranking_entries,
)


def test_extracts_array_wrapped_in_prose():
    text = 'Here is the ranking:\n```json\n[{"donorIndex": 2, "score": 91}]\n```\nHope this helps [1].'
    assert extract_json_array(text) == [{"donorIndex": 2, "score": 91}]


def test_skips_brackets_that_are_not_json():
    text = 'Candidates [see list] ranked: [{"donorIndex": 1}]'
    assert extract_json_array(text) == [{"donorIndex": 1}]


def test_ranking_array_wins_over_earlier_number_list():
    text = 'Considered donors [1, 2]. Ranking: [{"donorIndex": 2, "score": 88}]'
    assert extract_json_array(text) == [{"donorIndex": 2, "score": 88}]

    (entry,) = parse_ranking_entries(text, candidate_count=2)
    assert (entry.index, entry.score) == (2, 88.0)


def test_bare_array_is_returned_when_no_objects_follow():
    assert extract_json_array("Best donors: [3, 1, 2]") == [3, 1, 2]


@pytest.mark.parametrize("text", ["", "   ", "no array here", "{\"donorIndex\": 1}"])
def test_missing_array_is_a_parse_error(text):
    with pytest.raises(ProviderParseError):
        extract_json_array(text)


def test_entries_are_clamped_and_defaulted():
    text = '[{"donorIndex": 1, "score": 140, "estimatedMinutes": -5, "reason": "close"}, {"donorIndex": 2}]'
    first, second = parse_ranking_entries(text, candidate_count=3)

    assert (first.index, first.score, first.estimated_minutes, first.reason) == (1, 100.0, 0.0, "close")
    assert (second.index, second.score, second.estimated_minutes, second.reason) == (2, 50.0, 30.0, "AI analysis")


def test_out_of_range_and_duplicate_indices_are_dropped():
    text = """[
        {"donorIndex": 0, "score": 99},
        {"donorIndex": 4, "score": 99},
        {"donorIndex": 2, "score": 80},
        {"donorIndex": 2, "score": 10},
        {"donorIndex": "three", "score": 70},
        "garbage"
    ]"""
    entries = parse_ranking_entries(text, candidate_count=3)

    assert [(e.index, e.score) for e in entries] == [(2, 80.0)]


def test_no_valid_entry_is_a_parse_error():
    with pytest.raises(ProviderParseError):
        parse_ranking_entries('[{"donorIndex": 9}]', candidate_count=3)


def test_ordinal_ranking_scores_by_position(make_candidate):
    candidates = [make_candidate(f"d{i}", float(i * 2)) for i in range(1, 4)]
    entries = parse_ordinal_ranking("Ranking: 3, 1, 2", candidates)

    assert [e.index for e in entries] == [3, 1, 2]
    assert [e.score for e in entries] == [90.0, 82.0, 74.0]
    assert entries[0].estimated_minutes == pytest.approx(25 + 6 * 1.5)
    assert entries[0].reason == "Local AI ranking"


def test_ordinal_ranking_ignores_out_of_range_positions(make_candidate):
    candidates = [make_candidate("a", 1.0), make_candidate("b", 2.0)]
    entries = parse_ordinal_ranking("7 2", candidates)
    assert [e.index for e in entries] == [2]


def test_ordinal_ranking_without_numbers_is_a_parse_error(make_candidate):
    with pytest.raises(ProviderParseError):
        parse_ordinal_ranking("I cannot rank donors.", [make_candidate("a", 1.0)])
