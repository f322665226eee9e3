from datetime import datetime, timedelta, timezone

import pytest

from toefl_practice import writing


def words(n):
    return " ".join(["word"] * n)


def test_count_words_ignores_extra_whitespace():
    assert writing.count_words("  one\ttwo \n three  ") == 3
    assert writing.count_words("") == 0
    assert writing.count_words(None) == 0


@pytest.mark.parametrize("writing_type,minimum", [("integrated", 150), ("independent", 300)])
def test_word_count_gate(writing_type, minimum):
    assert writing.check_word_count(words(minimum), writing_type) == minimum
    with pytest.raises(writing.WordCountError) as exc:
        writing.check_word_count(words(minimum - 1), writing_type)
    assert exc.value.minimum == minimum
    assert exc.value.count == minimum - 1


def test_unknown_writing_type_is_rejected():
    with pytest.raises(ValueError):
        writing.check_word_count(words(500), "speaking")


def test_limits_and_clock():
    assert writing.word_limits("integrated") == {"min_words": 150, "max_words": 225, "time_limit_seconds": 1200}
    assert writing.word_limits("independent")["max_words"] is None
    assert writing.format_clock(1800) == "30:00"
    assert writing.format_clock(65) == "1:05"
    assert writing.format_clock(-3) == "0:00"


def test_time_remaining_clamps_at_zero():
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert writing.time_remaining(start, "integrated", start + timedelta(seconds=90)) == 1110
    assert writing.time_remaining(start, "integrated", start + timedelta(hours=2)) == 0


@pytest.mark.parametrize("overall,label", [(5, "Excellent"), (4.5, "Excellent"), (4, "Good"), (3, "Satisfactory"),
                                           (2, "Needs Improvement"), (1, "Insufficient")])
def test_score_label(overall, label):
    assert writing.score_label(overall) == label


def test_normalize_correction_fills_gaps():
    raw = {"scores": {"content": 7, "overall": "3.6"}, "strengths": "Good flow", "rewriteSuggestion": "Better."}
    out = writing.normalize_correction(raw, words(160), "integrated")
    assert out["scores"]["content"] == 5.0
    assert out["scores"]["grammar"] == 0.0
    assert out["label"] == "Good"
    assert out["strengths"] == ["Good flow"]
    assert out["weaknesses"] == []
    assert out["word_count"] == 160
    assert out["rewrite_suggestion"] == "Better."
    assert out["min_words"] == 150


def test_integrated_over_limit_is_flagged_not_rejected():
    out = writing.normalize_correction({}, words(240), "integrated")
    assert out["over_limit"] is True
    assert writing.normalize_correction({}, words(400), "independent")["over_limit"] is False
