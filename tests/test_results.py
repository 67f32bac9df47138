"""Tests for vendor result parsing and match classification"""
import pytest

from audio_recognition.results import (
    ErrorCode,
    Matched,
    MatchKind,
    NotFound,
    RecognitionError,
    VendorMatch,
    classify,
    normalize_score,
    to_response,
)
from conftest import track, vendor_result


@pytest.mark.parametrize("raw,expected", [
    (95, 0.95),
    (60, 0.60),
    (0.7, 0.7),
    (1, 0.01),
    ("1", 0.01),
    (1.0, 1.0),
    ("0.92", 0.92),
    (0, 0.0),
    (150, 1.0),
    (-5, 0.0),
    ("80", 0.80),
    (None, 0.0),
])
def test_normalize_score(raw, expected):
    assert normalize_score(raw) == pytest.approx(expected)


def test_vendor_match_joins_artists_and_builds_spotify_url():
    match = VendorMatch.from_vendor(track(
        artists=[{"name": "Daft Punk"}, {"name": "Pharrell Williams"}],
        external_metadata={"spotify": {"track": {"id": "69kOkLUCkxIZYexIgSG8rq"}}},
    ))
    assert match.artist == "Daft Punk, Pharrell Williams"
    assert match.external_track_url == "https://open.spotify.com/track/69kOkLUCkxIZYexIgSG8rq"
    assert match.album == "Hurry Up, We're Dreaming"


def test_vendor_match_defaults_for_missing_fields():
    match = VendorMatch.from_vendor({})
    assert match.title == "Unknown"
    assert match.artist == "Unknown"
    assert match.score == 0.0
    assert match.external_track_url is None


def test_fingerprint_at_threshold_is_matched():
    outcome = classify(vendor_result(music=[track(score=0.60)]))
    assert isinstance(outcome, Matched)
    assert outcome.match_kind == MatchKind.FINGERPRINT
    assert outcome.confidence == pytest.approx(0.60)


def test_fingerprint_just_below_threshold_is_not_found():
    outcome = classify(vendor_result(music=[track(score=0.599999)]))
    assert isinstance(outcome, NotFound)
    assert "below 60% threshold" in outcome.reason


def test_percentage_scores_are_normalized_before_threshold():
    outcome = classify(vendor_result(music=[track(score=85)]))
    assert isinstance(outcome, Matched)
    assert outcome.confidence == pytest.approx(0.85)


def test_fingerprint_preferred_over_melody():
    outcome = classify(vendor_result(
        music=[track(title="Recorded", score=70)],
        humming=[track(title="Hummed", score=99)],
    ))
    assert outcome.title == "Recorded"
    assert outcome.match_kind == MatchKind.FINGERPRINT


def test_melody_used_when_fingerprint_below_threshold():
    outcome = classify(vendor_result(
        music=[track(title="Recorded", score=40)],
        humming=[track(title="Hummed", score=72)],
    ))
    assert isinstance(outcome, Matched)
    assert outcome.title == "Hummed"
    assert outcome.match_kind == MatchKind.MELODY


def test_melody_only_match():
    outcome = classify(vendor_result(humming=[track(score=0.8)]))
    assert outcome.match_kind == MatchKind.MELODY


def test_low_melody_is_not_found():
    outcome = classify(vendor_result(humming=[track(score=55)]))
    assert isinstance(outcome, NotFound)
    assert "55%" in outcome.reason


def test_non_zero_status_is_not_found():
    outcome = classify(vendor_result(code=1001, msg="No result"))
    assert isinstance(outcome, NotFound)
    assert "1001" in outcome.reason


def test_non_zero_status_ignores_metadata():
    outcome = classify(vendor_result(music=[track(score=99)], code=3003, msg="Limit exceeded"))
    assert isinstance(outcome, NotFound)


def test_success_without_matches_is_not_found():
    assert isinstance(classify(vendor_result()), NotFound)


def test_custom_threshold():
    outcome = classify(vendor_result(music=[track(score=70)]), min_confidence=0.75)
    assert isinstance(outcome, NotFound)


def test_matched_response_shape():
    outcome = classify(vendor_result(music=[track(
        external_metadata={"spotify": {"track": {"id": "xyz"}}}
    )]))
    response = to_response(outcome)
    assert response["success"] is True
    assert response["type"] == "matched"
    assert response["song"] == {
        "title": "Midnight City",
        "artist": "M83",
        "confidence": pytest.approx(0.95),
        "matchKind": "fingerprint",
        "album": "Hurry Up, We're Dreaming",
        "releaseDate": "2011-08-16",
        "externalTrackUrl": "https://open.spotify.com/track/xyz",
    }


def test_not_found_response_has_no_reason():
    response = to_response(NotFound("Low confidence match (55%)"))
    assert response == {"success": False, "type": "not_found"}


def test_limit_reached_response_flag():
    response = to_response(RecognitionError("Monthly recognition limit reached (5)", ErrorCode.LIMIT_REACHED))
    assert response["success"] is False
    assert response["limitReached"] is True
    assert "limit" in response["error"]


def test_other_errors_have_no_limit_flag():
    response = to_response(RecognitionError("boom", ErrorCode.TRANSPORT))
    assert "limitReached" not in response
