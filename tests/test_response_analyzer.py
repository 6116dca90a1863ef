"""
Unit tests for the response analyzer: handoff marker handling and confidence scoring.
"""

import math

import pytest

from mixer_backend.config import ConfidencePolicy
from mixer_backend.response_analyzer import analyze_response, score_confidence


class TestAnalyzeResponse:
    """Test suite for analyze_response."""

    def test_short_reply_scores_point_six(self):
        result = analyze_response("short")
        assert result.message == "short"
        assert result.confidence == pytest.approx(0.6)
        assert result.should_handoff is False

    def test_uncertain_reply_scores_point_six(self):
        result = analyze_response("Dạ mình không biết mẫu này còn không ạ")
        assert result.confidence == pytest.approx(0.6)

    def test_short_and_uncertain_stack(self):
        result = analyze_response("không rõ")
        assert result.confidence == pytest.approx(0.4)

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Dạ để mình hỏi lại kho rồi báo bạn nha", 0.6),
            ("Bạn chờ em đi kiểm tra đơn chút nha", 0.6),
            ("Để mình gửi ảnh, bạn hỏi thêm gì không ạ", 0.8),
            ("Dạ để shop gói hàng cẩn thận, bạn muốn hỏi thêm màu nào ạ", 0.8),
        ],
    )
    def test_stalling_phrases_need_a_speaker_before_the_verb(self, message, expected):
        assert analyze_response(message).confidence == pytest.approx(expected)

    def test_normal_reply_keeps_base(self):
        result = analyze_response("Dạ mẫu này còn size M và L ạ 😊")
        assert result.confidence == pytest.approx(0.8)

    def test_long_reply_penalized(self):
        result = analyze_response("a" * 501)
        assert result.confidence == pytest.approx(0.7)

    def test_length_boundaries_are_not_penalized(self):
        assert analyze_response("a" * 10).confidence == pytest.approx(0.8)
        assert analyze_response("a" * 500).confidence == pytest.approx(0.8)

    @pytest.mark.parametrize(
        "raw",
        [
            "[HANDOFF] Dạ để mình chuyển nhân viên hỗ trợ bạn nhé",
            "Dạ để mình chuyển nhân viên hỗ trợ bạn nhé [HANDOFF]",
            "Dạ để mình [HANDOFF] chuyển nhân viên [HANDOFF] hỗ trợ bạn nhé",
        ],
    )
    def test_handoff_marker_anywhere(self, raw):
        result = analyze_response(raw)
        assert result.should_handoff is True
        assert "[HANDOFF]" not in result.message
        assert result.message == result.message.strip()

    def test_marker_only_yields_empty_message(self):
        result = analyze_response("[HANDOFF]")
        assert result.should_handoff is True
        assert result.message == ""
        assert result.confidence == pytest.approx(0.6)

    def test_none_is_treated_as_empty(self):
        result = analyze_response(None)
        assert result.message == ""
        assert result.should_handoff is False


class TestScoreConfidence:
    """Test suite for score_confidence clamping."""

    @pytest.mark.parametrize(
        "policy",
        [
            ConfidencePolicy(base=0.1, short_penalty=0.5, uncertainty_penalty=0.5),
            ConfidencePolicy(base=3.0),
            ConfidencePolicy(base=float("nan")),
            ConfidencePolicy(base=0.8, uncertainty_pattern=""),
        ],
    )
    @pytest.mark.parametrize("message", ["", "ok", "không biết", "x" * 800])
    def test_always_within_unit_interval(self, policy, message):
        value = score_confidence(message, policy)
        assert not math.isnan(value)
        assert 0.0 <= value <= 1.0

    def test_custom_uncertainty_pattern(self):
        policy = ConfidencePolicy(uncertainty_pattern=r"chưa rõ")
        assert score_confidence("Dạ shop chưa rõ ạ, đợi chút nhé", policy) == pytest.approx(0.6)
        assert score_confidence("Dạ không biết nữa, đợi chút nhé", policy) == pytest.approx(0.8)

    def test_uncertainty_match_is_case_insensitive(self):
        assert score_confidence("Dạ KHÔNG BIẾT ạ, bạn chờ nhé", ConfidencePolicy()) == pytest.approx(0.6)
