"""Test cases for score aggregation and the scoring collaborators."""

import json
import random
from unittest.mock import MagicMock, patch

import pytest
import requests

from essaycore.errors import ScoringFailure
from essaycore.scoring import (
    FEEDBACK_TYPES, HeuristicScorer, OpenRouterScorer, ScoreResult, build_details, build_scorer,
    compute_total_score, highlight_content, normalize_feedback_type, number_items, validate_scores,
)


class TestComputeTotalScore:
    """Test cases for the total score formula."""

    @pytest.mark.parametrize(
        "scores, expected",
        [
            ((80, 90, 70), 80),
            ((81, 81, 82), 81),  # 81.33 rounds down
            ((80, 81, 80), 80),  # 80.33
            ((80, 81, 81), 81),  # 80.67
            ((70, 80, 90), 80),
            ((0, 0, 0), 0),
            ((100, 100, 100), 100),
            ((0, 1, 1), 1),  # 0.67
            ((0, 0, 1), 0),  # 0.33
        ],
    )
    def test_mean_rounded_half_up(self, scores, expected):
        assert compute_total_score(*scores) == expected

    def test_result_is_int(self):
        assert isinstance(compute_total_score(1, 2, 4), int)


class TestValidateScores:
    """Test cases for range validation of scorer output."""

    def test_accepts_in_range(self):
        result = ScoreResult(content_score=0, language_score=50, organization_score=100, feedback="ok")
        assert validate_scores(result, 0, 100) is result

    def test_rejects_out_of_range(self):
        result = ScoreResult(content_score=101, language_score=50, organization_score=50, feedback="ok")
        with pytest.raises(ScoringFailure) as exc_info:
            validate_scores(result, 0, 100)
        assert exc_info.value.field == "content_score"

    def test_rejects_negative(self):
        result = ScoreResult(content_score=50, language_score=-1, organization_score=50, feedback="ok")
        with pytest.raises(ScoringFailure):
            validate_scores(result, 0, 100)

    def test_custom_bounds(self):
        result = ScoreResult(content_score=7, language_score=6, organization_score=5, feedback="ok")
        validate_scores(result, 0, 7)
        with pytest.raises(ScoringFailure):
            validate_scores(result.model_copy(update={"content_score": 8}), 0, 7)

    def test_rejects_blank_feedback(self):
        result = ScoreResult(content_score=50, language_score=50, organization_score=50, feedback="  ")
        with pytest.raises(ScoringFailure):
            validate_scores(result, 0, 100)


class TestHeuristicScorer:
    """Test cases for the offline scorer."""

    def test_scores_within_band(self):
        scorer = HeuristicScorer(rng=random.Random(7))
        for _ in range(20):
            result = scorer.score("word " * 50, "prompt")
            for value in (result.content_score, result.language_score, result.organization_score):
                assert 60 <= value < 90

    def test_seeded_rng_is_repeatable(self):
        first = HeuristicScorer(rng=random.Random(1)).score("text", "prompt")
        second = HeuristicScorer(rng=random.Random(1)).score("text", "prompt")
        assert first == second

    def test_short_essay_feedback(self):
        result = HeuristicScorer().score("Too short.", "prompt")
        assert "too short (10 characters)" in result.feedback

    def test_medium_essay_feedback(self):
        result = HeuristicScorer().score("x" * 700, "prompt")
        assert "basic understanding" in result.feedback

    def test_long_essay_feedback(self):
        result = HeuristicScorer().score("x" * 1500, "prompt")
        assert "strong understanding" in result.feedback

    def test_detail_segments_come_from_the_text(self):
        content = "One idea. Two ideas! Three ideas? Four. Five. Six. Seven."
        items = HeuristicScorer().detail(content, "prompt")

        assert [item.number for item in items] == [1, 2, 3, 4, 5]
        assert [item.segment for item in items][:3] == ["One idea.", "Two ideas!", "Three ideas?"]
        assert all(item.segment in content for item in items)
        assert all(item.type in FEEDBACK_TYPES for item in items)


class TestFeedbackItems:
    """Test cases for feedback item normalisation and highlighting."""

    @pytest.mark.parametrize("raw, expected", [
        ("grammar", "Grammar"),
        ("Word choice issue", "Word Choice"),
        ("  ORGANIZATION ", "Organization"),
        ("Vibes", "Other"),
        (None, "Other"),
    ])
    def test_normalize_feedback_type(self, raw, expected):
        assert normalize_feedback_type(raw) == expected

    def test_number_items_drops_incomplete_entries(self):
        items = number_items([
            {"type": "spelling", "segment": " recieve ", "suggestion": "Spelled receive."},
            {"type": "grammar", "segment": "", "suggestion": "Nothing to anchor."},
            "not an item",
            {"type": "clarity", "segment": "it", "suggestion": "  "},
            {"segment": "they was", "suggestion": "Use were."},
        ])

        assert [(item.number, item.type, item.segment) for item in items] == [
            (1, "Spelling", "recieve"),
            (2, "Other", "they was"),
        ]

    def test_highlight_escapes_and_marks(self):
        items = number_items([{"type": "Grammar", "segment": "<b> tags", "suggestion": "Drop the markup."}])
        highlighted = highlight_content("Use <b> tags & more.", items)

        assert highlighted == (
            '<p>Use <span class="highlight-language" data-highlight-id="1">&lt;b&gt; tags (1)</span>'
            ' &amp; more.</p>'
        )

    def test_highlight_skips_overlaps_and_missing_segments(self):
        items = number_items([
            {"type": "Clarity", "segment": "quick brown", "suggestion": "Fine."},
            {"type": "Style", "segment": "brown fox", "suggestion": "Overlaps."},
            {"type": "Relevance", "segment": "lazy cat", "suggestion": "Not in the text."},
            {"type": "Relevance", "segment": "lazy dog", "suggestion": "Off topic."},
        ])
        highlighted = highlight_content("The quick brown fox jumps over the lazy dog.", items)

        assert 'class="highlight-organization" data-highlight-id="1">quick brown (1)</span>' in highlighted
        assert 'data-highlight-id="2"' not in highlighted
        assert 'data-highlight-id="3"' not in highlighted
        assert 'class="highlight-content" data-highlight-id="4">lazy dog (4)</span>' in highlighted

    def test_highlight_paragraphs(self):
        assert highlight_content("One.\n\nTwo.", []) == "<p>One.</p><p>&nbsp;</p><p>Two.</p>"

    def test_build_details(self):
        items = number_items([{"type": "Grammar", "segment": "One", "suggestion": "Ok."}])
        details = build_details("One two.", items)
        assert details["items"] == [{"type": "Grammar", "segment": "One", "suggestion": "Ok.", "number": 1}]
        assert details["highlighted_content"].startswith("<p><span")


def _completion(body):
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = {"choices": [{"message": {"content": body}}]}
    return response


class TestOpenRouterScorer:
    """Test cases for the HTTP scorer."""

    @patch("essaycore.scoring.requests.post")
    def test_parses_scores(self, mock_post):
        mock_post.return_value = _completion(json.dumps(
            {"content": 78, "language": 82.4, "organization": 75, "feedback": "Good work."}
        ))
        scorer = OpenRouterScorer(api_key="key", timeout=5)

        result = scorer.score("essay body", "the prompt")

        assert result.content_score == 78
        assert result.language_score == 82
        assert result.organization_score == 75
        assert result.feedback == "Good work."
        _, kwargs = mock_post.call_args
        assert kwargs["timeout"] == 5
        assert kwargs["headers"]["Authorization"] == "Bearer key"
        assert "essay body" in kwargs["json"]["messages"][1]["content"]

    @patch("essaycore.scoring.requests.post")
    def test_clamps_to_range(self, mock_post):
        mock_post.return_value = _completion(json.dumps(
            {"content": 140, "language": -3, "organization": 50, "feedback": "Hm."}
        ))
        result = OpenRouterScorer(api_key="key").score("essay", "prompt")
        assert result.content_score == 100
        assert result.language_score == 0

    @patch("essaycore.scoring.requests.post")
    def test_accepts_fenced_json(self, mock_post):
        body = "```json\n" + json.dumps(
            {"content": 60, "language": 61, "organization": 62, "feedback": "Fine."}
        ) + "\n```"
        mock_post.return_value = _completion(body)
        result = OpenRouterScorer(api_key="key").score("essay", "prompt")
        assert result.organization_score == 62

    @patch("essaycore.scoring.requests.post")
    def test_unparseable_reply_fails(self, mock_post):
        mock_post.return_value = _completion("I would give this essay a B+.")
        with pytest.raises(ScoringFailure):
            OpenRouterScorer(api_key="key").score("essay", "prompt")

    @patch("essaycore.scoring.requests.post")
    def test_missing_field_fails(self, mock_post):
        mock_post.return_value = _completion(json.dumps({"content": 60, "language": 61}))
        with pytest.raises(ScoringFailure):
            OpenRouterScorer(api_key="key").score("essay", "prompt")

    @patch("essaycore.scoring.requests.post")
    def test_http_error_fails(self, mock_post):
        response = MagicMock()
        response.status_code = 429
        response.text = "rate limited"
        mock_post.return_value = response
        with pytest.raises(ScoringFailure):
            OpenRouterScorer(api_key="key").score("essay", "prompt")

    @patch("essaycore.scoring.requests.post")
    def test_timeout_fails(self, mock_post):
        mock_post.side_effect = requests.Timeout("slow")
        with pytest.raises(ScoringFailure):
            OpenRouterScorer(api_key="key").score("essay", "prompt")

    def test_missing_api_key_fails(self, monkeypatch):
        monkeypatch.setattr("essaycore.config.OPENROUTER_API_KEY", None)
        with pytest.raises(ScoringFailure):
            OpenRouterScorer().score("essay", "prompt")

    @patch("essaycore.scoring.requests.post")
    def test_detail_parses_items(self, mock_post):
        mock_post.return_value = _completion(json.dumps([
            {"type": "grammar", "segment": "they was", "suggestion": "Use were."},
            {"type": "Style", "segment": "", "suggestion": "No anchor."},
        ]))

        items = OpenRouterScorer(api_key="key").detail("essay body where they was late", "the prompt")

        assert [(item.number, item.type, item.segment) for item in items] == [(1, "Grammar", "they was")]
        _, kwargs = mock_post.call_args
        assert kwargs["json"]["max_tokens"] == 3000
        assert "Word Choice" in kwargs["json"]["messages"][0]["content"]
        assert "essay body where they was late" in kwargs["json"]["messages"][1]["content"]

    @patch("essaycore.scoring.requests.post")
    def test_detail_array_inside_prose(self, mock_post):
        array = json.dumps([{"type": "Clarity", "segment": "essay", "suggestion": "Be concrete."}])
        mock_post.return_value = _completion(f"Here is my feedback:\n{array}\nHope this helps!")

        items = OpenRouterScorer(api_key="key").detail("essay", "prompt")
        assert items[0].suggestion == "Be concrete."

    @pytest.mark.parametrize("body", [
        "No comments, great essay.",
        json.dumps({"items": []}),
        json.dumps([{"type": "Grammar", "segment": "", "suggestion": ""}]),
    ])
    @patch("essaycore.scoring.requests.post")
    def test_detail_unusable_reply_fails(self, mock_post, body):
        mock_post.return_value = _completion(body)
        with pytest.raises(ScoringFailure):
            OpenRouterScorer(api_key="key").detail("essay", "prompt")


class TestBuildScorer:
    """Test cases for scorer selection."""

    def test_heuristic(self, monkeypatch):
        monkeypatch.setattr("essaycore.config.SCORING_BACKEND", "heuristic")
        assert isinstance(build_scorer(), HeuristicScorer)

    def test_openrouter(self, monkeypatch):
        monkeypatch.setattr("essaycore.config.SCORING_BACKEND", "openrouter")
        assert isinstance(build_scorer(), OpenRouterScorer)

    def test_unknown(self, monkeypatch):
        monkeypatch.setattr("essaycore.config.SCORING_BACKEND", "telepathy")
        with pytest.raises(ValueError):
            build_scorer()
