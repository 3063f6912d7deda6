"""Scoring collaborator boundary.

The engine only needs something with ``score(content, prompt) -> ScoreResult``
and ``detail(content, prompt) -> List[FeedbackItem]``. Two implementations
ship: an offline heuristic grader and an HTTP grader that asks an
OpenRouter-hosted model for HKDSE-style scores and line-level comments.
"""
import html
import json
import logging
import random
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Protocol

import requests
from pydantic import BaseModel

from . import config
from .errors import ScoringFailure

logger = logging.getLogger(__name__)

FEEDBACK_TYPES = (
    "Grammar", "Spelling", "Word Choice", "Sentence Flow", "Clarity", "Style",
    "Content Requirement", "Relevance", "Idea Development", "Organization",
)

# Highlight colour group per feedback type; anything else is a content remark
LANGUAGE_TYPES = ("Grammar", "Spelling", "Word Choice", "Style")
ORGANIZATION_TYPES = ("Sentence Flow", "Organization", "Clarity")


class ScoreResult(BaseModel):
    content_score: int
    language_score: int
    organization_score: int
    feedback: str


class FeedbackItem(BaseModel):
    """A comment anchored to a segment of the essay text."""
    type: str
    segment: str
    suggestion: str
    number: int


class Scorer(Protocol):
    def score(self, content: str, prompt: str) -> ScoreResult:
        ...

    def detail(self, content: str, prompt: str) -> List[FeedbackItem]:
        ...


def compute_total_score(content_score: int, language_score: int, organization_score: int) -> int:
    """Unweighted mean of the three dimensions, rounded half-up."""
    mean = Decimal(content_score + language_score + organization_score) / Decimal(3)
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_scores(result: ScoreResult, low: int = None, high: int = None) -> ScoreResult:
    """Reject results with a score outside the configured range or empty text."""
    low = config.SCORE_MIN if low is None else low
    high = config.SCORE_MAX if high is None else high
    for name in ("content_score", "language_score", "organization_score"):
        value = getattr(result, name)
        if not low <= value <= high:
            raise ScoringFailure(f"{name} {value} outside {low}-{high}", entity="Feedback", field=name)
    if not result.feedback.strip():
        raise ScoringFailure("Scoring returned empty feedback text", entity="Feedback", field="feedback")
    return result


def normalize_feedback_type(raw) -> str:
    """Map a free-form type label onto FEEDBACK_TYPES, or "Other"."""
    label = str(raw or "").strip().lower()
    if label:
        for name in FEEDBACK_TYPES:
            if name.lower() in label or label in name.lower():
                return name
    return "Other"


def number_items(raw_items: Iterable[Dict]) -> List[FeedbackItem]:
    """Normalise types, drop entries without a segment or suggestion, number the rest from 1."""
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        segment = str(raw.get("segment") or "").strip()
        suggestion = str(raw.get("suggestion") or "").strip()
        if not segment or not suggestion:
            continue
        items.append(FeedbackItem(
            type=normalize_feedback_type(raw.get("type")),
            segment=segment,
            suggestion=suggestion,
            number=len(items) + 1,
        ))
    return items


def highlight_class(feedback_type: str) -> str:
    if feedback_type in LANGUAGE_TYPES:
        return "highlight-language"
    if feedback_type in ORGANIZATION_TYPES:
        return "highlight-organization"
    return "highlight-content"


def highlight_content(content: str, items: List[FeedbackItem]) -> str:
    """Render the essay as HTML paragraphs with each item's segment wrapped in a span.

    Only the first occurrence of a segment is marked; segments missing from
    the text or overlapping an earlier mark are skipped.
    """
    marks = []
    for item in items:
        start = content.find(item.segment)
        if start == -1:
            continue
        end = start + len(item.segment)
        if any(start < other_end and other_start < end for other_start, other_end, _ in marks):
            continue
        marks.append((start, end, item))
    marks.sort(key=lambda mark: mark[0])

    parts, cursor = [], 0
    for start, end, item in marks:
        parts.append(html.escape(content[cursor:start], quote=False))
        parts.append(
            f'<span class="{highlight_class(item.type)}" data-highlight-id="{item.number}">'
            f'{html.escape(item.segment, quote=False)} ({item.number})</span>'
        )
        cursor = end
    parts.append(html.escape(content[cursor:], quote=False))
    return "".join(f"<p>{line or '&nbsp;'}</p>" for line in "".join(parts).split("\n"))


def build_details(content: str, items: List[FeedbackItem]) -> Dict:
    """The JSON document stored in Feedback.details."""
    return {
        "items": [item.model_dump() for item in items],
        "highlighted_content": highlight_content(content, items),
    }


def _strip_fences(raw: str) -> str:
    # Models sometimes wrap the reply in a fenced code block
    if raw.startswith("```"):
        raw = raw.strip("`")
        if raw.startswith("json"):
            raw = raw[len("json"):]
    return raw.strip()


class HeuristicScorer:
    """Offline grader: random scores in 60-89 and a narrative keyed on length."""

    SHORT_ESSAY = 500
    MEDIUM_ESSAY = 1000
    MAX_SEGMENTS = 5
    SEGMENT_LENGTH = 80

    SUGGESTIONS = (
        "Consider revising for clarity and precision. Focus on making your point more direct.",
        "This shows good vocabulary use. Consider how it connects to your main argument.",
        "Review for grammatical accuracy. Check subject-verb agreement and tense consistency.",
        "Good point that could be strengthened with a specific example to support your claim.",
        "Consider restructuring this sentence for better flow and readability.",
    )
    TYPES = ("Clarity", "Word Choice", "Grammar", "Idea Development", "Sentence Flow")

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def score(self, content: str, prompt: str) -> ScoreResult:
        length = len(content)
        if length < self.SHORT_ESSAY:
            text = (
                f"Your essay is too short ({length} characters).\n\n"
                "Strengths:\n- You have a clear opening statement\n\n"
                "Areas for improvement:\n"
                "- Develop your ideas further with examples and explanations\n"
                "- Aim for at least 800-1000 characters\n"
                "- Add more supporting evidence\n\n"
                "Overall, your essay needs significant expansion to meet the requirements."
            )
        elif length < self.MEDIUM_ESSAY:
            text = (
                "Your essay demonstrates basic understanding of the topic.\n\n"
                "Strengths:\n- Good attempt at addressing the prompt\n- Some relevant points included\n\n"
                "Areas for improvement:\n"
                "- Expand your conclusion to reinforce your main arguments\n"
                "- Work on sentence variety to improve flow\n"
                "- Consider adding more specific examples to strengthen your points\n\n"
                "Overall, this is a developing essay that would benefit from more depth."
            )
        else:
            text = (
                "Your essay demonstrates strong understanding of the topic.\n\n"
                "Strengths:\n- Clear thesis statement and excellent structure\n"
                "- Relevant supporting evidence throughout\n"
                "- Effective use of transitions between paragraphs\n\n"
                "Areas for improvement:\n"
                "- Consider incorporating more diverse vocabulary\n"
                "- Some minor grammatical issues can be addressed\n"
                "- The conclusion could more strongly tie back to your thesis\n\n"
                "Overall, this is a well-developed essay that effectively addresses the prompt."
            )
        return ScoreResult(
            content_score=self.rng.randrange(60, 90),
            language_score=self.rng.randrange(60, 90),
            organization_score=self.rng.randrange(60, 90),
            feedback=text,
        )

    def detail(self, content: str, prompt: str) -> List[FeedbackItem]:
        """Comment on the opening of the first few sentences."""
        sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", content) if s.strip()]
        raw_items = [
            {
                "type": self.TYPES[index % len(self.TYPES)],
                "segment": sentence[:self.SEGMENT_LENGTH].rstrip(),
                "suggestion": self.SUGGESTIONS[index % len(self.SUGGESTIONS)],
            }
            for index, sentence in enumerate(sentences[:self.MAX_SEGMENTS])
        ]
        return number_items(raw_items)


SYSTEM_PROMPT = """You are an expert HKDSE English Language Paper 2 (Writing) examiner.
You assess essays on three categories, each scored {low}-{high}:

1. Content: relevance to the task, development of ideas, supporting details.
2. Language: grammatical accuracy, vocabulary range, spelling and punctuation, tone.
3. Organization: coherence and cohesion, paragraphing, transitions, overall structure.

Respond with ONLY a JSON object - no additional text."""

USER_PROMPT = """Grade this essay.

Question/Prompt: {prompt}

Essay content:
{content}

Return ONLY a JSON object with the following fields:
{{
  "content": <score>,
  "language": <score>,
  "organization": <score>,
  "feedback": "<strengths and areas for improvement, a few short paragraphs>"
}}"""

DETAIL_SYSTEM_PROMPT = """You are an expert HKDSE English Language examiner giving detailed,
constructive feedback on student writing. Pick 5-15 segments of the essay (5-15 words each,
copied exactly as written) that show the student's strengths and weaknesses, and comment on each.

Classify each comment as EXACTLY ONE of: {types}."""

DETAIL_USER_PROMPT = """Essay prompt: {prompt}

Essay:
{content}

For each segment give a specific suggestion of 30-60 words. Return ONLY a JSON array:
[
  {{"type": "Grammar", "segment": "exact text from the essay", "suggestion": "..."}}
]"""


class OpenRouterScorer:
    """Scores essays through the OpenRouter chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or config.OPENROUTER_API_KEY
        self.model = model or config.OPENROUTER_MODEL
        self.url = url or config.OPENROUTER_URL
        self.timeout = timeout or config.SCORING_TIMEOUT_SECONDS

    def _complete(self, system: str, user: str, max_tokens: int = 1500) -> str:
        if not self.api_key:
            raise ScoringFailure("OpenRouter API key is not configured")
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": 0.3,
            "max_tokens": max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Error calling OpenRouter: {e}")
            raise ScoringFailure("Scoring service unreachable") from e
        if response.status_code != 200:
            logger.error(f"OpenRouter returned {response.status_code}: {response.text[:200]}")
            raise ScoringFailure(f"Scoring service returned {response.status_code}")
        try:
            return response.json()["choices"][0]["message"]["content"].strip()
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise ScoringFailure("Malformed scoring service response") from e

    def _clamp(self, value) -> int:
        return min(config.SCORE_MAX, max(config.SCORE_MIN, int(round(float(value)))))

    def score(self, content: str, prompt: str) -> ScoreResult:
        raw = _strip_fences(self._complete(
            SYSTEM_PROMPT.format(low=config.SCORE_MIN, high=config.SCORE_MAX),
            USER_PROMPT.format(prompt=prompt, content=content),
        ))
        try:
            data = json.loads(raw[raw.find("{"):] if "{" in raw else raw)
            return ScoreResult(
                content_score=self._clamp(data["content"]),
                language_score=self._clamp(data["language"]),
                organization_score=self._clamp(data["organization"]),
                feedback=str(data["feedback"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Error parsing scores: {e}. Response: {raw[:200]}")
            raise ScoringFailure("Scoring service returned unusable scores") from e

    def detail(self, content: str, prompt: str) -> List[FeedbackItem]:
        raw = _strip_fences(self._complete(
            DETAIL_SYSTEM_PROMPT.format(types=", ".join(FEEDBACK_TYPES)),
            DETAIL_USER_PROMPT.format(prompt=prompt, content=content),
            max_tokens=3000,
        ))
        try:
            data = json.loads(raw)
        except ValueError:
            # Fall back to the first JSON array embedded in surrounding prose
            match = re.search(r"\[\s*\{[\s\S]*\}\s*\]", raw)
            if match is None:
                logger.error(f"Error parsing feedback items. Response: {raw[:200]}")
                raise ScoringFailure("Scoring service returned unusable feedback items")
            try:
                data = json.loads(match.group(0))
            except ValueError as e:
                raise ScoringFailure("Scoring service returned unusable feedback items") from e
        if not isinstance(data, list):
            raise ScoringFailure("Scoring service returned unusable feedback items")
        items = number_items(data)
        if not items:
            raise ScoringFailure("Scoring service returned no usable feedback items")
        return items


def build_scorer() -> Scorer:
    """Pick the scorer named by SCORING_BACKEND."""
    if config.SCORING_BACKEND == "openrouter":
        return OpenRouterScorer()
    if config.SCORING_BACKEND == "heuristic":
        return HeuristicScorer()
    raise ValueError(f"Unknown scoring backend: {config.SCORING_BACKEND}")
