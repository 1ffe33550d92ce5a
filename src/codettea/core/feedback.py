"""Reviewer verdict classification and retry feedback aggregation."""

import logging
from dataclasses import dataclass

from codettea.models import APPROVE, REJECT, Review

logger = logging.getLogger(__name__)

APPROVAL_MARKERS = ("approve", "lgtm", "✅")
REJECTION_MARKERS = ("❌", "reject", "**rework_required**")
REWORK_MARKERS = ("**REWORK_REQUIRED**", "❌ REJECT")
REWORK_PHRASES = ("must fix", "critical issues", "action items")

# Reviews of one concurrent round finish at slightly different times.
REVIEW_ROUND_WINDOW = 5 * 60

NO_PREVIOUS_FEEDBACK = "No previous attempts - this is the first implementation attempt."


@dataclass(frozen=True)
class ReviewClassification:
    verdict: str
    marker: str | None = None
    ambiguous: bool = False


def classify_review(text: str) -> ReviewClassification:
    """Classify a reviewer's free-text response.

    Any approval marker approves; everything else rejects. A response that
    also carries a rejection marker is still approved but flagged ambiguous.
    """
    lowered = (text or "").lower()
    marker = next((m for m in APPROVAL_MARKERS if m in lowered), None)
    if marker is None:
        return ReviewClassification(verdict=REJECT)
    ambiguous = any(m in lowered for m in REJECTION_MARKERS)
    return ReviewClassification(verdict=APPROVE, marker=marker, ambiguous=ambiguous)


def parse_review_result(text: str) -> str:
    return classify_review(text).verdict


def has_rework_required_feedback(text: str) -> bool:
    if any(marker in text for marker in REWORK_MARKERS):
        return True
    lowered = text.lower()
    return any(phrase in lowered for phrase in REWORK_PHRASES)


def latest_rejection_round(history: list[Review], current_attempt: int) -> list[Review]:
    """Rejected reviews from the most recent review round, newest first.

    On the first attempt every rejection is returned; afterwards only those
    within REVIEW_ROUND_WINDOW of the newest rejection.
    """
    rejected = sorted(
        (r for r in history if r.verdict == REJECT),
        key=lambda r: r.timestamp,
        reverse=True,
    )
    if not rejected or current_attempt <= 1:
        return rejected
    newest = rejected[0].timestamp
    return [r for r in rejected if newest - r.timestamp <= REVIEW_ROUND_WINDOW]


def generate_previous_failure_feedback(history: list[Review], current_attempt: int) -> str:
    """Render the latest round of rejections as guidance for the next solver."""
    reviews = latest_rejection_round(history, current_attempt)
    if not reviews:
        return NO_PREVIOUS_FEEDBACK

    parts = [f"## Previous Review Feedback (Attempt {current_attempt})\n"]
    for i, review in enumerate(reviews, start=1):
        label = f"{review.reviewer_id}, {review.profile}" if review.profile else review.reviewer_id
        parts.append(f"### Reviewer {i} ({label})\n{review.feedback.strip()}\n")
    parts.append("**Please address the above feedback and re-implement accordingly.**")
    return "\n".join(parts)
