"""
Feedback templates for the VoiceMatch analysis service.

Maps scores to short learner-facing sentences. Bucket boundaries come
from the ``scoring.buckets`` setting: below the first boundary is
``low``, below the second ``mid``, otherwise ``high``.
"""

from typing import Dict, Optional, Sequence

LOW = "low"
MID = "mid"
HIGH = "high"
INSUFFICIENT = "insufficient"

DEFAULT_BUCKETS = (0.6, 0.8)

DIMENSION_TEMPLATES: Dict[str, Dict[str, str]] = {
    "pitch": {
        LOW: "Your pitch differs noticeably from the original. Listen again and "
             "follow where the voice rises and falls.",
        MID: "Your pitch follows the original in places. Pay attention to the "
             "rising and falling parts of the phrase.",
        HIGH: "Your pitch closely follows the original intonation.",
        INSUFFICIENT: "Not enough voiced sound to compare pitch. Speak a little "
                      "louder and closer to the microphone.",
    },
    "rhythm": {
        LOW: "The rhythm is quite different from the original. Try to match "
             "the pace and the pauses of the speaker.",
        MID: "The rhythm is slightly off. Try to keep a more consistent pace "
             "throughout the sentence.",
        HIGH: "Your rhythm and pacing match the original well.",
        INSUFFICIENT: "The recording is too short to judge the rhythm.",
    },
    "pronunciation": {
        LOW: "Several sounds differ from the original. Practice the phrase "
             "slowly, one word at a time.",
        MID: "Most sounds are right. Listen for the consonants and vowels "
             "that still differ from the original.",
        HIGH: "Your pronunciation of individual sounds is very good.",
        INSUFFICIENT: "Not enough clear speech to judge pronunciation.",
    },
}

OVERALL_TEMPLATES: Dict[str, str] = {
    LOW: "Keep practicing! Your recording is still far from the original.",
    MID: "Good attempt! You are getting close to the original.",
    HIGH: "Excellent! Your recording closely matches the original.",
    INSUFFICIENT: "We could not hear enough speech to compare. Please record again.",
}

# Appended to the overall sentence for the weakest dimension
FOCUS_HINTS: Dict[str, str] = {
    "pitch": "Focus on intonation next.",
    "rhythm": "Focus on rhythm and pacing next.",
    "pronunciation": "Focus on individual sounds next.",
}


def bucket(score: float, buckets: Sequence[float] = DEFAULT_BUCKETS) -> str:
    """Bucket name for a score in [0, 1]."""
    low, high = buckets
    if score < low:
        return LOW
    if score < high:
        return MID
    return HIGH


def dimension_feedback(
    dimension: str,
    score: float,
    insufficient: bool = False,
    buckets: Sequence[float] = DEFAULT_BUCKETS,
) -> str:
    templates = DIMENSION_TEMPLATES[dimension]
    if insufficient:
        return templates[INSUFFICIENT]
    return templates[bucket(score, buckets)]


def overall_feedback(
    score: float,
    dimension_scores: Dict[str, float],
    insufficient: bool = False,
    buckets: Sequence[float] = DEFAULT_BUCKETS,
) -> str:
    """
    Overall sentence plus a hint for the weakest dimension.

    Args:
        score: Overall similarity score
        dimension_scores: Score per dimension name
        insufficient: Every dimension fell back to the neutral score
        buckets: Bucket boundaries

    Returns:
        str: Non-empty feedback text
    """
    if insufficient:
        return OVERALL_TEMPLATES[INSUFFICIENT]

    level = bucket(score, buckets)
    text = OVERALL_TEMPLATES[level]

    weakest = _weakest(dimension_scores, buckets)
    if weakest is not None:
        text = f"{text} {FOCUS_HINTS[weakest]}"
    return text


def _weakest(dimension_scores: Dict[str, float], buckets: Sequence[float]) -> Optional[str]:
    """Lowest-scoring dimension below the high bucket, first name wins ties."""
    candidates = [
        (s, name) for name, s in dimension_scores.items()
        if name in FOCUS_HINTS and s < buckets[1]
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda c: c[0])[1]
