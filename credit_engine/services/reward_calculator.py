# credit_engine/services/reward_calculator.py
"""
Reward credits for reviewed submissions. Pure functions, no storage access.
"""

import math
from typing import Optional

CREDIT_REWARD_RULES = {
    "individual": {
        "base": 50,
        "word_count_bonus": {"threshold": 5000, "bonus": 25},
    },
    "group": {
        "base": 100,
        "per_member": 20,
    },
    # (minimum score, multiplier), checked top-down
    "quality_multipliers": [
        (4.5, 2.0),  # excellent
        (3.5, 1.5),  # good
        (2.5, 1.0),  # average
    ],
    "poor_multiplier": 0.5,
    "training_bonus": 0.1,
    "achievements": {
        "first_submission": 25,
        "perfect_score": 100,
        "ten_submissions": 50,
        "fifty_submissions": 200,
    },
}

SUBMISSION_TYPES = {"individual", "group"}
DEFAULT_QUALITY_SCORE = 3.0


def quality_multiplier(quality_score: float) -> float:
    for threshold, multiplier in CREDIT_REWARD_RULES["quality_multipliers"]:
        if quality_score >= threshold:
            return multiplier
    return CREDIT_REWARD_RULES["poor_multiplier"]


def calculate_submission_credits(
        quality_score: float,
        word_count: int,
        submission_type: str,
        member_count: Optional[int] = None,
        training_opt_in: bool = False,
) -> int:
    if submission_type not in SUBMISSION_TYPES:
        raise ValueError(f"submission_type must be one of {sorted(SUBMISSION_TYPES)}")

    rules = CREDIT_REWARD_RULES[submission_type]
    credits = math.floor(rules["base"] * quality_multiplier(quality_score))

    if submission_type == "individual":
        bonus = rules["word_count_bonus"]
        if (word_count or 0) >= bonus["threshold"]:
            credits += bonus["bonus"]
    elif member_count:
        credits += rules["per_member"] * member_count

    if training_opt_in:
        # 1.1 is not exact in binary; keep the floor stable for whole-number results
        credits = math.floor(round(credits * (1 + CREDIT_REWARD_RULES["training_bonus"]), 6))

    return credits


def average_quality(
        content_quality: Optional[float] = None,
        formatting_compliance: Optional[float] = None,
        originality: Optional[float] = None,
        academic_rigor: Optional[float] = None,
) -> float:
    """Overall review score from whichever component scores the reviewer filled in."""
    parts = [s for s in (content_quality, formatting_compliance, originality, academic_rigor) if s is not None]
    if not parts:
        return DEFAULT_QUALITY_SCORE
    return sum(parts) / len(parts)
