from __future__ import annotations

import math
import re
from functools import lru_cache
from typing import Optional, Pattern

from .config import ConfidencePolicy
from .models import AIResponse
from .prompt_builder import HANDOFF_TOKEN


@lru_cache(maxsize=8)
def _compile(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def score_confidence(message: str, policy: ConfidencePolicy) -> float:
    """Purpose: Score how far a reply can be trusted without a human looking at it.
    Inputs/Outputs: Input is the cleaned reply and the policy; output is a float in [0, 1].
    Side Effects / State: None.
    Dependencies: Regex uncertainty lexicon from the policy.
    Failure Modes: None; a NaN result collapses to 0.0.
    Testing Notes: "short" -> base - short_penalty; short + "không biết" stacks both.
    """
    # Each penalty applies at most once and they add up, so a score is easy to explain.
    confidence = policy.base
    if len(message) < policy.min_length:
        confidence -= policy.short_penalty
    if len(message) > policy.max_length:
        confidence -= policy.long_penalty
    if policy.uncertainty_pattern and _compile(policy.uncertainty_pattern).search(message):
        confidence -= policy.uncertainty_penalty
    if math.isnan(confidence):
        return 0.0
    return max(0.0, min(1.0, confidence))


def analyze_response(raw: Optional[str], policy: Optional[ConfidencePolicy] = None) -> AIResponse:
    """Turn raw model text into a reply proposal: strip the handoff marker and score it."""
    policy = policy or ConfidencePolicy()
    text = raw or ""
    should_handoff = HANDOFF_TOKEN in text
    message = text.replace(HANDOFF_TOKEN, "").strip()
    return AIResponse(
        message=message,
        confidence=score_confidence(message, policy),
        should_handoff=should_handoff,
    )
