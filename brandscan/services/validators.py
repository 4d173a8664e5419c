"""Provider result validation and sanitization functions."""

import logging
import math
from typing import Any, Dict

logger = logging.getLogger(__name__)

SENTIMENTS = ("positive", "neutral", "negative")
RESULT_STATUSES = ("success", "error", "warning")
MAX_MENTION_POSITION = 5


class InvalidProviderResult(ValueError):
    """Provider returned a payload that cannot be stored as a result."""


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def sanitize_score(value: Any) -> float:
    """Clamp a score or percentage into [0, 100]; non-numbers become 0."""
    if not _is_number(value):
        return 0.0
    return float(min(max(value, 0), 100))


def sanitize_confidence(value: Any) -> float:
    """Clamp a confidence into [0, 100]; non-numbers become 50."""
    if not _is_number(value):
        return 50.0
    return float(min(max(value, 0), 100))


def sanitize_mention_position(value: Any) -> int:
    """Floor a mention position into [0, 5]; non-numbers become 0."""
    if not _is_number(value):
        return 0
    return min(max(math.floor(value), 0), MAX_MENTION_POSITION)


def sanitize_response_time(value: Any) -> float:
    if not _is_number(value):
        return 0.0
    return float(max(value, 0))


def sanitize_count(value: Any) -> int:
    if not _is_number(value):
        return 0
    return max(int(value), 0)


def sanitize_sentiment(value: Any) -> str:
    if isinstance(value, str) and value.lower() in SENTIMENTS:
        return value.lower()
    return "neutral"


def sanitize_status(value: Any) -> str:
    if isinstance(value, str) and value.lower() in RESULT_STATUSES:
        return value.lower()
    return "success"


def sanitize_sentiment_distribution(distribution: Any) -> Dict[str, float]:
    """
    Clamp every sentiment bucket into [0, 100].

    Args:
        distribution: Raw distribution dict (may be missing or malformed)

    Returns:
        Distribution with positive/neutral/negative/strongly_positive keys;
        an all-zero distribution becomes 100% neutral
    """
    if not isinstance(distribution, dict):
        distribution = {}

    buckets = {
        key: sanitize_score(distribution.get(key))
        for key in ("positive", "neutral", "negative", "strongly_positive")
    }
    if not any(buckets.values()):
        return {"positive": 0.0, "neutral": 100.0, "negative": 0.0, "strongly_positive": 0.0}
    return buckets


def _sanitize_aggregated_sentiment(sentiment: Any) -> Dict[str, Any]:
    if not isinstance(sentiment, dict):
        sentiment = {}
    return {
        "overall": sanitize_sentiment(sentiment.get("overall")),
        "confidence": sanitize_confidence(sentiment.get("confidence")),
        "distribution": sanitize_sentiment_distribution(sentiment.get("distribution")),
    }


def _sanitize_prompt_result(result: Any) -> Dict[str, Any]:
    if not isinstance(result, dict):
        result = {}
    return {
        "prompt_id": result.get("prompt_id") or "unknown",
        "prompt_text": result.get("prompt_text") or "No prompt text",
        "score": sanitize_score(result.get("score")),
        "weighted_score": sanitize_score(result.get("weighted_score")),
        "mention_position": sanitize_mention_position(result.get("mention_position")),
        "response": result.get("response") or "No response",
        "response_time": sanitize_response_time(result.get("response_time")),
        "sentiment": _sanitize_aggregated_sentiment(result.get("sentiment")),
        "status": sanitize_status(result.get("status")),
    }


def sanitize_analysis_result(data: Any) -> Dict[str, Any]:
    """
    Sanitize a raw provider result before it is persisted.

    Out-of-range numbers are clamped and malformed fields fall back to
    defaults, so one bad field never fails an otherwise usable response.

    Args:
        data: Raw provider payload

    Returns:
        Sanitized result dict

    Raises:
        InvalidProviderResult: If the payload is not an object or carries
            no numeric overall/weighted score at all
    """
    if not isinstance(data, dict):
        raise InvalidProviderResult(f"Provider result is not an object: {type(data).__name__}")
    if not _is_number(data.get("overall_score")) or not _is_number(data.get("weighted_score")):
        raise InvalidProviderResult("Provider result is missing numeric overall_score/weighted_score")

    prompt_results = data.get("prompt_results")
    if not isinstance(prompt_results, list):
        prompt_results = []

    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

    sanitized = {
        "overall_score": sanitize_score(data.get("overall_score")),
        "weighted_score": sanitize_score(data.get("weighted_score")),
        "success_rate": sanitize_score(data.get("success_rate")),
        "total_response_time": sanitize_response_time(data.get("total_response_time")),
        "aggregated_sentiment": _sanitize_aggregated_sentiment(data.get("aggregated_sentiment")),
        "prompt_results": [_sanitize_prompt_result(r) for r in prompt_results],
        "metadata": {
            "version": metadata.get("version") or "1.0",
            "total_prompts": sanitize_count(metadata.get("total_prompts")),
            "successful_prompts": sanitize_count(metadata.get("successful_prompts")),
        },
        "status": sanitize_status(data.get("status")),
    }

    if abs(data["overall_score"] - sanitized["overall_score"]) > 0.1:
        logger.warning(
            f"Overall score clamped from {data['overall_score']} to {sanitized['overall_score']}"
        )
    if abs(data["weighted_score"] - sanitized["weighted_score"]) > 0.1:
        logger.warning(
            f"Weighted score clamped from {data['weighted_score']} to {sanitized['weighted_score']}"
        )

    return sanitized
