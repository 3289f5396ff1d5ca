"""
Vote Parser - Oraculum

Turns free-form model output into (outcome, confidence).

Order of attempts:
1. First well-formed JSON object carrying an outcome/answer field
2. Labelled keyword ("Outcome: YES", "answer - no")
3. A leading YES/NO/INVALID word followed by punctuation or a line break
4. Exactly one distinct label given as a standalone answer line
Anything else is unparsable and becomes an abstention.
"""

import json
import re
from typing import Any, Dict, Optional, Tuple

from consensus.models import Outcome

OUTCOME_KEYS = ("outcome", "answer", "vote", "verdict", "resolution")
DEFAULT_KEYWORD_CONFIDENCE = 50.0

_LABELLED = re.compile(
    r'\b(?:outcome|answer|verdict|resolution|vote)\b\s*[:=\-]?\s*["\']?(yes|no|invalid)\b',
    re.IGNORECASE,
)
_LEADING = re.compile(r'^\W*(yes|no|invalid)\s*(?:[.,!:;*]|$)', re.IGNORECASE | re.MULTILINE)
_ANSWER_LINE = re.compile(r'^\W*(yes|no|invalid)\W*$', re.IGNORECASE | re.MULTILINE)
_CONFIDENCE = re.compile(r'confidence\W{0,3}(\d{1,3}(?:\.\d+)?)\s*(%?)', re.IGNORECASE)


def normalize_confidence(value: Any) -> Optional[float]:
    """Clamp a confidence to 0-100, scaling 0-1 fractions."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if confidence != confidence:  # NaN
        return None
    if 0.0 < confidence <= 1.0:
        confidence *= 100
    return max(0.0, min(100.0, confidence))


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first JSON object in the text that carries an outcome field."""
    decoder = json.JSONDecoder()
    for match in re.finditer(r'\{', text):
        try:
            payload, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict) and any(k in payload for k in OUTCOME_KEYS):
            return payload
    return None


def _confidence_from_text(text: str) -> float:
    match = _CONFIDENCE.search(text)
    if match:
        raw = float(match.group(1))
        if match.group(2) == "%" or raw > 1.0:
            return max(0.0, min(100.0, raw))
        return raw * 100
    return DEFAULT_KEYWORD_CONFIDENCE


def _parse_keywords(text: str) -> Optional[Outcome]:
    labelled = _LABELLED.search(text)
    if labelled:
        return Outcome.from_label(labelled.group(1))

    leading = _LEADING.match(text)
    if leading:
        return Outcome.from_label(leading.group(1))

    labels = {label.upper() for label in _ANSWER_LINE.findall(text)}
    if len(labels) == 1:
        return Outcome.from_label(labels.pop())
    return None


def parse_vote(text: str) -> Optional[Tuple[Outcome, float]]:
    """
    Parse a model response into (outcome, confidence 0-100).

    Returns None when the response cannot be interpreted.
    """
    if not text or not text.strip():
        return None

    payload = extract_json_object(text)
    if payload is not None:
        label = next((payload[k] for k in OUTCOME_KEYS if k in payload), None)
        outcome = Outcome.from_label(label) if label is not None else None
        if outcome is not None:
            confidence = normalize_confidence(payload.get("confidence"))
            if confidence is None:
                confidence = DEFAULT_KEYWORD_CONFIDENCE
            return outcome, confidence

    outcome = _parse_keywords(text)
    if outcome is None:
        return None
    return outcome, _confidence_from_text(text)
