"""Parsing and validation of vision-AI annotation responses.

The service is asked for a bare JSON array but models regularly wrap it in
markdown fences. A response that is not a JSON array is a permanent failure
for the item; individual malformed candidates are dropped.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from aves.errors import PermanentServiceError
from aves.types import AnnotationCandidate, AnnotationType, BoundingBox
from aves.utils.bbox import validate_box

logger = logging.getLogger(__name__)

# Used when the service omits a confidence score
DEFAULT_CONFIDENCE = 0.8

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def parse_annotation_payload(text: str, provider: str = "vision") -> list[dict[str, Any]]:
    """Decode the service's text response into a list of raw candidate dicts."""
    body = _FENCE_OPEN.sub("", text.strip())
    body = _FENCE_CLOSE.sub("", body).strip()
    if not body:
        raise PermanentServiceError(provider, "Empty response body")
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        raise PermanentServiceError(provider, f"Response is not valid JSON: {exc}") from exc
    if not isinstance(parsed, list):
        raise PermanentServiceError(
            provider, f"Response is not a JSON array (got {type(parsed).__name__})"
        )
    return parsed


def validate_candidate(raw: Any) -> list[str]:
    """Validate one raw candidate dict, returning error messages (empty = valid)."""
    if not isinstance(raw, dict):
        return [f"Candidate is not an object: {type(raw).__name__}"]

    errors: list[str] = []
    for field_name in ("spanishTerm", "englishTerm"):
        value = raw.get(field_name)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"Missing or empty '{field_name}'")

    bbox = raw.get("boundingBox")
    if not isinstance(bbox, dict):
        errors.append("Missing 'boundingBox'")
    else:
        coords: dict[str, float] = {}
        for key in ("x", "y", "width", "height"):
            value = _as_number(bbox.get(key))
            if value is None:
                errors.append(f"boundingBox.{key} missing or not numeric")
            else:
                coords[key] = value
        if len(coords) == 4:
            errors.extend(validate_box(BoundingBox(**coords)))

    kind = raw.get("type")
    if kind not in {t.value for t in AnnotationType}:
        errors.append(f"Invalid type {kind!r}")

    if raw.get("confidence") is not None:
        conf = _as_number(raw.get("confidence"))
        if conf is None or not (0.0 <= conf <= 1.0):
            errors.append(f"confidence out of [0,1]: {raw.get('confidence')!r}")
    return errors


def parse_candidates(
    raw_items: list[Any],
    species: str | None = None,
    image_ref: str | None = None,
) -> list[AnnotationCandidate]:
    """Convert raw dicts to candidates, dropping (and logging) malformed ones."""
    candidates: list[AnnotationCandidate] = []
    for index, raw in enumerate(raw_items):
        errors = validate_candidate(raw)
        if errors:
            logger.warning(
                "Dropping malformed candidate %d for %s: %s",
                index, image_ref or "<image>", "; ".join(errors),
            )
            continue
        candidates.append(_to_candidate(raw, species))
    return candidates


def _to_candidate(raw: dict[str, Any], species: str | None) -> AnnotationCandidate:
    bbox = raw["boundingBox"]
    confidence = raw.get("confidence")
    difficulty = _as_number(raw.get("difficultyLevel"))
    pronunciation = raw.get("pronunciation")
    return AnnotationCandidate(
        spanish_term=raw["spanishTerm"].strip(),
        english_term=raw["englishTerm"].strip(),
        box=BoundingBox(
            x=float(bbox["x"]),
            y=float(bbox["y"]),
            width=float(bbox["width"]),
            height=float(bbox["height"]),
        ),
        type=AnnotationType(raw["type"]),
        confidence=DEFAULT_CONFIDENCE if confidence is None else float(confidence),
        species=species,
        difficulty_level=int(difficulty) if difficulty is not None else None,
        pronunciation=pronunciation if isinstance(pronunciation, str) else None,
    )


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number
