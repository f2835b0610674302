"""Bounding box clipping and validation."""

from __future__ import annotations

from aves.types import BoundingBox


def clip_box(box: BoundingBox) -> BoundingBox:
    """Clip box coordinates to [0, 1]. Width/height may become 0."""
    x1 = min(1.0, max(0.0, box.x))
    y1 = min(1.0, max(0.0, box.y))
    x2 = min(1.0, max(0.0, box.x + box.width))
    y2 = min(1.0, max(0.0, box.y + box.height))
    return BoundingBox(x=x1, y=y1, width=max(0.0, x2 - x1), height=max(0.0, y2 - y1))


def validate_box(box: BoundingBox) -> list[str]:
    """Validate a box, returning a list of error messages (empty = valid)."""
    errors: list[str] = []
    for name in ("x", "y", "width", "height"):
        value = getattr(box, name)
        if value != value:  # NaN
            errors.append(f"{name} is NaN")
        elif not (0.0 <= value <= 1.0):
            errors.append(f"{name} out of [0,1]: {value}")
    if box.width <= 0 or box.height <= 0:
        errors.append(f"Non-positive dimensions: w={box.width}, h={box.height}")
    return errors


def is_valid_box(box: BoundingBox) -> bool:
    return not validate_box(box)
