"""JSON snapshots of learned patterns, so learning survives restarts."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from aves.store.base import PatternStore
from aves.types import Pattern

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def dump_patterns(store: PatternStore, path: Path) -> int:
    """Write every pattern in *store* to *path*. Returns the number written."""
    patterns = sorted(store.all(), key=lambda p: p.key)
    payload = {
        "version": SNAPSHOT_VERSION,
        "patterns": [p.to_dict() for p in patterns],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False))
    tmp.replace(path)
    logger.info("Saved %d patterns to %s", len(patterns), path)
    return len(patterns)


def load_patterns(path: Path, store: PatternStore) -> int:
    """Load patterns from *path* into *store*, replacing same-key entries.

    Malformed entries are skipped with a warning. Returns the number loaded.
    """
    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"Pattern snapshot must be a JSON object, got {type(data).__name__}")
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported pattern snapshot version: {version!r}")

    loaded = 0
    for index, entry in enumerate(data.get("patterns", [])):
        try:
            pattern = Pattern.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed pattern entry %d: %s", index, exc)
            continue
        store.put(pattern)
        loaded += 1
    logger.info("Loaded %d patterns from %s", loaded, path)
    return loaded
