from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import List, Optional

from .models import LIST_FIELDS, TagSnapshot
from .scanner import AlbumScanner
from .tagging import CommitResult, TagCommitter, TagTransform

logger = logging.getLogger(__name__)


def normalize_whitespace(snapshot: TagSnapshot) -> TagSnapshot:
    """Collapse runs of whitespace in every text field and drop empty list entries."""

    def clean(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return " ".join(value.split()) or None

    changes = {name: clean(getattr(snapshot, name)) for name in ("title", "album", "album_artist")}
    for name in LIST_FIELDS:
        values = getattr(snapshot, name)
        if values is not None:
            changes[name] = tuple(c for c in (clean(v) for v in values) if c)
    return snapshot.merged(**changes)


BUILTIN_TRANSFORMS = {"normalize-whitespace": normalize_whitespace}


def load_transform(name: str) -> TagTransform:
    """Resolve ``module:callable`` (or a builtin name) to a transform."""
    if name in BUILTIN_TRANSFORMS:
        return BUILTIN_TRANSFORMS[name]
    module_name, sep, attr = name.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"transform must look like 'module:callable', got {name!r}")
    module = importlib.import_module(module_name)
    target = module
    for part in attr.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise ValueError(f"{name} is not callable")
    return target


def apply_transform(
    directory: Path,
    transform: TagTransform,
    scanner: AlbumScanner,
    committer: TagCommitter,
    *,
    preview: bool = False,
) -> List[CommitResult]:
    """Run ``transform`` once per audio file of ``directory`` and write what changed."""
    results: List[CommitResult] = []
    for path in scanner.audio_files(directory):
        result = committer.commit_transform(path, _checked(transform), preview=preview)
        logger.debug("%s", result.describe())
        results.append(result)
    return results


def _checked(transform: TagTransform) -> TagTransform:
    def run(snapshot: TagSnapshot) -> TagSnapshot:
        produced = transform(snapshot)
        if not isinstance(produced, TagSnapshot):
            raise ValueError(f"transform returned {type(produced).__name__}, expected TagSnapshot")
        return produced

    return run
