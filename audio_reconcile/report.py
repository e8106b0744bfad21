from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .tagging import CommitResult

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_SKIPPED = "skipped"
STATUS_INSPECTED = "inspected"
STATUS_FAILED = "failed"


class GenreTally:
    """Genre frequencies across a run.

    Owned by whoever runs the albums; ``reset`` starts over, ``finalize``
    freezes the counts so late additions are caught instead of silently mixed
    into a report that was already printed.
    """

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()
        self._labels: dict[str, str] = {}
        self._final = False

    @property
    def finalized(self) -> bool:
        return self._final

    def add(self, genres: Iterable[str]) -> None:
        if self._final:
            raise RuntimeError("genre tally is finalized; reset() before adding")
        for genre in genres:
            cleaned = " ".join(str(genre).split())
            if not cleaned:
                continue
            key = cleaned.casefold()
            self._labels.setdefault(key, cleaned)
            self._counts[key] += 1

    def top(self, limit: Optional[int] = None) -> List[Tuple[str, int]]:
        ranked = sorted(self._counts.items(), key=lambda item: (-item[1], item[0]))
        if limit is not None:
            ranked = ranked[:limit]
        return [(self._labels[key], count) for key, count in ranked]

    def reset(self) -> None:
        self._counts.clear()
        self._labels.clear()
        self._final = False

    def finalize(self) -> List[Tuple[str, int]]:
        self._final = True
        return self.top()

    def __len__(self) -> int:
        return len(self._counts)


@dataclass
class AlbumOutcome:
    directory: Path
    status: str = STATUS_SKIPPED
    reason: Optional[str] = None
    commits: List[CommitResult] = field(default_factory=list)
    relocated_to: Optional[Path] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def written(self) -> int:
        return sum(1 for result in self.commits if result.written)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.commits if not result.success)

    def describe(self) -> str:
        parts = [self.status]
        if self.reason and self.reason != self.status:
            parts.append(self.reason)
        if self.commits:
            parts.append(f"{self.written} written, {self.failed} failed of {len(self.commits)}")
        if self.relocated_to:
            parts.append(f"moved to {self.relocated_to}")
        if self.errors:
            parts.append(f"{len(self.errors)} error(s)")
        return f"{self.directory}: {', '.join(parts)}"


class RunReport:
    def __init__(self, genres: Optional[GenreTally] = None) -> None:
        self.outcomes: List[AlbumOutcome] = []
        self.genres = genres or GenreTally()

    def add(self, outcome: AlbumOutcome) -> None:
        self.outcomes.append(outcome)
        logger.debug("Recorded outcome %s", outcome.describe())

    def summary_lines(self, top_genres: int = 5) -> List[str]:
        if not self.outcomes:
            return ["No albums processed."]
        counts = Counter(outcome.status for outcome in self.outcomes)
        written = sum(outcome.written for outcome in self.outcomes)
        failed = sum(outcome.failed for outcome in self.outcomes)
        moved = sum(1 for outcome in self.outcomes if outcome.relocated_to)
        lines = [
            f"Albums: {len(self.outcomes)} "
            + "("
            + ", ".join(f"{counts[status]} {status}" for status in sorted(counts))
            + ")",
            f"Files written: {written}, failed: {failed}, albums moved: {moved}",
        ]
        genres = self.genres.top(top_genres)
        if genres:
            lines.append("Top genres: " + ", ".join(f"{name} ({count})" for name, count in genres))
        for outcome in self.outcomes:
            if outcome.errors or outcome.failed:
                lines.append(f"  ! {outcome.describe()}")
                lines.extend(f"      {error}" for error in outcome.errors)
        return lines
