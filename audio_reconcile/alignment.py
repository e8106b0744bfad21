from __future__ import annotations

import logging
from collections import Counter
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .errors import NoMatch
from .heuristics import guess_track_from_path
from .match_utils import duration_distance, name_match_score
from .models import LocalTrack, RemoteTrack, TrackPair

logger = logging.getLogger(__name__)


class AlignmentStrategy(str, Enum):
    ORDER = "order"
    DURATION = "duration"
    TRACK_NUMBER = "tracknumber"
    NAME = "name"
    HYBRID = "hybrid"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: "AlignmentStrategy | str") -> "AlignmentStrategy":
        if isinstance(value, AlignmentStrategy):
            return value
        key = str(value).strip().lower().replace("-", "").replace("_", "").replace(" ", "")
        aliases = {
            "title": cls.NAME,
            "track": cls.TRACK_NUMBER,
            "number": cls.TRACK_NUMBER,
            "sequence": cls.ORDER,
        }
        if key in aliases:
            return aliases[key]
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"unknown alignment strategy {value!r}")


REVERSIBLE_STRATEGIES = frozenset({AlignmentStrategy.ORDER, AlignmentStrategy.NAME})

# remote index -> local index
Assignment = Dict[int, int]


class TrackAligner:
    """Pairs the files of one album folder with the track list of a release."""

    def __init__(self, name_threshold: float = 0.55) -> None:
        self.name_threshold = name_threshold

    def align(
        self,
        local: Iterable[LocalTrack],
        remote: Iterable[RemoteTrack],
        strategy: AlignmentStrategy | str,
        reverse: bool = False,
    ) -> List[TrackPair]:
        strategy = AlignmentStrategy.parse(strategy)
        locals_ = local_enumeration(local, reverse=reverse and strategy in REVERSIBLE_STRATEGIES)
        remotes = sorted(remote, key=lambda track: track.ordinal)

        match strategy:
            case AlignmentStrategy.ORDER | AlignmentStrategy.MANUAL:
                assignment = self._order_assignment(locals_, remotes, set(), set())
            case AlignmentStrategy.DURATION:
                assignment = self._duration_assignment(locals_, remotes)
            case AlignmentStrategy.TRACK_NUMBER:
                assignment = self._track_number_assignment(locals_, remotes)
                self._fill_in_order(assignment, locals_, remotes)
            case AlignmentStrategy.NAME:
                assignment = self._name_assignment(locals_, remotes, {})
            case AlignmentStrategy.HYBRID:
                assignment = self._track_number_assignment(locals_, remotes, confident_only=True)
                assignment = self._name_assignment(locals_, remotes, assignment)

        pairs = build_pairs(locals_, remotes, assignment)
        logger.debug(
            "Aligned %d local / %d remote tracks with %s%s: %d paired",
            len(locals_),
            len(remotes),
            strategy.value,
            " (reversed)" if reverse and strategy in REVERSIBLE_STRATEGIES else "",
            len(assignment),
        )
        return pairs

    @staticmethod
    def _order_assignment(
        locals_: Sequence[LocalTrack],
        remotes: Sequence[RemoteTrack],
        used_locals: Set[int],
        used_remotes: Set[int],
    ) -> Assignment:
        free_locals = [idx for idx in range(len(locals_)) if idx not in used_locals]
        free_remotes = [idx for idx in range(len(remotes)) if idx not in used_remotes]
        return dict(zip(free_remotes, free_locals))

    def _fill_in_order(
        self,
        assignment: Assignment,
        locals_: Sequence[LocalTrack],
        remotes: Sequence[RemoteTrack],
    ) -> None:
        leftovers = self._order_assignment(
            locals_, remotes, set(assignment.values()), set(assignment.keys())
        )
        assignment.update(leftovers)

    @staticmethod
    def _duration_assignment(
        locals_: Sequence[LocalTrack], remotes: Sequence[RemoteTrack]
    ) -> Assignment:
        assignment: Assignment = {}
        claimed: Set[int] = set()
        for remote_idx, remote in enumerate(remotes):
            best: Optional[tuple[float, int]] = None
            for local_idx, local in enumerate(locals_):
                if local_idx in claimed:
                    continue
                key = (duration_distance(local.duration_ms, remote.duration_ms), local_idx)
                if best is None or key < best:
                    best = key
            if best is None:
                break
            assignment[remote_idx] = best[1]
            claimed.add(best[1])
        return assignment

    @staticmethod
    def _track_number_assignment(
        locals_: Sequence[LocalTrack],
        remotes: Sequence[RemoteTrack],
        confident_only: bool = False,
    ) -> Assignment:
        by_position: Dict[tuple[int, int], int] = {}
        by_ordinal: Dict[int, int] = {}
        for remote_idx, remote in enumerate(remotes):
            position = (remote.disc_number or 1, remote.track_number or remote.ordinal)
            by_position.setdefault(position, remote_idx)
            by_ordinal.setdefault(remote.ordinal, remote_idx)

        numbered = Counter(
            (local.disc_number or 1, local.track_number)
            for local in locals_
            if _valid_number(local.track_number)
        )
        assignment: Assignment = {}
        for local_idx, local in enumerate(locals_):
            if not _valid_number(local.track_number):
                continue
            position = (local.disc_number or 1, local.track_number)
            if confident_only and numbered[position] > 1:
                continue
            try:
                remote_idx = _remote_for_number(local, position, by_position, by_ordinal, assignment)
            except NoMatch as exc:
                logger.debug("%s", exc)
                continue
            assignment[remote_idx] = local_idx
        return assignment

    def _name_assignment(
        self,
        locals_: Sequence[LocalTrack],
        remotes: Sequence[RemoteTrack],
        assignment: Assignment,
    ) -> Assignment:
        result = dict(assignment)
        used_locals = set(result.values())
        scored: List[tuple[float, int, int]] = []
        for local_idx, local in enumerate(locals_):
            if local_idx in used_locals:
                continue
            names = local_names(local)
            for remote_idx, remote in enumerate(remotes):
                if remote_idx in result:
                    continue
                score = max((name_match_score(name, remote.title) for name in names), default=0.0)
                if score >= self.name_threshold:
                    scored.append((-score, remote_idx, local_idx))
        scored.sort()
        for _, remote_idx, local_idx in scored:
            if remote_idx in result or local_idx in used_locals:
                continue
            result[remote_idx] = local_idx
            used_locals.add(local_idx)
        return result


def local_enumeration(local: Iterable[LocalTrack], reverse: bool = False) -> List[LocalTrack]:
    ordered = sorted(local, key=lambda track: (track.path.name.casefold(), str(track.path)))
    if reverse:
        ordered.reverse()
    return ordered


def local_names(local: LocalTrack) -> List[str]:
    names: List[str] = []
    if local.title:
        names.append(local.title)
    guessed = guess_track_from_path(local.path).title
    if guessed and guessed not in names:
        names.append(guessed)
    return names


def build_pairs(
    locals_: Sequence[LocalTrack],
    remotes: Sequence[RemoteTrack],
    assignment: Assignment,
) -> List[TrackPair]:
    pairs: List[TrackPair] = []
    for remote_idx, remote in enumerate(remotes):
        local_idx = assignment.get(remote_idx)
        pairs.append(TrackPair(locals_[local_idx] if local_idx is not None else None, remote))
    used = set(assignment.values())
    for local_idx, local in enumerate(locals_):
        if local_idx not in used:
            pairs.append(TrackPair(local, None))
    return pairs


def swap_locals(pairs: Sequence[TrackPair], first: int, second: int) -> List[TrackPair]:
    """Exchange the local sides of two pairs (0-based); pairs left empty are dropped."""
    if not (0 <= first < len(pairs)) or not (0 <= second < len(pairs)):
        raise IndexError(f"pair index out of range (have {len(pairs)})")
    updated = [TrackPair(pair.local, pair.remote) for pair in pairs]
    if first == second:
        return updated
    local_a = updated[first].local
    local_b = updated[second].local
    rebuilt: List[TrackPair] = []
    for idx, pair in enumerate(updated):
        local = pair.local
        if idx == first:
            local = local_b
        elif idx == second:
            local = local_a
        if local is None and pair.remote is None:
            continue
        rebuilt.append(TrackPair(local, pair.remote))
    return rebuilt


def _remote_for_number(
    local: LocalTrack,
    position: tuple[int, int],
    by_position: Dict[tuple[int, int], int],
    by_ordinal: Dict[int, int],
    assignment: Assignment,
) -> int:
    remote_idx = by_position.get(position)
    if (remote_idx is None or remote_idx in assignment) and position[0] == 1:
        remote_idx = by_ordinal.get(position[1])
    if remote_idx is None or remote_idx in assignment:
        raise NoMatch(f"{local.name}: no free remote track at disc {position[0]} track {position[1]}")
    return remote_idx


def _valid_number(value: Optional[int]) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1
