from __future__ import annotations

import logging
import re
from collections import Counter
from typing import List, Optional, Tuple

from .alignment import AlignmentStrategy
from .errors import SelectionError
from .models import Candidate, TrackPair
from .prompt_io import PromptIO
from .selection import parse_selection
from .session import STAGE_LABELS, ReconciliationSession, Stage
from .state_machine import (
    Back,
    ChangeStrategy,
    CombineReleases,
    Commit,
    EditTag,
    Event,
    RefreshTracks,
    Relocate,
    Retry,
    SearchArtist,
    SearchRelease,
    SelectArtist,
    SelectRelease,
    SetAlbumArtist,
    Skip,
    SwapLocals,
    SwitchProvider,
    TogglePreview,
    ToggleReverse,
)

logger = logging.getLogger(__name__)

SELECTION_TEXT = re.compile(r"^[\d\s,.\-]+$")
ALBUM_ARTIST_JOINER = " & "

PROMPTS = {
    Stage.ARTIST: "Select artist (0=skip): ",
    Stage.RELEASE: "Select release (0=skip): ",
    Stage.TRACKS: "Command (?=help): ",
}

COMMON_HELP = [
    "  provider <name>   switch metadata provider",
    "  retry             repeat the last failed lookup",
    "  preview           toggle preview (no writes)",
    "  b                 go back",
    "  0                 skip this directory",
    "  l                 list again",
]
STAGE_HELP = {
    Stage.ARTIST: [
        "  <n>               choose artist n",
        "  id:<artist-id>    choose an artist by provider id",
        "  <text>            search for another artist",
    ],
    Stage.RELEASE: [
        "  <n>               choose release n",
        "  id:<release-id>   choose a release by provider id",
        "  c <selection>     combine releases (one index: all releases sharing its name)",
        "  <text>            search for another release",
    ],
    Stage.TRACKS: [
        "  c [selection]     commit all complete pairs, or e.g. c 1..8,10",
        "  s <strategy>      realign: " + ", ".join(s.value for s in AlignmentStrategy),
        "  rev               toggle reverse file order",
        "  x <i> <j>         swap the files of pairs i and j",
        "  e <i> <field> <value>  edit a tag of pair i ('-' clears the edit)",
        "  aa                album artist builder",
        "  m                 move the album to its canonical folder",
        "  f                 refetch the release tracks",
        "  done              finish this directory",
    ],
}


def format_duration(duration_ms: Optional[int]) -> str:
    if not duration_ms:
        return "?:??"
    seconds = int(round(duration_ms / 1000))
    return f"{seconds // 60}:{seconds % 60:02d}"


def candidate_label(candidate: Candidate) -> str:
    parts = [candidate.name]
    if candidate.entity_type != "artist" and candidate.artist:
        parts = [f"{candidate.artist} - {candidate.name}"]
    details: List[str] = []
    if candidate.year:
        details.append(str(candidate.year))
    if candidate.track_count:
        details.append(f"{candidate.track_count} tracks")
    if candidate.disambiguation:
        details.append(candidate.disambiguation)
    if details:
        parts.append(f"({', '.join(details)})")
    parts.append(f"[{candidate.id}]")
    return " ".join(parts)


def pair_label(pair: TrackPair) -> str:
    local = pair.local.name if pair.local else "(no file)"
    if pair.local is not None and pair.local.duration_ms:
        local = f"{local} [{format_duration(pair.local.duration_ms)}]"
    if pair.remote is None:
        return f"{local}  ->  (no track)"
    remote = pair.remote
    number = remote.track_number or remote.ordinal
    position = f"{remote.disc_number}-{number}" if remote.disc_number else str(number)
    return f"{local}  ->  {position}. {remote.title or '(untitled)'} [{format_duration(remote.duration_ms)}]"


def album_artist_choices(session: ReconciliationSession) -> List[str]:
    """Names the album-artist builder offers, most likely first."""
    names: List[str] = []

    def add(name: Optional[str]) -> None:
        if name and name.strip() and name.strip() not in names:
            names.append(name.strip())

    add(session.artist.name if session.artist else None)
    add(session.release.artist if session.release else None)
    performers: Counter[str] = Counter()
    composers: Counter[str] = Counter()
    for track in session.local_tracks:
        performers.update(p.strip() for p in track.performers if p.strip())
        composers.update(c.strip() for c in track.composers if c.strip())
    for name, _ in performers.most_common():
        add(name)
    for name, _ in composers.most_common():
        add(name)
    return names


class TerminalPrompter:
    """Line-oriented front-end: renders the session and turns operator input into events."""

    def __init__(self, io: PromptIO, *, preview_tracks: int = 40) -> None:
        self.io = io
        self.preview_tracks = max(1, preview_tracks)
        self._rendered: Optional[Tuple[str, int, int]] = None

    def notify(self, session: ReconciliationSession, message: str, level: str = "info") -> None:
        logger.debug("%s [%s] %s", session.directory.name, level, message)
        prefix = {"warning": "Warning: ", "error": "Error: "}.get(level, "")
        self.io.print(f"{prefix}{message}")

    def next_event(self, session: ReconciliationSession) -> Optional[Event]:
        key = (session.stage.value, session.revision, id(session))
        if key != self._rendered:
            self.render(session)
            self._rendered = key
        while True:
            raw = self.io.input(PROMPTS.get(session.stage, "> "))
            if raw is None:
                return None
            choice = raw.strip()
            if not choice:
                continue
            try:
                event = self.parse_command(session, choice)
            except SelectionError as exc:
                self.io.print(f"Invalid selection: {exc}")
                continue
            if event is not None:
                return event

    # rendering

    def render(self, session: ReconciliationSession) -> None:
        match session.stage:
            case Stage.ARTIST:
                self._render_candidates(
                    session,
                    f"Artist search for {session.directory.name} "
                    f"({len(session.local_tracks)} tracks, query {session.artist_query or 'none'!r}, "
                    f"provider {session.provider_name}):",
                    session.artist_candidates,
                )
            case Stage.RELEASE:
                artist = session.artist.name if session.artist else "unknown artist"
                self._render_candidates(
                    session,
                    f"Releases by {artist} for {session.directory.name} "
                    f"({len(session.local_tracks)} tracks, query {session.album_query or 'none'!r}):",
                    session.release_candidates,
                )
            case Stage.TRACKS:
                self._render_pairs(session)

    def _render_candidates(
        self, session: ReconciliationSession, title: str, candidates: List[Candidate]
    ) -> None:
        self.io.print(f"\n{title}")
        if session.last_error:
            self.io.print(f"  Last error: {session.last_error}")
        if not candidates:
            self.io.print("  (no candidates; type a new search, 'provider <name>', 'retry' or 0)")
        for idx, candidate in enumerate(candidates, start=1):
            self.io.print(f"  {idx}. {candidate_label(candidate)}")
        self.io.print("  0. Skip this directory")

    def _render_pairs(self, session: ReconciliationSession) -> None:
        release = session.release
        name = candidate_label(release) if release else "(no release)"
        flags = [f"strategy {session.strategy.value}"]
        if session.reverse:
            flags.append("reversed")
        if session.preview:
            flags.append("preview")
        album_artist = session.album_artist_override or (release.artist if release else None)
        if album_artist:
            flags.append(f"album artist {album_artist}")
        self.io.print(f"\nTracks for {session.directory.name}: {name}")
        self.io.print(f"  {', '.join(flags)}")
        for warning in session.warnings:
            self.io.print(f"  Warning: {warning}")
        if session.last_error:
            self.io.print(f"  Last error: {session.last_error}")
        shown = session.pairs[: self.preview_tracks]
        for idx, pair in enumerate(shown, start=1):
            edits = session.edits_for(pair)
            suffix = f"  (edits: {', '.join(sorted(edits))})" if edits else ""
            self.io.print(f"  {idx:>2}. {pair_label(pair)}{suffix}")
        if len(session.pairs) > len(shown):
            self.io.print(f"  ... {len(session.pairs) - len(shown)} more")

    def _print_help(self, session: ReconciliationSession) -> None:
        self.io.print(f"Commands ({STAGE_LABELS[session.stage]}):")
        for line in STAGE_HELP.get(session.stage, []) + COMMON_HELP:
            self.io.print(line)

    # parsing

    def parse_command(self, session: ReconciliationSession, choice: str) -> Optional[Event]:
        """Map one line of input to an event; ``None`` means re-prompt."""
        head, _, rest = choice.partition(" ")
        command = head.lower()
        rest = rest.strip()
        if command in {"0", "skip"} and not rest:
            return Skip()
        if command in {"?", "h", "help"}:
            self._print_help(session)
            return None
        if command in {"l", "list"}:
            self.render(session)
            return None
        if command in {"b", "back"} and not rest:
            return Back()
        if command == "retry":
            return Retry()
        if command in {"preview", "v"} and not rest:
            return TogglePreview()
        if command == "provider":
            if not rest:
                self.io.print(f"Providers: {', '.join(session.providers) or session.provider_name}")
                return None
            return SwitchProvider(rest)
        match session.stage:
            case Stage.ARTIST:
                return self._parse_artist(choice)
            case Stage.RELEASE:
                return self._parse_release(session, command, rest, choice)
            case Stage.TRACKS:
                return self._parse_tracks(session, command, rest)
        return None

    @staticmethod
    def _parse_artist(choice: str) -> Event:
        if choice.isdigit():
            return SelectArtist(index=int(choice))
        if choice.lower().startswith("id:"):
            return SelectArtist(artist_id=choice[3:].strip())
        return SearchArtist(choice)

    @staticmethod
    def _parse_release(session: ReconciliationSession, command: str, rest: str, choice: str) -> Event:
        if choice.isdigit():
            return SelectRelease(index=int(choice))
        if command.startswith("id:"):
            return SelectRelease(release_id=choice[3:].strip())
        if command in {"c", "combine"} and rest and SELECTION_TEXT.match(rest):
            indices = parse_selection(rest, len(session.release_candidates))
            return CombineReleases(tuple(indices))
        return SearchRelease(choice)

    def _parse_tracks(self, session: ReconciliationSession, command: str, rest: str) -> Optional[Event]:
        args = rest.split()
        match command:
            case "c" | "commit":
                if not rest:
                    return Commit()
                return Commit(tuple(parse_selection(rest, len(session.pairs))))
            case "s" | "strategy" if args:
                return ChangeStrategy(args[0])
            case "rev" | "reverse":
                return ToggleReverse()
            case "x" | "swap" if len(args) == 2 and all(a.isdigit() for a in args):
                return SwapLocals(int(args[0]), int(args[1]))
            case "e" | "edit" if len(args) >= 3 and args[0].isdigit():
                value = rest.split(None, 2)[2]
                return EditTag(int(args[0]), args[1].lower(), None if value == "-" else value)
            case "aa":
                return self.build_album_artist(session)
            case "m" | "move":
                return Relocate()
            case "f" | "refresh":
                return RefreshTracks()
            case "done" | "q":
                return Skip("done")
        self.io.print("Unknown command; type ? for help.")
        return None

    def build_album_artist(self, session: ReconciliationSession) -> Optional[SetAlbumArtist]:
        names = album_artist_choices(session)
        self.io.print("Album artist builder:")
        for idx, name in enumerate(names, start=1):
            self.io.print(f"  {idx}. {name}")
        self.io.print("  Numbers/ranges join names (e.g. 1,3); text sets a name; '-' clears; blank cancels")
        while True:
            raw = self.io.input("Album artist: ")
            if raw is None or not raw.strip():
                return None
            text = raw.strip()
            if text == "-":
                return SetAlbumArtist(None)
            if names and SELECTION_TEXT.match(text):
                try:
                    indices = parse_selection(text, len(names))
                except SelectionError as exc:
                    self.io.print(f"Invalid selection: {exc}")
                    continue
                return SetAlbumArtist(ALBUM_ARTIST_JOINER.join(names[i - 1] for i in indices))
            return SetAlbumArtist(text)


class UnattendedDriver:
    """Event source for non-interactive runs: first candidate at A and B, never a commit."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, str]] = []

    def notify(self, session: ReconciliationSession, message: str, level: str = "info") -> None:
        self.messages.append((level, message))
        log_level = {"warning": logging.WARNING, "error": logging.ERROR}.get(level, logging.INFO)
        logger.log(log_level, "%s: %s", session.directory.name, message)

    def next_event(self, session: ReconciliationSession) -> Event:
        match session.stage:
            case Stage.ARTIST:
                if session.artist_candidates and not session.last_error:
                    return SelectArtist(index=1)
                return Skip(f"unattended: {session.last_error or 'no artist candidates'}")
            case Stage.RELEASE:
                if session.release_candidates and not session.last_error:
                    return SelectRelease(index=1)
                return Skip(f"unattended: {session.last_error or 'no release candidates'}")
        return Skip("unattended")
