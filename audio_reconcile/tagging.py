from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set

from mutagen import MutagenError
from mutagen.flac import FLAC
from mutagen.id3 import ID3, ID3NoHeaderError, TALB, TCOM, TCON, TDRC, TIT2, TPE1, TPE2, TPOS, TRCK
from mutagen.mp3 import MP3
from mutagen.mp4 import MP4
from mutagen.oggvorbis import OggVorbis

from .errors import TagError, TagReadFailed, TagWriteFailed
from .fs_utils import is_lock_error
from .models import LIST_FIELDS, LIST_SEPARATOR, SCALAR_FIELDS, TagSnapshot, parse_int, parse_year

logger = logging.getLogger(__name__)

TagTransform = Callable[[TagSnapshot], TagSnapshot]


class TagHandle(Protocol):
    path: Path

    @property
    def duration_ms(self) -> Optional[int]: ...

    def read(self) -> TagSnapshot: ...

    def write(self, fields: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class TagContainer(Protocol):
    def open(self, path: Path) -> TagHandle: ...

    def open_paths(self) -> Set[Path]: ...


@dataclass(frozen=True, slots=True)
class FieldChange:
    old: Any
    new: Any


def diff_snapshots(current: TagSnapshot, desired: TagSnapshot) -> Dict[str, FieldChange]:
    changes: Dict[str, FieldChange] = {}
    for name in SCALAR_FIELDS:
        expected = getattr(desired, name)
        if expected is None:
            continue
        existing = getattr(current, name)
        if _normalize_scalar(existing) != _normalize_scalar(expected):
            changes[name] = FieldChange(existing, expected)
    for name in LIST_FIELDS:
        expected = getattr(desired, name)
        if expected is None:
            continue
        existing = getattr(current, name)
        if LIST_SEPARATOR.join(existing or ()) != LIST_SEPARATOR.join(expected):
            changes[name] = FieldChange(existing, expected)
    return changes


def _normalize_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


@dataclass(slots=True)
class CommitResult:
    path: Path
    success: bool
    reason: str
    changes: Dict[str, FieldChange] = field(default_factory=dict)
    written: bool = False
    snapshot: Optional[TagSnapshot] = None

    def describe(self) -> str:
        if not self.changes:
            return f"{self.path.name}: {self.reason}"
        parts = [f"{name} {_display(change.old)!r} -> {_display(change.new)!r}" for name, change in self.changes.items()]
        return f"{self.path.name}: {self.reason} ({'; '.join(parts)})"


def _display(value: Any) -> Any:
    if isinstance(value, tuple):
        return LIST_SEPARATOR.join(value)
    return value


class ChangeLog:
    """Per-run record of every commit attempt."""

    def __init__(self) -> None:
        self.results: List[CommitResult] = []

    def record(self, result: CommitResult) -> None:
        self.results.append(result)

    @property
    def written(self) -> List[CommitResult]:
        return [r for r in self.results if r.written]

    @property
    def failed(self) -> List[CommitResult]:
        return [r for r in self.results if not r.success]

    def counts(self) -> Dict[str, int]:
        counts = {"written": 0, "unchanged": 0, "preview": 0, "failed": 0}
        for result in self.results:
            if not result.success:
                counts["failed"] += 1
            elif result.written:
                counts["written"] += 1
            elif result.reason == "preview":
                counts["preview"] += 1
            else:
                counts["unchanged"] += 1
        return counts


class TagCommitter:
    """Diffs desired tags against a file and writes only the fields that differ."""

    def __init__(self, container: TagContainer, changelog: Optional[ChangeLog] = None) -> None:
        self.container = container
        self.changelog = changelog or ChangeLog()

    def commit(self, path: Path, desired: TagSnapshot, preview: bool = False) -> CommitResult:
        return self._commit(path, lambda _current: desired, preview)

    def commit_transform(self, path: Path, transform: TagTransform, preview: bool = False) -> CommitResult:
        return self._commit(path, transform, preview)

    def _commit(self, path: Path, build: TagTransform, preview: bool) -> CommitResult:
        handle: Optional[TagHandle] = None
        try:
            handle = self.container.open(path)
            current = handle.read()
            try:
                desired = build(current)
            except ValueError as exc:
                raise TagWriteFailed(path, f"invalid tags: {exc}") from exc
            changes = diff_snapshots(current, desired)
            if not changes:
                result = CommitResult(path, True, "no changes", snapshot=current)
            elif preview:
                result = CommitResult(path, True, "preview", changes, snapshot=desired)
            else:
                handle.write({name: change.new for name, change in changes.items()})
                result = CommitResult(path, True, "written", changes, written=True, snapshot=desired)
                logger.info("Updated %s: %s", path, ", ".join(changes))
        except TagError as exc:
            prefix = "locked" if exc.locked else ("read failed" if isinstance(exc, TagReadFailed) else "write failed")
            logger.warning("Tag commit failed for %s: %s", path, exc.reason)
            result = CommitResult(path, False, f"{prefix}: {exc.reason}")
        finally:
            if handle is not None:
                handle.close()
        self.changelog.record(result)
        return result


class MutagenTagContainer:
    """Tag collaborator backed by mutagen (ID3, Vorbis comments, MP4)."""

    SUPPORTED_EXTS = {".mp3", ".flac", ".m4a", ".ogg"}

    def __init__(self) -> None:
        self._open: Dict[Path, int] = {}

    def supports(self, path: Path) -> bool:
        return path.suffix.lower() in self.SUPPORTED_EXTS

    def open(self, path: Path) -> "_MutagenHandle":
        handlers = {
            ".mp3": _ID3Handle,
            ".flac": _VorbisHandle,
            ".ogg": _VorbisHandle,
            ".m4a": _MP4Handle,
        }
        handler = handlers.get(path.suffix.lower())
        if handler is None:
            raise TagReadFailed(path, f"unsupported format {path.suffix or '(none)'}")
        handle = handler(self, path)
        self._open[path] = self._open.get(path, 0) + 1
        return handle

    def open_paths(self) -> Set[Path]:
        return set(self._open)

    def _release(self, path: Path) -> None:
        count = self._open.get(path, 0) - 1
        if count > 0:
            self._open[path] = count
        else:
            self._open.pop(path, None)


class _MutagenHandle:
    def __init__(self, container: MutagenTagContainer, path: Path) -> None:
        self.container = container
        self.path = path
        self._audio: Any = None
        self._closed = False

    def __enter__(self) -> "_MutagenHandle":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def duration_ms(self) -> Optional[int]:
        audio = self._loaded()
        length = getattr(getattr(audio, "info", None), "length", None)
        return int(round(length * 1000)) if length else None

    def read(self) -> TagSnapshot:
        return self._snapshot(self._loaded())

    def write(self, fields: Dict[str, Any]) -> None:
        audio = self._loaded()
        current = self._snapshot(audio)
        try:
            self._apply(audio, fields, current)
            self._save(audio)
        except (MutagenError, OSError) as exc:
            raise TagWriteFailed(self.path, str(exc), locked=is_lock_error(exc)) from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._audio = None
        self.container._release(self.path)

    def _loaded(self) -> Any:
        if self._closed:
            raise TagReadFailed(self.path, "handle already closed")
        if self._audio is None:
            try:
                self._audio = self._load()
            except (MutagenError, OSError) as exc:
                raise TagReadFailed(self.path, str(exc), locked=is_lock_error(exc)) from exc
        return self._audio

    def _load(self) -> Any:
        raise NotImplementedError

    def _snapshot(self, audio: Any) -> TagSnapshot:
        raise NotImplementedError

    def _apply(self, audio: Any, fields: Dict[str, Any], current: TagSnapshot) -> None:
        raise NotImplementedError

    def _save(self, audio: Any) -> None:
        audio.save()


class _ID3Handle(_MutagenHandle):
    TEXT_FRAMES = {
        "title": TIT2,
        "album": TALB,
        "album_artist": TPE2,
        "performers": TPE1,
        "composers": TCOM,
        "genres": TCON,
    }

    def _load(self) -> Any:
        try:
            return ID3(self.path)
        except ID3NoHeaderError:
            return ID3()

    @property
    def duration_ms(self) -> Optional[int]:
        self._loaded()
        try:
            length = MP3(self.path).info.length
        except (MutagenError, OSError):
            return None
        return int(round(length * 1000)) if length else None

    def _snapshot(self, tags: ID3) -> TagSnapshot:
        track_number, track_total = _split_number(self._text(tags, "TRCK"))
        disc_number, _ = _split_number(self._text(tags, "TPOS"))
        return TagSnapshot(
            title=self._text(tags, "TIT2"),
            album=self._text(tags, "TALB"),
            album_artist=self._text(tags, "TPE2"),
            performers=self._texts(tags, "TPE1"),
            composers=self._texts(tags, "TCOM"),
            genres=self._texts(tags, "TCON"),
            year=parse_year(self._text(tags, "TDRC")),
            track_number=track_number,
            track_total=track_total,
            disc_number=disc_number,
        )

    def _apply(self, tags: ID3, fields: Dict[str, Any], current: TagSnapshot) -> None:
        for name, value in fields.items():
            frame_cls = self.TEXT_FRAMES.get(name)
            if frame_cls is not None:
                self._set(tags, frame_cls, list(value) if isinstance(value, tuple) else value)
            elif name == "year":
                self._set(tags, TDRC, str(value) if value else None)
        if "track_number" in fields or "track_total" in fields:
            number = fields.get("track_number", current.track_number)
            total = fields.get("track_total", current.track_total)
            self._set(tags, TRCK, _join_number(number, total))
        if "disc_number" in fields:
            _, disc_total = _split_number(self._text(tags, "TPOS"))
            self._set(tags, TPOS, _join_number(fields["disc_number"], disc_total))

    def _save(self, tags: ID3) -> None:
        tags.save(self.path)

    @staticmethod
    def _set(tags: ID3, frame_cls: Any, value: Any) -> None:
        frame_id = frame_cls.__name__
        if value is None or value == []:
            tags.delall(frame_id)
            return
        tags.setall(frame_id, [frame_cls(encoding=3, text=value)])

    @staticmethod
    def _text(tags: ID3, frame_id: str) -> Optional[str]:
        frames = tags.getall(frame_id)
        if not frames or not frames[0].text:
            return None
        return str(frames[0].text[0])

    @staticmethod
    def _texts(tags: ID3, frame_id: str) -> Optional[tuple[str, ...]]:
        frames = tags.getall(frame_id)
        if not frames or not frames[0].text:
            return None
        return tuple(str(item) for item in frames[0].text)


class _VorbisHandle(_MutagenHandle):
    KEYS = {
        "title": "TITLE",
        "album": "ALBUM",
        "album_artist": "ALBUMARTIST",
        "performers": "ARTIST",
        "composers": "COMPOSER",
        "genres": "GENRE",
        "year": "DATE",
    }

    def _load(self) -> Any:
        if self.path.suffix.lower() == ".ogg":
            return OggVorbis(self.path)
        return FLAC(self.path)

    def _snapshot(self, audio: Any) -> TagSnapshot:
        def first(key: str) -> Optional[str]:
            values = audio.get(key)
            return str(values[0]) if values else None

        def many(key: str) -> Optional[tuple[str, ...]]:
            values = audio.get(key)
            return tuple(str(v) for v in values) if values else None

        track_number, track_total = _split_number(first("TRACKNUMBER"))
        disc_number, _ = _split_number(first("DISCNUMBER"))
        return TagSnapshot(
            title=first("TITLE"),
            album=first("ALBUM"),
            album_artist=first("ALBUMARTIST"),
            performers=many("ARTIST"),
            composers=many("COMPOSER"),
            genres=many("GENRE"),
            year=parse_year(first("DATE") or first("YEAR")),
            track_number=track_number,
            track_total=_positive(parse_int(first("TRACKTOTAL"))) or track_total,
            disc_number=disc_number,
        )

    def _apply(self, audio: Any, fields: Dict[str, Any], current: TagSnapshot) -> None:
        if audio.tags is None:
            audio.add_tags()
        for name, value in fields.items():
            key = self.KEYS.get(name)
            if key is None:
                continue
            self._put(audio, key, value)
        if "track_number" in fields or "track_total" in fields:
            number = fields.get("track_number", current.track_number)
            total = fields.get("track_total", current.track_total)
            if audio.get("TRACKTOTAL"):
                self._put(audio, "TRACKNUMBER", number)
                self._put(audio, "TRACKTOTAL", total)
            else:
                self._put(audio, "TRACKNUMBER", _join_number(number, total))
        if "disc_number" in fields:
            values = audio.get("DISCNUMBER")
            _, disc_total = _split_number(str(values[0]) if values else None)
            self._put(audio, "DISCNUMBER", _join_number(fields["disc_number"], disc_total))

    @staticmethod
    def _put(audio: Any, key: str, value: Any) -> None:
        if value is None or value == ():
            audio.pop(key, None)
        elif isinstance(value, tuple):
            audio[key] = list(value)
        else:
            audio[key] = [str(value)]


class _MP4Handle(_MutagenHandle):
    KEYS = {
        "title": "\xa9nam",
        "album": "\xa9alb",
        "album_artist": "aART",
        "performers": "\xa9ART",
        "composers": "\xa9wrt",
        "genres": "\xa9gen",
        "year": "\xa9day",
    }

    def _load(self) -> Any:
        return MP4(self.path)

    def _snapshot(self, audio: MP4) -> TagSnapshot:
        def first(key: str) -> Optional[str]:
            values = audio.get(key)
            return str(values[0]) if values else None

        def many(key: str) -> Optional[tuple[str, ...]]:
            values = audio.get(key)
            return tuple(str(v) for v in values) if values else None

        track_number, track_total = _mp4_pair(audio.get("trkn"))
        disc_number, _ = _mp4_pair(audio.get("disk"))
        return TagSnapshot(
            title=first("\xa9nam"),
            album=first("\xa9alb"),
            album_artist=first("aART"),
            performers=many("\xa9ART"),
            composers=many("\xa9wrt"),
            genres=many("\xa9gen"),
            year=parse_year(first("\xa9day")),
            track_number=track_number,
            track_total=track_total,
            disc_number=disc_number,
        )

    def _apply(self, audio: MP4, fields: Dict[str, Any], current: TagSnapshot) -> None:
        if audio.tags is None:
            audio.add_tags()
        for name, value in fields.items():
            key = self.KEYS.get(name)
            if key is None:
                continue
            if value is None or value == ():
                audio.pop(key, None)
            elif isinstance(value, tuple):
                audio[key] = list(value)
            else:
                audio[key] = [str(value)]
        if "track_number" in fields or "track_total" in fields:
            number = fields.get("track_number", current.track_number)
            total = fields.get("track_total", current.track_total)
            if number:
                audio["trkn"] = [(int(number), int(total or 0))]
        if "disc_number" in fields and fields["disc_number"]:
            _, disc_total = _mp4_pair(audio.get("disk"))
            audio["disk"] = [(int(fields["disc_number"]), int(disc_total or 0))]


def _positive(value: Optional[int]) -> Optional[int]:
    return value if isinstance(value, int) and value >= 1 else None


def _split_number(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not value:
        return None, None
    number, _, total = value.partition("/")
    return _positive(parse_int(number)), _positive(parse_int(total))


def _join_number(number: Optional[int], total: Optional[int]) -> Optional[str]:
    if not number:
        return None
    return f"{number}/{total}" if total else str(number)


def _mp4_pair(value: Optional[Iterable[Any]]) -> tuple[Optional[int], Optional[int]]:
    if not value:
        return None, None
    first = list(value)[0]
    if isinstance(first, (tuple, list)) and first:
        number = _positive(parse_int(first[0]))
        total = _positive(parse_int(first[1])) if len(first) > 1 else None
        return number, total
    return None, None
