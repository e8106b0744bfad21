from __future__ import annotations

import errno
import logging
import os
import re
import shutil
import time
import unicodedata
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from .errors import RelocationFailed, RelocationLocked
from .fs_utils import fit_name, is_lock_error, path_exists, safe_rename
from .models import AlbumPlacement

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]+')


@dataclass(slots=True)
class RelocationResult:
    source: Path
    destination: Path
    moved: bool


class AlbumRelocator:
    """Moves album folders to ``{root}/{artist}/{year - album}`` without partial states."""

    def __init__(
        self,
        target_root: Path,
        *,
        lock_retries: int = 5,
        lock_backoff_seconds: float = 0.2,
        cleanup_empty_dirs: bool = False,
        library_roots: Iterable[Path] = (),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.target_root = target_root
        self.lock_retries = max(0, lock_retries)
        self.lock_backoff_seconds = lock_backoff_seconds
        self.cleanup_empty_dirs = cleanup_empty_dirs
        self.library_roots = [root.resolve() for root in library_roots]
        self._sleep = sleep

    def canonical_destination(self, placement: AlbumPlacement) -> Path:
        artist = self._safe(placement.artist, UNKNOWN_ARTIST)
        album = self._safe(placement.album, UNKNOWN_ALBUM)
        artist_dir = self.target_root / fit_name(self._existing_label(self.target_root, artist) or artist)
        name = f"{placement.year} - {album}" if placement.year else album
        # leave room for a " (nn)" collision suffix
        return artist_dir / fit_name(name, reserve=6)

    def plan(self, source: Path, placement: AlbumPlacement) -> Path:
        """Destination the album would move to, collision suffix included."""
        destination = self.canonical_destination(placement)
        if self._same_location(source, destination):
            return source
        return self.resolve_collision(destination)

    @staticmethod
    def resolve_collision(destination: Path) -> Path:
        if not path_exists(destination):
            return destination
        n = 2
        while True:
            candidate = destination.with_name(f"{destination.name} ({n})")
            if not path_exists(candidate):
                return candidate
            n += 1

    def relocate(self, source: Path, placement: AlbumPlacement, dry_run: bool = False) -> RelocationResult:
        if not source.is_dir():
            raise RelocationFailed(source, "source folder does not exist")
        destination = self.plan(source, placement)
        if destination == source:
            logger.info("%s is already in place", source)
            return RelocationResult(source, source, moved=False)
        if dry_run:
            logger.info("Dry-run would move %s -> %s", source, destination)
            return RelocationResult(source, destination, moved=False)

        temp = source.with_name(f".{source.name[:60]}.reloc-{uuid.uuid4().hex[:8]}")
        self._rename_with_retry(source, temp, source, destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            # the name may have been taken while we waited on a lock
            destination = self.resolve_collision(destination)
            self._move_into_place(temp, destination, source)
        except (RelocationFailed, RelocationLocked, OSError) as exc:
            self._restore(temp, source)
            if isinstance(exc, (RelocationFailed, RelocationLocked)):
                raise
            raise RelocationFailed(source, str(exc), destination) from exc
        logger.info("Moved %s -> %s", source, destination)
        if self.cleanup_empty_dirs:
            self.cleanup_source_parent(source.parent)
        return RelocationResult(source, destination, moved=True)

    def _move_into_place(self, temp: Path, destination: Path, source: Path) -> None:
        try:
            self._rename_with_retry(temp, destination, source, destination)
        except RelocationFailed as exc:
            cause = exc.__cause__
            if not isinstance(cause, OSError) or cause.errno != errno.EXDEV:
                raise
            # Cross-device: copy next to the destination, then rename into place.
            staging = destination.with_name(f".{destination.name[:60]}.reloc-{uuid.uuid4().hex[:8]}")
            try:
                shutil.copytree(temp, staging)
                self._rename_with_retry(staging, destination, source, destination)
            except OSError as copy_exc:
                shutil.rmtree(staging, ignore_errors=True)
                raise RelocationFailed(source, f"cross-device copy failed: {copy_exc}", destination) from copy_exc
            except (RelocationFailed, RelocationLocked):
                shutil.rmtree(staging, ignore_errors=True)
                raise
            # destination is complete from here on; a partial temp stays where it is
            try:
                shutil.rmtree(temp)
            except OSError as exc:
                logger.warning("Moved %s but could not remove leftover %s: %s", source, temp, exc)

    def _rename_with_retry(self, src: Path, dst: Path, source: Path, destination: Path) -> None:
        attempts = 1 + self.lock_retries
        for attempt in range(1, attempts + 1):
            try:
                safe_rename(src, dst)
                return
            except OSError as exc:
                if not is_lock_error(exc):
                    raise RelocationFailed(source, str(exc), destination) from exc
                if attempt >= attempts:
                    raise RelocationLocked(
                        source, f"still locked after {attempts} attempts: {exc}", destination
                    ) from exc
                delay = self.lock_backoff_seconds * (2 ** (attempt - 1))
                logger.debug("%s is locked (attempt %d/%d); retrying in %.2fs", src, attempt, attempts, delay)
                if delay:
                    self._sleep(delay)

    def _restore(self, temp: Path, source: Path) -> None:
        if not temp.exists():
            return
        try:
            safe_rename(temp, source)
        except OSError as exc:
            logger.error("Could not restore %s from %s: %s", source, temp, exc)

    def cleanup_source_parent(self, directory: Path) -> None:
        try:
            resolved = directory.resolve()
        except OSError:
            return
        if any(resolved == root for root in self.library_roots) or resolved == self.target_root.resolve():
            return
        try:
            if any(resolved.iterdir()):
                return
            resolved.rmdir()
            logger.info("Removed empty directory %s", resolved)
        except OSError as exc:
            logger.warning("Failed to remove %s: %s", resolved, exc)

    @staticmethod
    def _same_location(source: Path, destination: Path) -> bool:
        try:
            return source.resolve() == destination.resolve()
        except OSError:
            return False

    @staticmethod
    def _safe(value: Optional[str], fallback: str) -> str:
        if not value:
            return fallback
        cleaned = unicodedata.normalize("NFC", value.strip())
        cleaned = ILLEGAL_CHARS.sub("-", cleaned)
        cleaned = re.sub(r"\s+", " ", cleaned).strip(" .")
        return cleaned or fallback

    def _existing_label(self, parent: Path, value: str) -> Optional[str]:
        """Reuse an existing artist folder whose name differs only in case or punctuation."""
        wanted = self._normalize_token(value)
        if not wanted:
            return None
        try:
            with os.scandir(parent) as it:
                for entry in it:
                    if entry.is_dir() and self._normalize_token(entry.name) == wanted:
                        return entry.name
        except OSError:
            return None
        return None

    @staticmethod
    def _normalize_token(value: str) -> str:
        normalized = unicodedata.normalize("NFKD", value)
        ascii_only = normalized.encode("ascii", "ignore").decode("ascii").lower()
        return re.sub(r"[^a-z0-9]+", "", ascii_only)
