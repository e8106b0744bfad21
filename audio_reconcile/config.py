from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .alignment import AlignmentStrategy


class LibrarySettings(BaseModel):
    roots: List[Path] = Field(default_factory=list)
    include_extensions: List[str] = Field(default_factory=lambda: [".mp3", ".flac", ".m4a", ".ogg"])
    exclude_patterns: List[str] = Field(default_factory=list)

    @field_validator("roots", mode="before")
    @classmethod
    def _expand_roots(cls, values: List[str]) -> List[Path]:
        return [Path(v).expanduser().resolve() for v in values or []]

    @field_validator("include_extensions", mode="after")
    @classmethod
    def _normalize_extensions(cls, values: List[str]) -> List[str]:
        return [v.lower() if v.startswith(".") else f".{v.lower()}" for v in values]


class ProviderSettings(BaseModel):
    default: str = "musicbrainz"
    musicbrainz_useragent: str = "audio-reconcile/0.1 (unknown@example.com)"
    discogs_token: Optional[str] = None
    discogs_useragent: str = "audio-reconcile/0.1 +https://example.com"
    search_limit: int = 10
    network_retries: int = 1
    network_retry_backoff_seconds: float = 0.5

    @field_validator("default")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in {"musicbrainz", "discogs"}:
            raise ValueError(f"unknown provider {value!r}")
        return cleaned


class OrganizerSettings(BaseModel):
    target_root: Optional[Path] = None
    lock_retries: int = 5
    lock_backoff_seconds: float = 0.2
    cleanup_empty_dirs: bool = False

    @field_validator("target_root", mode="before")
    @classmethod
    def _expand_target(cls, value: Optional[str | Path]) -> Optional[Path]:
        if value is None:
            return None
        return Path(value).expanduser().resolve()

    @field_validator("lock_retries")
    @classmethod
    def _bounded_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("lock_retries cannot be negative")
        return value


class ReconcileSettings(BaseModel):
    default_strategy: str = AlignmentStrategy.ORDER.value
    reverse: bool = False
    preview: bool = False
    name_match_threshold: float = 0.55
    preview_tracks: int = 40

    @field_validator("default_strategy")
    @classmethod
    def _known_strategy(cls, value: str) -> str:
        return AlignmentStrategy.parse(value).value


class Settings(BaseModel):
    library: LibrarySettings = LibrarySettings()
    providers: ProviderSettings = ProviderSettings()
    organizer: OrganizerSettings = OrganizerSettings()
    reconcile: ReconcileSettings = ReconcileSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        return cls.model_validate(raw)

    def target_root(self) -> Path:
        if self.organizer.target_root:
            return self.organizer.target_root
        if self.library.roots:
            return self.library.roots[0]
        return Path.cwd()


def find_config(explicit_path: Optional[Path]) -> Optional[Path]:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    return None
