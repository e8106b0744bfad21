from __future__ import annotations

from pathlib import Path
from typing import Optional


class ReconcileError(Exception):
    """Base class for failures the reconciler reports without stopping the run."""


class SelectionError(ReconcileError, ValueError):
    pass


class InvalidRange(SelectionError):
    pass


class EmptyInput(SelectionError):
    pass


class NoMatch(ReconcileError):
    """An alignment strategy could not place an item; the item stays unpaired."""


class TagError(ReconcileError):
    def __init__(self, path: Path, reason: str, *, locked: bool = False) -> None:
        super().__init__(f"{path.name}: {reason}")
        self.path = path
        self.reason = reason
        self.locked = locked


class TagReadFailed(TagError):
    pass


class TagWriteFailed(TagError):
    pass


class RelocationError(ReconcileError):
    def __init__(self, source: Path, reason: str, destination: Optional[Path] = None) -> None:
        target = f" -> {destination}" if destination else ""
        super().__init__(f"{source}{target}: {reason}")
        self.source = source
        self.destination = destination
        self.reason = reason


class RelocationLocked(RelocationError):
    """The folder stayed locked after every retry; trying again later may work."""


class RelocationFailed(RelocationError):
    pass


class ProviderError(ReconcileError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderUnavailable(ProviderError):
    pass


class NoCandidates(ProviderError):
    pass


class NoTracks(ProviderError):
    pass
