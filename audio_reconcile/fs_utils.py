from __future__ import annotations

import errno
import os
from pathlib import Path
from typing import Optional

ELLIPSIS = "…"
MAX_BASENAME_BYTES = 255

LOCK_ERRNOS = frozenset(
    code
    for code in (
        errno.EBUSY,
        errno.ETXTBSY,
        errno.EAGAIN,
        getattr(errno, "EWOULDBLOCK", errno.EAGAIN),
        getattr(errno, "EDEADLK", None),
    )
    if code is not None
)
# ERROR_SHARING_VIOLATION / ERROR_LOCK_VIOLATION
LOCK_WINERRORS = frozenset({32, 33})


def is_lock_error(exc: BaseException) -> bool:
    """True when ``exc`` (or the OSError it wraps) means another process holds the file."""
    current: Optional[BaseException] = exc
    seen = 0
    while current is not None and seen < 4:
        if isinstance(current, OSError):
            if getattr(current, "winerror", None) in LOCK_WINERRORS:
                return True
            if current.errno in LOCK_ERRNOS:
                return True
        wrapped = current.args[0] if current.args and isinstance(current.args[0], OSError) else None
        current = current.__cause__ or wrapped
        seen += 1
    return False


def path_exists(path: Path) -> Optional[bool]:
    try:
        path.stat()
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        if exc.errno != errno.ENAMETOOLONG:
            raise
        parent = path.parent
        try:
            with os.scandir(parent) as it:
                for entry in it:
                    if entry.name == path.name:
                        return True
        except FileNotFoundError:
            return None
        return False


def fit_name(name: str, reserve: int = 0) -> str:
    """Truncate a directory name so that ``name`` plus ``reserve`` bytes fits one path component."""
    limit = MAX_BASENAME_BYTES - reserve
    encoded = name.encode("utf-8")
    if len(encoded) <= limit:
        return name
    allowed = max(0, limit - len(ELLIPSIS.encode("utf-8")))
    truncated = encoded[:allowed].decode("utf-8", errors="ignore").rstrip(" .")
    return f"{truncated}{ELLIPSIS}"


def safe_rename(src: Path, dst: Path) -> None:
    try:
        src.rename(dst)
        return
    except OSError as exc:
        if exc.errno != errno.ENAMETOOLONG:
            raise
    src_dir_fd = os.open(src.parent, os.O_RDONLY)
    try:
        dst_dir_fd = os.open(dst.parent, os.O_RDONLY)
        try:
            os.rename(src.name, dst.name, src_dir_fd=src_dir_fd, dst_dir_fd=dst_dir_fd)
        finally:
            os.close(dst_dir_fd)
    finally:
        os.close(src_dir_fd)
