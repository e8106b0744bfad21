import errno
import tempfile
import unittest
from pathlib import Path

from audio_reconcile.errors import RelocationLocked
from audio_reconcile.fs_utils import MAX_BASENAME_BYTES, fit_name, is_lock_error, path_exists, safe_rename


class TestFsUtils(unittest.TestCase):
    def test_path_exists_true_false(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir) / "file.txt"
            self.assertEqual(path_exists(p), False)
            p.write_text("x", encoding="utf-8")
            self.assertEqual(path_exists(p), True)

    def test_path_exists_when_parent_missing(self) -> None:
        self.assertEqual(path_exists(Path("/this/path/does/not/exist/file.txt")), False)

    def test_lock_errors(self) -> None:
        self.assertTrue(is_lock_error(OSError(errno.EBUSY, "busy")))
        self.assertTrue(is_lock_error(OSError(errno.ETXTBSY, "text busy")))
        self.assertFalse(is_lock_error(OSError(errno.EACCES, "denied")))
        self.assertFalse(is_lock_error(OSError(errno.ENOENT, "missing")))
        self.assertFalse(is_lock_error(ValueError("nope")))

    def test_wrapped_lock_error_is_recognised(self) -> None:
        try:
            try:
                raise OSError(errno.EBUSY, "busy")
            except OSError as exc:
                raise RelocationLocked(Path("/a"), "locked") from exc
        except RelocationLocked as wrapped:
            self.assertTrue(is_lock_error(wrapped))

    def test_windows_sharing_violation(self) -> None:
        exc = OSError(errno.EACCES, "sharing violation")
        exc.winerror = 32
        self.assertTrue(is_lock_error(exc))

    def test_fit_name_truncates_by_bytes(self) -> None:
        self.assertEqual(fit_name("short"), "short")
        fitted = fit_name("é" * MAX_BASENAME_BYTES, reserve=6)
        self.assertLessEqual(len(fitted.encode("utf-8")), MAX_BASENAME_BYTES - 6)
        self.assertTrue(fitted.endswith("…"))

    def test_safe_rename_moves_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            src = Path(tmpdir) / "src"
            src.mkdir()
            (src / "a.mp3").write_bytes(b"x")
            dst = Path(tmpdir) / "dst"
            safe_rename(src, dst)
            self.assertTrue((dst / "a.mp3").exists())
            self.assertFalse(src.exists())


if __name__ == "__main__":
    unittest.main()
