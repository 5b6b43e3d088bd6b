"""
On-disk entries and the plaintext staging area.

store/<name> holds the ciphertext of an entry, store/<name>.sig its detached
signature. Entry files are replaced with write-to-temp-then-rename so a
crash never leaves a half written file under an entry name.
"""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from .config import SIG_SUFFIX, ensure_600, ensure_dir
from .errors import EntryExistsError, InvalidNameError, NotFoundError
from .log import get_logger

log = get_logger(__name__)

TMP_PREFIX = ".tmp-"


def atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(prefix=TMP_PREFIX, dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        ensure_600(Path(tmp))
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def validate_name(name: str) -> None:
    """Raise InvalidNameError unless name is a single, visible path segment."""
    if not name or "\0" in name:
        raise InvalidNameError(f"invalid entry name: {name!r}")
    for sep in ("/", os.sep, os.altsep):
        if sep and sep in name:
            raise InvalidNameError(f"invalid entry name: {name!r} (contains {sep!r})")
    if name.endswith(SIG_SUFFIX):
        raise InvalidNameError(f"invalid entry name: {name!r} (ends with {SIG_SUFFIX})")
    if name.startswith("."):
        raise InvalidNameError(f"invalid entry name: {name!r} (starts with '.')")


class EntryStore:
    """The collection of ciphertext/signature pairs under store/."""

    def __init__(self, directory: Path):
        self.directory = directory

    def path(self, name: str) -> Path:
        validate_name(name)
        return self.directory / name

    def sig_path(self, name: str) -> Path:
        validate_name(name)
        return self.directory / f"{name}{SIG_SUFFIX}"

    validate_name = staticmethod(validate_name)

    def list(self) -> List[str]:
        """Entry names, sorted; unsigned entries included."""
        if not self.directory.is_dir():
            return []
        return sorted(
            p.name for p in self.directory.iterdir()
            if p.is_file() and not p.name.startswith(".") and not p.name.endswith(SIG_SUFFIX)
        )

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def is_signed(self, name: str) -> bool:
        return self.sig_path(name).is_file()

    def require(self, name: str) -> Path:
        p = self.path(name)
        if not p.is_file():
            raise NotFoundError(f"Entry not found: {name}")
        return p

    def read(self, name: str) -> bytes:
        return self.require(name).read_bytes()

    def write(self, name: str, ciphertext: bytes) -> Path:
        """Store ciphertext under name. Any previous signature is dropped, it no longer matches."""
        path = self.path(name)
        ensure_dir(self.directory)
        atomic_write(path, ciphertext)
        self.sig_path(name).unlink(missing_ok=True)
        log.debug("wrote %s", name)
        return path

    def write_signature(self, name: str, signature: bytes) -> None:
        self.require(name)
        atomic_write(self.sig_path(name), signature)
        log.debug("wrote signature for %s", name)

    def install(self, name: str, ciphertext: Path, signature: Path) -> None:
        """Move a staged ciphertext/signature pair over the entry (same filesystem)."""
        os.replace(ciphertext, self.path(name))
        os.replace(signature, self.sig_path(name))

    def remove(self, name: str) -> None:
        self.require(name).unlink()
        self.sig_path(name).unlink(missing_ok=True)
        log.debug("removed %s", name)

    def rename(self, old: str, new: str, force: bool = False) -> None:
        validate_name(new)
        src = self.require(old)
        if old == new:
            return
        if self.exists(new) and not force:
            raise EntryExistsError(f"Entry already exists: {new}")
        os.replace(src, self.path(new))
        if self.is_signed(old):
            os.replace(self.sig_path(old), self.sig_path(new))
        else:
            self.sig_path(new).unlink(missing_ok=True)
        log.debug("renamed %s -> %s", old, new)


class StagingArea:
    """
    Plaintext working files under tmpstore/.

    A staged file belongs to one command invocation. Callers go through
    hold(), which removes the file on every exit path.
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def path(self, name: str) -> Path:
        validate_name(name)
        return self.directory / name

    def has(self, name: str) -> bool:
        return self.path(name).is_file()

    def write(self, name: str, plaintext: bytes) -> Path:
        ensure_dir(self.directory)
        p = self.path(name)
        fd = os.open(p, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(plaintext)
        return p

    def read(self, name: str) -> bytes:
        p = self.path(name)
        if not p.is_file():
            raise NotFoundError(f"Nothing staged for {name}")
        return p.read_bytes()

    def discard(self, name: str) -> None:
        self.path(name).unlink(missing_ok=True)

    @contextmanager
    def hold(self, name: str) -> Iterator[Path]:
        path = self.path(name)
        try:
            yield path
        finally:
            self.discard(name)
