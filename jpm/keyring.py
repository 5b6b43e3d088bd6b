"""
The keyring: one openssl encryption keypair and one signify signing keypair.

Both keypairs are created together by init() and replaced together by
rotate(). Rotation is two-phase: every entry is re-sealed under freshly
generated keys in a scratch directory first, and only once that has fully
succeeded are the staged entries and keys moved into place. A failure or
kill during the first phase leaves the store and the old keys untouched.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from .backend import CryptoBackend, KeyKind
from .config import (
    ENCRYPT_KEY,
    ENCRYPT_PUB,
    SIG_SUFFIX,
    SIGNIFY_PUB,
    SIGNIFY_SEC,
    TMP_KEY_PREFIX,
    ensure_600,
    ensure_dir,
)
from .errors import AlreadyInitializedError, MissingKeysError
from .log import get_logger
from .store import EntryStore

log = get_logger(__name__)


@dataclass(frozen=True)
class KeyFiles:
    """Locations of the four key files."""

    encrypt_key: Path
    encrypt_pub: Path
    signify_sec: Path
    signify_pub: Path

    @classmethod
    def in_dir(cls, directory: Path, prefix: str = "") -> KeyFiles:
        return cls(
            encrypt_key=directory / f"{prefix}{ENCRYPT_KEY}",
            encrypt_pub=directory / f"{prefix}{ENCRYPT_PUB}",
            signify_sec=directory / f"{prefix}{SIGNIFY_SEC}",
            signify_pub=directory / f"{prefix}{SIGNIFY_PUB}",
        )

    def paths(self) -> Tuple[Path, ...]:
        return (self.encrypt_key, self.encrypt_pub, self.signify_sec, self.signify_pub)

    def present(self) -> List[Path]:
        return [p for p in self.paths() if p.exists()]

    def remove(self) -> None:
        for p in self.paths():
            p.unlink(missing_ok=True)


class Keyring:
    def __init__(self, directory: Path, backend: CryptoBackend):
        self.directory = directory
        self.backend = backend
        self.files = KeyFiles.in_dir(directory)

    def exists(self) -> bool:
        return bool(self.files.present())

    def init(self, passphrase: str) -> None:
        """Generate both keypairs under passphrase. Refuses to overwrite."""
        if self.exists():
            raise AlreadyInitializedError(f"Keys already present in {self.directory}")
        self._commit(self._generate(passphrase))
        log.debug("initialized keyring in %s", self.directory)

    def load(self) -> Keyring:
        if len(self.files.present()) != len(self.files.paths()):
            raise MissingKeysError()
        return self

    # -- per entry ----------------------------------------------------------

    def encrypt(self, plaintext: bytes) -> bytes:
        return self.backend.encrypt(plaintext, self.files.encrypt_pub)

    def decrypt(self, ciphertext: bytes, passphrase: str) -> bytes:
        return self.backend.decrypt(ciphertext, self.files.encrypt_key, passphrase)

    def announce(self, path: Path) -> None:
        self.backend.announce(path, self.files.signify_sec)

    def sign(self, path: Path, passphrase: str) -> bytes:
        return self.backend.sign(path, self.files.signify_sec, passphrase)

    def verify(self, path: Path, signature: Path) -> None:
        self.backend.verify(path, signature, self.files.signify_pub)

    # -- rotation -----------------------------------------------------------

    def rotate(self, store: EntryStore, old_passphrase: str, new_passphrase: str, workdir: Path) -> int:
        """
        Re-encrypt and re-sign every entry under brand new keys.

        Returns the number of entries rotated. workdir must be on the same
        filesystem as the store so staged files can be renamed into place.
        """
        self.load()
        names = store.list()
        rotdir = Path(tempfile.mkdtemp(prefix=".rotate-", dir=str(ensure_dir(workdir))))
        try:
            new_keys = self._generate(new_passphrase)
            try:
                staged = [self._reseal(store, name, old_passphrase, new_keys, new_passphrase, rotdir)
                          for name in names]
                if not names:
                    # nothing to decrypt; prove the old passphrase with the old signing key
                    probe = rotdir / "probe"
                    probe.write_bytes(b"")
                    self.sign(probe, old_passphrase)
            except BaseException:
                new_keys.remove()
                raise

            # commit: nothing below needs a passphrase
            for name, (ciphertext, signature) in zip(names, staged):
                store.install(name, ciphertext, signature)
            self._commit(new_keys)
        finally:
            shutil.rmtree(rotdir, ignore_errors=True)
        log.debug("rotated %d entries", len(names))
        return len(names)

    def _reseal(
        self,
        store: EntryStore,
        name: str,
        old_passphrase: str,
        new_keys: KeyFiles,
        new_passphrase: str,
        rotdir: Path,
    ) -> Tuple[Path, Path]:
        plaintext = self.decrypt(store.read(name), old_passphrase)
        ciphertext = rotdir / name
        ciphertext.write_bytes(self.backend.encrypt(plaintext, new_keys.encrypt_pub))
        ensure_600(ciphertext)
        self.backend.announce(ciphertext, new_keys.signify_sec)
        signature = rotdir / f"{name}{SIG_SUFFIX}"
        signature.write_bytes(self.backend.sign(ciphertext, new_keys.signify_sec, new_passphrase))
        ensure_600(signature)
        return ciphertext, signature

    def _generate(self, passphrase: str) -> KeyFiles:
        """Generate both keypairs under temporary names; nothing is left behind on failure."""
        ensure_dir(self.directory)
        staged = KeyFiles.in_dir(self.directory, TMP_KEY_PREFIX)
        staged.remove()
        try:
            self.backend.generate_keypair(KeyKind.ENCRYPTION, passphrase, staged.encrypt_pub, staged.encrypt_key)
            self.backend.generate_keypair(KeyKind.SIGNING, passphrase, staged.signify_pub, staged.signify_sec)
        except BaseException:
            staged.remove()
            raise
        for p in staged.paths():
            ensure_600(p)
        return staged

    def _commit(self, staged: KeyFiles) -> None:
        for src, dst in zip(staged.paths(), self.files.paths()):
            os.replace(src, dst)
