"""
Command orchestration.

Each operation is a short pipeline over the store, the staging area and the
keyring. Errors are never retried: a wrong passphrase ends the command, and
a failed signing step leaves an unsigned entry behind for verify to report.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, List, Optional

import click

from .backend import CryptoBackend
from .config import Cfg, ensure_600, ensure_dir
from .errors import (
    AlreadyInitializedError,
    EntryExistsError,
    JpmError,
    MissingSignatureError,
    VerificationFailedError,
)
from .keyring import Keyring
from .log import get_logger
from .prompt import ChoiceSource, PassphraseSource
from .search import SearchMatcher
from .store import EntryStore, StagingArea

log = get_logger(__name__)

Editor = Callable[[Path], None]
Clipboard = Callable[[str], None]


def first_line(plaintext: bytes) -> str:
    line = plaintext.split(b"\n", 1)[0].rstrip(b"\r")
    try:
        return line.decode("utf-8")
    except UnicodeDecodeError:
        raise JpmError("First line of the entry is not UTF-8 text")


class CommandEngine:
    def __init__(
        self,
        cfg: Cfg,
        backend: CryptoBackend,
        prompt: PassphraseSource,
        chooser: ChoiceSource,
        editor: Optional[Editor] = None,
        clipboard: Optional[Clipboard] = None,
        matcher: Optional[SearchMatcher] = None,
    ):
        self.cfg = cfg
        self.prompt = prompt
        self.chooser = chooser
        self.editor = editor
        self.clipboard = clipboard
        self.matcher = matcher or SearchMatcher()
        self.keyring = Keyring(cfg.private_dir, backend)
        self.store = EntryStore(cfg.store_dir)
        self.staging = StagingArea(cfg.tmpstore_dir)

    def _keys(self) -> Keyring:
        return self.keyring.load()

    def _passphrase(self, prompt: str = "Passphrase", confirm: bool = False) -> str:
        return self.prompt.passphrase(prompt, confirm=confirm)

    def _seal(self, name: str, plaintext: bytes, passphrase: Optional[str] = None) -> None:
        """Encrypt, persist, then sign. The ciphertext stays even if signing fails."""
        keys = self._keys()
        path = self.store.write(name, keys.encrypt(plaintext))
        keys.announce(path)
        if passphrase is None:
            passphrase = self._passphrase()
        self.store.write_signature(name, keys.sign(path, passphrase))

    def _open(self, name: str, passphrase: Optional[str] = None) -> bytes:
        keys = self._keys()
        ciphertext = self.store.read(name)
        if passphrase is None:
            passphrase = self._passphrase()
        return keys.decrypt(ciphertext, passphrase)

    def _select(self, pattern: str) -> Optional[str]:
        self._keys()
        return self.matcher.select(pattern, self.store.list(), self.chooser)

    def _edit(self, path: Path) -> None:
        if self.editor is None:
            raise JpmError("No editor configured")
        self.editor(path)

    # -- commands -----------------------------------------------------------

    def init(self) -> None:
        if self.keyring.exists():
            raise AlreadyInitializedError(f"Keys already present in {self.cfg.private_dir}")
        passphrase = self._passphrase(confirm=True)
        self.keyring.init(passphrase)
        ensure_dir(self.cfg.store_dir)
        ensure_dir(self.cfg.tmpstore_dir)

    def add(self, name: str, compose: bool = False) -> None:
        """
        Seal the plaintext staged for name.

        With compose, the editor is run on the staging file first when
        nothing is staged yet.
        """
        self.store.validate_name(name)
        with self.staging.hold(name) as staged:
            self._keys()
            if self.store.exists(name):
                raise EntryExistsError(f"Entry already exists: {name} (use edit)")
            if compose and not staged.is_file():
                ensure_dir(self.staging.directory)
                self._edit(staged)
            plaintext = self.staging.read(name)
        self._seal(name, plaintext)
        log.debug("added %s", name)

    def sign(self, name: str) -> None:
        keys = self._keys()
        path = self.store.require(name)
        keys.announce(path)
        self.store.write_signature(name, keys.sign(path, self._passphrase()))

    def verify(self) -> int:
        """Check every entry; per entry failures go to stderr. Returns the count checked."""
        keys = self._keys()
        names = self.store.list()
        failures: List[JpmError] = []
        for name in names:
            if not self.store.is_signed(name):
                err: JpmError = MissingSignatureError(f"{name}: missing signature")
            else:
                try:
                    keys.verify(self.store.path(name), self.store.sig_path(name))
                    continue
                except VerificationFailedError as e:
                    err = e
            click.echo(err.format_message(), err=True)
            failures.append(err)
        if failures:
            if all(isinstance(e, MissingSignatureError) for e in failures):
                raise MissingSignatureError(f"{len(failures)} of {len(names)} entries unsigned")
            raise VerificationFailedError(f"{len(failures)} of {len(names)} entries failed verification")
        return len(names)

    def show(self, pattern: str, echo_name: bool = False) -> Optional[str]:
        """Print the plaintext of the entry pattern resolves to; echo_name prints the name first."""
        name = self._select(pattern)
        if name is None:
            return None
        plaintext = self._open(name)
        if echo_name:
            click.echo(name)
        out = click.get_binary_stream("stdout")
        out.write(plaintext)
        out.flush()
        return name

    def edit(self, pattern: str) -> Optional[str]:
        name = self._select(pattern)
        if name is None:
            return None
        passphrase = self._passphrase()
        plaintext = self._open(name, passphrase)
        with self.staging.hold(name) as staged:
            self.staging.write(name, plaintext)
            self._edit(staged)
            plaintext = self.staging.read(name)
        self._seal(name, plaintext, passphrase)
        return name

    def mv(self, old: str, new: str, force: bool = False) -> None:
        self._keys()
        self.store.rename(old, new, force=force)

    def rm(self, name: str) -> None:
        self._keys()
        self.store.remove(name)

    def ls(self) -> List[str]:
        self._keys()
        return self.store.list()

    def find(self, pattern: str, ignore_case: Optional[bool] = None) -> List[str]:
        self._keys()
        matcher = self.matcher if ignore_case is None else SearchMatcher(ignore_case)
        return list(matcher.matches(pattern, self.store.list()))

    def rotate(self) -> int:
        keys = self._keys()
        old = self._passphrase("Old passphrase")
        new = self._passphrase("New passphrase", confirm=True)
        return keys.rotate(self.store, old, new, self.cfg.tmpstore_dir)

    def export(self, directory: Path) -> int:
        """Write the plaintext of every sealed entry into directory, byte for byte."""
        keys = self._keys()
        names = self.store.list()
        passphrase = self._passphrase()
        ensure_dir(directory)
        count = 0
        for name in names:
            if not self.store.is_signed(name):
                log.warning("skipping unsigned entry %s", name)
                continue
            try:
                keys.verify(self.store.path(name), self.store.sig_path(name))
            except VerificationFailedError as e:
                log.warning("skipping %s", e.format_message())
                continue
            plaintext = self._open(name, passphrase)
            target = directory / name
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(plaintext)
            ensure_600(target)
            count += 1
        log.debug("exported %d entries to %s", count, directory)
        return count

    def clip(self, pattern: str) -> Optional[str]:
        if self.clipboard is None:
            raise JpmError("No clipboard configured")
        name = self._select(pattern)
        if name is None:
            return None
        self.clipboard(first_line(self._open(name)))
        return name
