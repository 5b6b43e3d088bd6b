"""
Pytest configuration and fixtures for jpm tests.

FakeBackend stands in for openssl/signify: keys are small JSON files,
"encryption" is a reversible transform tagged with the key id, and the
secret halves check their passphrase. Ciphertext from one keyring does not
decrypt under another.
"""

from __future__ import annotations

import base64
import hashlib
import json
import secrets
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from jpm.backend import CryptoBackend, KeyKind
from jpm.config import READ_PASS_STDIN, Cfg
from jpm.engine import CommandEngine
from jpm.errors import (
    CorruptEntryError,
    IncorrectPassphraseError,
    JpmError,
    VerificationFailedError,
)
from jpm.prompt import ChoiceSource, PassphraseSource

PASS = "fooo"
NEW_PASS = "fiii"


class FakeBackend(CryptoBackend):
    def __init__(self, fail_keygen: Optional[KeyKind] = None, fail_on_decrypt: Optional[int] = None):
        self.fail_keygen = fail_keygen
        self.fail_on_decrypt = fail_on_decrypt
        self.decrypts = 0
        self.generated: List[KeyKind] = []

    @staticmethod
    def _key_id(path: Path) -> str:
        return json.loads(path.read_text())["id"]

    @staticmethod
    def _unlock(path: Path, passphrase: str) -> str:
        data = json.loads(path.read_text())
        if data["passphrase"] != passphrase:
            raise IncorrectPassphraseError(f"{path.name}: incorrect passphrase")
        return data["id"]

    @staticmethod
    def _mac(key_id: str, content: bytes) -> bytes:
        return hashlib.sha256(key_id.encode() + content).hexdigest().encode()

    def generate_keypair(self, kind, passphrase, public_key, secret_key):
        if kind is self.fail_keygen:
            raise RuntimeError(f"{kind} key generation interrupted")
        key_id = secrets.token_hex(8)
        public_key.write_text(json.dumps({"kind": str(kind), "id": key_id}))
        secret_key.write_text(json.dumps({"kind": str(kind), "id": key_id, "passphrase": passphrase}))
        self.generated.append(kind)

    def encrypt(self, plaintext, public_key):
        return b"FAKE:" + self._key_id(public_key).encode() + b":" + base64.b64encode(plaintext[::-1])

    def decrypt(self, ciphertext, private_key, passphrase):
        self.decrypts += 1
        if self.fail_on_decrypt is not None and self.decrypts >= self.fail_on_decrypt:
            raise RuntimeError("killed")
        prefix = b"FAKE:" + self._unlock(private_key, passphrase).encode() + b":"
        if not ciphertext.startswith(prefix):
            raise CorruptEntryError("not encrypted to this key")
        return base64.b64decode(ciphertext[len(prefix):])[::-1]

    def sign(self, path, secret_key, passphrase):
        return self._mac(self._unlock(secret_key, passphrase), path.read_bytes())

    def verify(self, path, signature, public_key):
        if signature.read_bytes() != self._mac(self._key_id(public_key), path.read_bytes()):
            raise VerificationFailedError(f"{path.name}: signature verification failed")


class CannedPrompt(PassphraseSource, ChoiceSource):
    """Fixed answers consumed in order."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.asked: List[str] = []

    def _next(self, prompt: str) -> Optional[str]:
        self.asked.append(prompt)
        return self.answers.pop(0) if self.answers else None

    def passphrase(self, prompt, confirm=False):
        answer = self._next(prompt)
        if answer is None:
            raise JpmError(f"{prompt}: no passphrase available")
        return answer

    def choice(self, prompt):
        answer = self._next(prompt)
        return "" if answer is None else answer


def snapshot(root: Path) -> Dict[str, Optional[bytes]]:
    """Every path under root mapped to its content (None for directories)."""
    return {
        str(p.relative_to(root)): (p.read_bytes() if p.is_file() else None)
        for p in sorted(root.rglob("*"))
    }


def files(directory: Path) -> List[str]:
    if not directory.is_dir():
        return []
    return sorted(p.name for p in directory.iterdir() if not p.name.startswith("."))


@pytest.fixture
def cfg(tmp_path: Path) -> Cfg:
    return Cfg(root=tmp_path / ".jpm", read_pass=READ_PASS_STDIN)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_engine(cfg: Cfg, backend: FakeBackend) -> Callable[..., CommandEngine]:
    def _make(*answers: str, editor=None, clipboard=None) -> CommandEngine:
        prompt = CannedPrompt(answers)
        return CommandEngine(cfg, backend, prompt, prompt, editor=editor, clipboard=clipboard)
    return _make


@pytest.fixture
def initialized(cfg: Cfg, make_engine) -> Cfg:
    make_engine(PASS).init()
    return cfg


@pytest.fixture
def add_entry(initialized: Cfg, make_engine):
    def _add(name: str, content: bytes, passphrase: str = PASS) -> None:
        make_engine(passphrase).staging.write(name, content)
        make_engine(passphrase).add(name)
    return _add
