"""
Crypto providers.

This module provides:
- CryptoBackend: capability interface jpm needs from a crypto provider
- OpenSSLSignifyBackend: the production provider, driving the ``openssl``
  and ``signify`` command line tools
- pack_envelope / unpack_envelope: the on-disk ciphertext container

An entry body is encrypted with a random AES-256-GCM session key; only the
session key goes through RSA-OAEP, so entries are not limited by the RSA
block size.
"""

from __future__ import annotations

import os
import shutil
import struct
import subprocess
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Sequence, Tuple

import click
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import DEFAULT_KEY_BITS, SIG_SUFFIX
from .errors import (
    CorruptEntryError,
    IncorrectPassphraseError,
    ProviderError,
    VerificationFailedError,
)
from .log import get_logger

log = get_logger(__name__)

MAGIC = b"JPM1"        # format marker
NONCE_LEN = 12         # AESGCM nonce length
SESSION_KEY_LEN = 32   # AES-256
_LEN = struct.Struct(">H")

# Debian and Ubuntu ship signify as signify-openbsd
SIGNIFY_NAMES = ("signify", "signify-openbsd")


def find_signify() -> str:
    for name in SIGNIFY_NAMES:
        if shutil.which(name):
            return name
    return SIGNIFY_NAMES[0]


class KeyKind(Enum):
    """Which keypair of the keyring."""

    ENCRYPTION = "encryption"
    SIGNING = "signing"

    def __str__(self) -> str:
        return self.value


class CryptoBackend(ABC):
    """
    Black-box asymmetric encryption and signing.

    Key material is always referenced by path; implementations hold no
    state between calls.
    """

    @abstractmethod
    def encrypt(self, plaintext: bytes, public_key: Path) -> bytes:
        """Encrypt plaintext to the encryption public key."""
        ...

    @abstractmethod
    def decrypt(self, ciphertext: bytes, private_key: Path, passphrase: str) -> bytes:
        """Recover plaintext; IncorrectPassphraseError if the key won't unlock."""
        ...

    def announce(self, path: Path, secret_key: Path) -> None:
        """Tell the operator which file and key the next passphrase unlocks."""
        click.echo(f"Signing {path} with {secret_key}")

    @abstractmethod
    def sign(self, path: Path, secret_key: Path, passphrase: str) -> bytes:
        """Return a detached signature over the file at path."""
        ...

    @abstractmethod
    def verify(self, path: Path, signature: Path, public_key: Path) -> None:
        """Raise VerificationFailedError unless signature matches path."""
        ...

    @abstractmethod
    def generate_keypair(
        self, kind: KeyKind, passphrase: str, public_key: Path, secret_key: Path
    ) -> None:
        """Create a keypair at the given paths, secret half protected by passphrase."""
        ...


def pack_envelope(wrapped_key: bytes, nonce: bytes, body: bytes) -> bytes:
    return MAGIC + _LEN.pack(len(wrapped_key)) + wrapped_key + nonce + body


def unpack_envelope(blob: bytes) -> Tuple[bytes, bytes, bytes]:
    """Split an envelope into (wrapped_key, nonce, body)."""
    if not blob.startswith(MAGIC):
        raise CorruptEntryError("Encrypted entry has unknown format (bad magic).")
    offset = len(MAGIC)
    if len(blob) < offset + _LEN.size:
        raise CorruptEntryError("Encrypted entry is too short / corrupted.")
    (key_len,) = _LEN.unpack_from(blob, offset)
    offset += _LEN.size
    if len(blob) < offset + key_len + NONCE_LEN + 16:
        raise CorruptEntryError("Encrypted entry is too short / corrupted.")
    wrapped_key = blob[offset: offset + key_len]
    offset += key_len
    nonce = blob[offset: offset + NONCE_LEN]
    body = blob[offset + NONCE_LEN:]
    return wrapped_key, nonce, body


@contextmanager
def pass_fd(passphrase: str) -> Iterator[int]:
    """
    Yield a readable pipe fd preloaded with passphrase.

    openssl reads it via ``-pass fd:N`` so the passphrase never appears in
    the process table.
    """
    r, w = os.pipe()
    try:
        os.write(w, passphrase.encode("utf-8") + b"\n")
    finally:
        os.close(w)
    try:
        yield r
    finally:
        os.close(r)


def run_provider(
    cmd: Sequence[str],
    input: Optional[bytes] = None,
    capture: bool = True,
    pass_fds: Sequence[int] = (),
) -> subprocess.CompletedProcess:
    """
    Run a provider command.

    stderr is always inherited so provider diagnostics reach the operator
    verbatim and as they happen. stdout is captured unless capture is False.
    """
    log.debug("running %s", " ".join(str(c) for c in cmd[:2]))
    kwargs = dict(
        stdout=subprocess.PIPE if capture else None,
        stderr=None,
        pass_fds=tuple(pass_fds),
    )
    if input is None:
        kwargs["stdin"] = subprocess.DEVNULL
    else:
        kwargs["input"] = input
    try:
        return subprocess.run([str(c) for c in cmd], **kwargs)
    except FileNotFoundError:
        raise ProviderError(f"Command not found: {cmd[0]}")


class OpenSSLSignifyBackend(CryptoBackend):
    """RSA encryption via openssl, signatures via signify."""

    def __init__(self, key_bits: int = DEFAULT_KEY_BITS, openssl: str = "openssl", signify: Optional[str] = None):
        self.key_bits = key_bits
        self.openssl = openssl
        self.signify = signify or find_signify()

    def encrypt(self, plaintext: bytes, public_key: Path) -> bytes:
        session_key = AESGCM.generate_key(bit_length=SESSION_KEY_LEN * 8)
        p = run_provider(
            [self.openssl, "pkeyutl", "-encrypt", "-pubin", "-inkey", public_key,
             "-pkeyopt", "rsa_padding_mode:oaep"],
            input=session_key,
        )
        if p.returncode != 0:
            raise ProviderError(f"openssl encrypt failed with {public_key}")
        nonce = os.urandom(NONCE_LEN)
        body = AESGCM(session_key).encrypt(nonce, plaintext, associated_data=MAGIC)
        return pack_envelope(p.stdout, nonce, body)

    def decrypt(self, ciphertext: bytes, private_key: Path, passphrase: str) -> bytes:
        wrapped_key, nonce, body = unpack_envelope(ciphertext)
        with pass_fd(passphrase) as fd:
            p = run_provider(
                [self.openssl, "pkeyutl", "-decrypt", "-inkey", private_key,
                 "-passin", f"fd:{fd}", "-pkeyopt", "rsa_padding_mode:oaep"],
                input=wrapped_key,
                pass_fds=(fd,),
            )
        if p.returncode != 0:
            raise IncorrectPassphraseError(f"Unable to decrypt with {private_key}: incorrect passphrase?")
        if len(p.stdout) != SESSION_KEY_LEN:
            raise CorruptEntryError("Decrypted session key has the wrong length.")
        try:
            return AESGCM(p.stdout).decrypt(nonce, body, associated_data=MAGIC)
        except InvalidTag:
            raise CorruptEntryError("Decryption failed (corrupted entry?).")

    def sign(self, path: Path, secret_key: Path, passphrase: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="jpm-sig-") as td:
            out = Path(td) / (path.name + SIG_SUFFIX)
            p = run_provider(
                [self.signify, "-S", "-s", secret_key, "-m", path, "-x", out],
                input=(passphrase + "\n").encode("utf-8"),
            )
            if p.returncode != 0:
                raise IncorrectPassphraseError(f"Unable to sign {path.name} with {secret_key}")
            return out.read_bytes()

    def verify(self, path: Path, signature: Path, public_key: Path) -> None:
        p = run_provider([self.signify, "-V", "-q", "-p", public_key, "-m", path, "-x", signature])
        if p.returncode != 0:
            raise VerificationFailedError(f"{path.name}: signature verification failed")

    def generate_keypair(
        self, kind: KeyKind, passphrase: str, public_key: Path, secret_key: Path
    ) -> None:
        log.debug("generating %s keypair at %s", kind, secret_key)
        if kind is KeyKind.ENCRYPTION:
            self._generate_rsa(passphrase, public_key, secret_key)
        else:
            # signify asks twice (passphrase + confirmation)
            line = (passphrase + "\n").encode("utf-8")
            p = run_provider(
                [self.signify, "-G", "-p", public_key, "-s", secret_key, "-c", "jpm signing key"],
                input=line + line,
                capture=False,
            )
            if p.returncode != 0:
                raise ProviderError("signify key generation failed")

    def _generate_rsa(self, passphrase: str, public_key: Path, secret_key: Path) -> None:
        with pass_fd(passphrase) as fd:
            p = run_provider(
                [self.openssl, "genrsa", "-aes256", "-passout", f"fd:{fd}",
                 "-out", secret_key, str(self.key_bits)],
                capture=False,
                pass_fds=(fd,),
            )
        if p.returncode != 0:
            raise ProviderError("openssl key generation failed")
        with pass_fd(passphrase) as fd:
            p = run_provider(
                [self.openssl, "rsa", "-in", secret_key, "-passin", f"fd:{fd}",
                 "-pubout", "-out", public_key],
                pass_fds=(fd,),
            )
        if p.returncode != 0:
            raise ProviderError("openssl public key export failed")
