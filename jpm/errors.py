"""
Exception classes for jpm.

Every error is a click.ClickException, so the command line reports it as a
single line on stderr and exits with status 1.
"""

from __future__ import annotations

import click


class JpmError(click.ClickException):
    """Base exception for all jpm operations."""

    pass


class MissingKeysError(JpmError):
    """Keyring not initialized (encryption or signing keypair absent)."""

    def __init__(self, message: str = "Missing openssl or signify secret, run jpm init") -> None:
        super().__init__(message)


class AlreadyInitializedError(JpmError):
    """init called on a root that already holds keys."""

    pass


class InvalidNameError(JpmError):
    """Entry name violates the naming rules."""

    pass


class IncorrectPassphraseError(JpmError):
    """Private key could not be unlocked with the given passphrase."""

    pass


class MissingSignatureError(JpmError):
    """Entry has ciphertext but no detached signature."""

    pass


class VerificationFailedError(JpmError):
    """Signature present but does not match the entry."""

    pass


class InvalidOptionError(JpmError):
    """Disambiguation choice is out of range or not a number."""

    pass


class NotFoundError(JpmError):
    """Named entry absent."""

    pass


class EntryExistsError(JpmError):
    """Target name is already taken."""

    pass


class CorruptEntryError(JpmError):
    """Ciphertext is not a readable jpm envelope."""

    pass


class ProviderError(JpmError):
    """External crypto provider missing or failed."""

    pass
