"""jpm: a file-based password manager.

Every entry is encrypted to an RSA key with openssl and carries a detached
signify signature. Keys live under ``private/``, entries under ``store/``
and transient plaintext under ``tmpstore/``.
"""

__version__ = "0.3.0"
