from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_ROOT = Path.home() / ".jpm"

PRIVATE_DIR = "private"
STORE_DIR = "store"
TMPSTORE_DIR = "tmpstore"

ENCRYPT_KEY = "encrypt.key"      # openssl RSA private key (passphrase protected)
ENCRYPT_PUB = "encrypt.pub"
SIGNIFY_SEC = "signify.sec"      # signify secret key (passphrase protected)
SIGNIFY_PUB = "signify.pub"
KEY_FILES = (ENCRYPT_KEY, ENCRYPT_PUB, SIGNIFY_SEC, SIGNIFY_PUB)

SIG_SUFFIX = ".sig"
TMP_KEY_PREFIX = "tmp."

READ_PASS_TTY = "tty"
READ_PASS_STDIN = "stdin"

DEFAULT_KEY_BITS = 4096


def ensure_600(path: Path) -> None:
    try:
        path.chmod(0o600)
    except OSError:
        pass


def ensure_dir(path: Path) -> Path:
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


@dataclass(frozen=True)
class Cfg:
    root: Path
    read_pass: str = READ_PASS_TTY
    editor: Optional[str] = None
    key_bits: int = DEFAULT_KEY_BITS
    verbose: bool = False

    @property
    def private_dir(self) -> Path:
        return self.root / PRIVATE_DIR

    @property
    def store_dir(self) -> Path:
        return self.root / STORE_DIR

    @property
    def tmpstore_dir(self) -> Path:
        return self.root / TMPSTORE_DIR

    @property
    def encrypt_key(self) -> Path:
        return self.private_dir / ENCRYPT_KEY

    @property
    def encrypt_pub(self) -> Path:
        return self.private_dir / ENCRYPT_PUB

    @property
    def signify_sec(self) -> Path:
        return self.private_dir / SIGNIFY_SEC

    @property
    def signify_pub(self) -> Path:
        return self.private_dir / SIGNIFY_PUB
