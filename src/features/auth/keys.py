"""RSA signing keys for JWT tokens.

The keypair is generated once, out of band, with the ``pingspot-keys``
command and loaded at startup. A missing or broken key aborts startup.
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Self

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from src.config.settings import settings

from .exceptions import KeyLoadError

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048


@dataclass(frozen=True)
class KeyProvider:
    """Holds the RSA keypair used to sign (private) and verify (public) tokens."""

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey

    @classmethod
    def from_files(cls, private_path: str | Path, public_path: str | Path) -> Self:
        """Load the keypair from PEM files.

        The private key may be PKCS#1 ("RSA PRIVATE KEY") or PKCS#8; the public
        key must be SubjectPublicKeyInfo ("PUBLIC KEY").

        Args:
            private_path: Path to the PEM encoded private key
            public_path: Path to the PEM encoded public key

        Returns:
            KeyProvider with both halves loaded

        Raises:
            KeyLoadError: If a file is unreadable, malformed, not RSA, or the
                halves do not belong to the same keypair

        """
        private_pem = _read_pem(private_path, "private")
        public_pem = _read_pem(public_path, "public")

        try:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
        except (ValueError, TypeError) as err:
            raise KeyLoadError(f"Malformed private key at {private_path}: {err}") from err

        try:
            public_key = serialization.load_pem_public_key(public_pem)
        except (ValueError, TypeError) as err:
            raise KeyLoadError(f"Malformed public key at {public_path}: {err}") from err

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise KeyLoadError(f"Private key at {private_path} is not an RSA key")
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise KeyLoadError(f"Public key at {public_path} is not an RSA key")
        if private_key.public_key().public_numbers() != public_key.public_numbers():
            raise KeyLoadError("Public key does not match private key")

        logger.info(f"Loaded RSA signing keys ({private_key.key_size} bits) from {private_path}")
        return cls(private_key=private_key, public_key=public_key)

    @classmethod
    def generate(cls, key_size: int = DEFAULT_KEY_SIZE) -> Self:
        """Generate a fresh RSA keypair."""
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        return cls(private_key=private_key, public_key=private_key.public_key())

    def private_pem(self) -> bytes:
        """Private key as PKCS#1 PEM."""
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def public_pem(self) -> bytes:
        """Public key as SubjectPublicKeyInfo PEM."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def write_pem(self, private_path: str | Path, public_path: str | Path) -> None:
        """Write both halves to disk. The private key file is created with mode 0600."""
        private_path = Path(private_path)
        public_path = Path(public_path)
        private_path.parent.mkdir(parents=True, exist_ok=True)
        public_path.parent.mkdir(parents=True, exist_ok=True)

        fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(self.private_pem())
        public_path.write_bytes(self.public_pem())


def _read_pem(path: str | Path, label: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as err:
        raise KeyLoadError(f"Cannot read {label} key at {path}: {err}") from err


def main(argv: list[str] | None = None) -> int:
    """Generate the RSA keypair used for token signing."""
    parser = argparse.ArgumentParser(prog="pingspot-keys", description="Generate the JWT RSA keypair.")
    parser.add_argument("--private", default=settings.jwt_private_key_path, help="private key output path")
    parser.add_argument("--public", default=settings.jwt_public_key_path, help="public key output path")
    parser.add_argument("--bits", type=int, default=DEFAULT_KEY_SIZE, help="RSA key size")
    parser.add_argument("--force", action="store_true", help="overwrite existing key files")
    args = parser.parse_args(argv)

    existing = [p for p in (args.private, args.public) if Path(p).exists()]
    if existing and not args.force:
        print(f"Refusing to overwrite existing key file(s): {', '.join(existing)} (use --force)", file=sys.stderr)
        return 1

    KeyProvider.generate(args.bits).write_pem(args.private, args.public)
    print(f"Wrote {args.private} and {args.public}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
