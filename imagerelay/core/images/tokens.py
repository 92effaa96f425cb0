"""
Token codec for public image identifiers.

Internal filenames are never exposed. Instead each image gets a public
token: the random base name plus a fixed marker, encrypted with
AES-256-CBC and written as unpadded base64url. Because the marker is
inside the ciphertext, a token can be checked for authenticity without
touching the database - bots requesting garbage identifiers are turned
away before any query runs.

This is obfuscation, not access control. Key and IV are fixed for the
whole deployment, so the same name always yields the same token.
"""

import base64
import binascii
import logging
import re
import secrets
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..errors import ConfigError, ValidationError
from .models import GeneratedName

logger = logging.getLogger(__name__)

NAME_MARKER = "_404img"
RANDOM_NAME_LENGTH = 8

KEY_BYTES = 32
IV_BYTES = 16

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def parse_hex_secret(value: str, expected_bytes: int, label: str) -> bytes:
    """Decode a hex-encoded key or IV, raising ConfigError if it is unusable."""
    try:
        raw = bytes.fromhex(value or "")
    except ValueError as e:
        raise ConfigError(f"{label} must be hex encoded", details={"field": label}) from e
    if len(raw) != expected_bytes:
        raise ConfigError(
            f"{label} must be {expected_bytes * 2} hex characters, got {len(value or '')}",
            details={"field": label},
        )
    return raw


def split_extension(public_filename: str) -> tuple[str, Optional[str]]:
    """
    Split "<token>.<ext>" into token and extension.

    The token alphabet has no dots, so the last dot always starts the
    extension.
    """
    if "." in public_filename:
        token, ext = public_filename.rsplit(".", 1)
        return token, ext or None
    return public_filename, None


class TokenCodec:
    """
    Reversible, self-validating mapping between internal names and tokens.

    Both directions interpret the key and IV as hex strings. Using one
    convention for encrypt and decrypt is what makes the round trip hold;
    the constructor rejects anything that isn't hex of the right length.
    """

    def __init__(self, key_hex: str, iv_hex: str) -> None:
        self._key = parse_hex_secret(key_hex, KEY_BYTES, "ENCRYPTION_KEY")
        self._iv = parse_hex_secret(iv_hex, IV_BYTES, "ENCRYPTION_IV")

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encode(self, name: str) -> str:
        """Encrypt a name into a URL-safe token."""
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(name.encode("utf-8")) + padder.finalize()

        encryptor = self._cipher().encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return base64.urlsafe_b64encode(ciphertext).rstrip(b"=").decode("ascii")

    def decode(self, token: str) -> str:
        """
        Decrypt a token back into the name it was made from.

        Any malformed input - wrong alphabet, bad length, bad padding,
        non-UTF-8 plaintext - raises ValidationError.
        """
        if not isinstance(token, str) or not _TOKEN_PATTERN.match(token):
            raise ValidationError("Invalid image identifier")

        try:
            ciphertext = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
            if not ciphertext or len(ciphertext) % IV_BYTES:
                raise ValueError("ciphertext is not a whole number of blocks")

            decryptor = self._cipher().decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()

            return plaintext.decode("utf-8")
        except (binascii.Error, ValueError) as e:
            # UnicodeDecodeError is a ValueError too
            raise ValidationError("Invalid image identifier") from e

    def validate(self, token: str) -> bool:
        """True if the token decodes and carries the marker. Never raises."""
        try:
            return NAME_MARKER in self.decode(token)
        except ValidationError:
            logger.debug("Rejected malformed token", extra={"token_prefix": str(token)[:16]})
            return False

    def generate_name(self, extension: Optional[str] = None) -> GeneratedName:
        """Produce a random base name, its marker form and its token."""
        base_name = secrets.token_hex(RANDOM_NAME_LENGTH)[:RANDOM_NAME_LENGTH]
        marker_name = f"{base_name}{NAME_MARKER}"
        token = self.encode(marker_name)

        ext = (extension or "").lstrip(".").lower()
        return GeneratedName(
            base_name=base_name,
            marker_name=marker_name,
            internal_filename=f"{base_name}.{ext}" if ext else base_name,
            public_token=token,
            public_filename=f"{token}.{ext}" if ext else token,
        )
