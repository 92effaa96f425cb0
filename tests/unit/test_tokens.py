"""
Unit tests for the public token codec.

No database, no object store: the codec is pure and deterministic for a
fixed key and IV.
"""

import base64

import pytest

from imagerelay.core.errors import ConfigError, ValidationError
from imagerelay.core.images.tokens import (
    NAME_MARKER,
    RANDOM_NAME_LENGTH,
    TokenCodec,
    split_extension,
)

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_IV = "0102030405060708090a0b0c0d0e0f10"


class TestTokenCodecConstruction:
    """Key and IV are checked once, when the codec is built."""

    def test_accepts_hex_key_and_iv(self):
        """A 64-char hex key and 32-char hex IV are valid."""
        TokenCodec(TEST_KEY, TEST_IV)

    def test_rejects_non_hex_key(self):
        with pytest.raises(ConfigError, match="hex"):
            TokenCodec("z" * 64, TEST_IV)

    def test_rejects_short_key(self):
        """AES-256 needs exactly 32 bytes."""
        with pytest.raises(ConfigError, match="32 bytes"):
            TokenCodec(TEST_KEY[:32], TEST_IV)

    def test_rejects_wrong_iv_length(self):
        with pytest.raises(ConfigError, match="16 bytes"):
            TokenCodec(TEST_KEY, TEST_IV + "00")

    def test_rejects_missing_secrets(self):
        with pytest.raises(ConfigError):
            TokenCodec("", "")


class TestEncodeDecode:
    """Tests for encode/decode."""

    def test_decode_recovers_encoded_name(self, codec):
        """The codec is reversible for any name it produced."""
        name = f"a1b2c3d4{NAME_MARKER}"
        assert codec.decode(codec.encode(name)) == name

    def test_encoding_is_deterministic(self, codec):
        """Fixed key and IV: same name, same token."""
        assert codec.encode("abc_404img") == codec.encode("abc_404img")

    def test_token_is_unpadded_base64url(self, codec):
        token = codec.encode(f"deadbeef{NAME_MARKER}")
        assert "=" not in token
        assert "+" not in token
        assert "/" not in token

    def test_token_matches_aes_block_size(self, codec):
        """15 bytes of plaintext pad to one 16-byte block."""
        token = codec.encode(f"deadbeef{NAME_MARKER}")
        raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        assert len(raw) == 16

    def test_different_key_cannot_decode_marker(self, codec):
        """A token from another deployment does not validate here."""
        other = TokenCodec("ff" * 32, TEST_IV)
        token = other.encode(f"deadbeef{NAME_MARKER}")
        assert codec.validate(token) is False

    @pytest.mark.parametrize("garbage", [
        "",
        "not a token",
        "abc$def",
        "YWJj",              # valid base64, not a whole AES block
        "../../etc/passwd",
    ])
    def test_decode_rejects_garbage(self, codec, garbage):
        """Malformed input is a ValidationError, never a crash."""
        with pytest.raises(ValidationError):
            codec.decode(garbage)

    def test_decode_rejects_non_string(self, codec):
        with pytest.raises(ValidationError):
            codec.decode(None)


class TestValidate:
    """validate() is the cheap gate in front of the database."""

    def test_valid_for_generated_token(self, codec):
        generated = codec.generate_name("png")
        assert codec.validate(generated.public_token) is True

    def test_invalid_without_marker(self, codec):
        """A token that decodes but lacks the marker is not ours."""
        token = codec.encode("just-some-name")
        assert codec.validate(token) is False

    def test_never_raises(self, codec):
        assert codec.validate("%%%") is False
        assert codec.validate("") is False
        assert codec.validate("A" * 22) is False


class TestGenerateName:
    """Tests for name generation."""

    def test_fields_are_consistent(self, codec):
        generated = codec.generate_name("PNG")

        assert len(generated.base_name) == RANDOM_NAME_LENGTH
        assert generated.marker_name == generated.base_name + NAME_MARKER
        assert generated.internal_filename == f"{generated.base_name}.png"
        assert generated.public_filename == f"{generated.public_token}.png"
        assert codec.decode(generated.public_token) == generated.marker_name

    def test_without_extension(self, codec):
        generated = codec.generate_name()
        assert generated.internal_filename == generated.base_name
        assert generated.public_filename == generated.public_token

    def test_strips_leading_dot(self, codec):
        assert codec.generate_name(".jpg").internal_filename.endswith(".jpg")

    def test_names_are_random(self, codec):
        names = {codec.generate_name("png").internal_filename for _ in range(50)}
        assert len(names) == 50

    def test_internal_name_never_appears_in_token(self, codec):
        generated = codec.generate_name("png")
        assert generated.base_name not in generated.public_token


class TestSplitExtension:

    def test_splits_last_dot(self):
        assert split_extension("abcDEF_-.png") == ("abcDEF_-", "png")

    def test_bare_token(self):
        assert split_extension("abcDEF") == ("abcDEF", None)

    def test_trailing_dot(self):
        assert split_extension("abc.") == ("abc", None)
