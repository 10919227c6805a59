"""Unit tests for token generation."""

import string

from redirector.tokens import DEFAULT_TOKEN_LENGTH, generate_token

LOWER_ALPHANUMERIC = set(string.ascii_lowercase + string.digits)


def test_generate_token_default_length() -> None:
    assert DEFAULT_TOKEN_LENGTH == 8
    assert len(generate_token()) == 8


def test_generate_token_custom_length() -> None:
    assert len(generate_token(length=12)) == 12


def test_generate_token_is_lowercase_alphanumeric() -> None:
    for _ in range(200):
        assert set(generate_token()) <= LOWER_ALPHANUMERIC


def test_generate_token_uniqueness() -> None:
    tokens = {generate_token() for _ in range(1000)}
    # 36^8 possibilities; 1000 draws should not collide.
    assert len(tokens) == 1000
