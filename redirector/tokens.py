"""Random token generation for newly registered targets."""

from nanoid import generate

__all__ = ["ALPHABET", "DEFAULT_TOKEN_LENGTH", "generate_token"]

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
DEFAULT_TOKEN_LENGTH = 8


def generate_token(length: int = DEFAULT_TOKEN_LENGTH) -> str:
    """Draw ``length`` alphanumeric characters and fold them to lowercase.

    The effective alphabet is 36 symbols, with letters drawn twice as often as digits.
    """
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length).lower()
