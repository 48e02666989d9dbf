"""Tests for password hashing and tokens."""
from alia.security.passwords import generate_secure_token, hash_password, verify_password


def test_hash_and_verify():
    hashed = hash_password("Shalom1234")
    assert hashed.startswith("$2b$12$")
    assert verify_password("Shalom1234", hashed)
    assert not verify_password("shalom1234", hashed)


def test_long_passwords_compare_on_first_72_bytes():
    base = "p" * 72
    hashed = hash_password(base + "suffix")
    assert verify_password(base, hashed)


def test_malformed_hash_never_matches():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_tokens_are_random_hex():
    first, second = generate_secure_token(), generate_secure_token()
    assert first != second
    assert len(first) == 64
    int(first, 16)
    assert len(generate_secure_token(8)) == 16
