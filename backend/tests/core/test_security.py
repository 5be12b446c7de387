"""Tests for password hashing and policy."""

from app.core.security import get_password_hash, validate_password, verify_password


def test_password_hashing():
    hashed = get_password_hash("Passw0rd!")
    assert hashed != "Passw0rd!"
    assert verify_password("Passw0rd!", hashed)
    assert not verify_password("passw0rd!", hashed)


def test_verify_password_without_hash():
    assert verify_password("anything", None) is False
    assert verify_password("anything", "") is False


def test_verify_password_unknown_hash_format():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_validate_password_length_bounds():
    assert validate_password("a" * 7) == (False, "Password must be at least 8 characters")
    assert validate_password("a" * 8) == (True, "")
    assert validate_password("a" * 128) == (True, "")
    ok, message = validate_password("a" * 129)
    assert ok is False
    assert "128" in message
