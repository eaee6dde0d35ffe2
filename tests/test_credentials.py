"""Tests for password hashing."""

from storefront_sync.credentials import (
    MAX_PASSWORD_BYTES,
    check_password,
    hash_password,
    placeholder_hash,
)


class TestHashPassword:
    def test_round_trip(self):
        hashed = hash_password("s3cret")
        assert hashed != "s3cret"
        assert check_password("s3cret", hashed)
        assert not check_password("wrong", hashed)

    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_truncates_at_72_bytes(self):
        base = "x" * MAX_PASSWORD_BYTES
        hashed = hash_password(base + "tail-one")
        assert check_password(base + "tail-two", hashed)
        assert check_password(base, hashed)
        assert not check_password(base[:-1], hashed)

    def test_truncation_counts_utf8_bytes(self):
        # "ñ" is two bytes, so 36 of them fill the limit
        hashed = hash_password("ñ" * 36 + "extra")
        assert check_password("ñ" * 36, hashed)

    def test_malformed_hash_never_matches(self):
        assert not check_password("pw", "")
        assert not check_password("pw", "plaintext")
        assert not check_password("pw", "md5$1$00$abc")
        assert not check_password("pw", "pbkdf2_sha256$x$zz$abc")
        assert not check_password("pw", None)


class TestPlaceholderHash:
    def test_deterministic_per_email(self):
        assert placeholder_hash("a@x.com", "pw") == placeholder_hash("a@x.com", "pw")

    def test_differs_between_emails(self):
        assert placeholder_hash("a@x.com", "pw") != placeholder_hash("b@x.com", "pw")

    def test_verifies(self):
        assert check_password("pw", placeholder_hash("a@x.com", "pw"))
