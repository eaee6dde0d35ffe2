"""Password hashing for local accounts.

Hashes are salted PBKDF2-SHA256 strings of the form
``pbkdf2_sha256$<iterations>$<salt hex>$<digest hex>``. Input is cut to
MAX_PASSWORD_BYTES before hashing on both the hash and the verify path,
so a long password keeps verifying against its own hash.
"""

import hashlib
import hmac
import os

ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 120_000
MAX_PASSWORD_BYTES = 72
SALT_BYTES = 16


def _truncate(plaintext: str) -> bytes:
    return plaintext.encode("utf-8")[:MAX_PASSWORD_BYTES]


def _digest(secret: bytes, salt: bytes, iterations: int) -> str:
    return hashlib.pbkdf2_hmac("sha256", secret, salt, iterations).hex()


def hash_password(plaintext: str, salt: bytes | None = None) -> str:
    """Hash *plaintext*; pass *salt* only when the hash must be reproducible."""
    salt = salt if salt is not None else os.urandom(SALT_BYTES)
    digest = _digest(_truncate(plaintext), salt, ITERATIONS)
    return f"{ALGORITHM}${ITERATIONS}${salt.hex()}${digest}"


def check_password(plaintext: str, hashed: str) -> bool:
    """True if *plaintext* matches *hashed*; malformed hashes never match."""
    try:
        algorithm, iterations, salt_hex, digest = hashed.split("$")
        if algorithm != ALGORITHM:
            return False
        candidate = _digest(
            _truncate(plaintext), bytes.fromhex(salt_hex), int(iterations)
        )
    except (AttributeError, ValueError):
        return False
    return hmac.compare_digest(candidate, digest)


def placeholder_hash(email: str, plaintext: str) -> str:
    """Reproducible credential for accounts derived from remote merchants.

    The salt comes from the email, so deriving the same merchant twice
    yields the same stored hash.
    """
    salt = hashlib.sha256(email.encode("utf-8")).digest()[:SALT_BYTES]
    return hash_password(plaintext, salt=salt)
