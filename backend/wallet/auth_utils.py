import hashlib
import secrets
from functools import lru_cache

PBKDF2_ROUNDS = 200_000


def _digest(password: str, salt: str, rounds: int) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), rounds).hex()


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    return f"pbkdf2_sha256${PBKDF2_ROUNDS}${salt}${_digest(password, salt, PBKDF2_ROUNDS)}"


@lru_cache(maxsize=1)
def dummy_hash() -> str:
    """Hash of a random password, verified against when the username is unknown."""
    return hash_password(secrets.token_hex(16))


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        scheme, rounds, salt, expected = stored_hash.split("$", 3)
        iterations = int(rounds)
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    return secrets.compare_digest(_digest(password, salt, iterations), expected)
