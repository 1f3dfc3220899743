"""One-time dispensing code helpers."""

import hashlib
import hmac
import secrets


def generate_code(length: int = 6) -> str:
    """Generate a uniformly distributed numeric code of ``length`` digits.

    ``secrets.randbelow`` rejection-samples internally, so every value in
    ``[0, 10**length)`` is equally likely.
    """
    return str(secrets.randbelow(10**length)).zfill(length)


def hash_code(code: str, algorithm: str = "sha256") -> str:
    """One-way hex digest of a plaintext code."""
    return hashlib.new(algorithm, code.encode("utf-8")).hexdigest()


def verify_code(candidate: str, stored_hash: str, algorithm: str = "sha256") -> bool:
    """Constant-time comparison of a candidate code against a stored hash."""
    return hmac.compare_digest(hash_code(candidate, algorithm), stored_hash)
