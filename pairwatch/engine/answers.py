import hashlib
import hmac
import secrets

ANSWER_HASH_ALGO = "pbkdf2_sha256"
ANSWER_HASH_ITERATIONS = 120_000


def normalize_answer(answer: str) -> str:
    return answer.strip().lower()


def hash_answer(answer: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        normalize_answer(answer).encode("utf-8"),
        salt_value.encode("utf-8"),
        ANSWER_HASH_ITERATIONS,
    ).hex()
    return f"{ANSWER_HASH_ALGO}${ANSWER_HASH_ITERATIONS}${salt_value}${digest}"


def verify_answer(candidate: str, answer_hash: str) -> bool:
    """Case-insensitive, whitespace-trimmed comparison against a stored hash."""
    try:
        algo, rounds_text, salt_value, expected_digest = answer_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError, AttributeError):
        return False

    if algo != ANSWER_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        normalize_answer(candidate).encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)
