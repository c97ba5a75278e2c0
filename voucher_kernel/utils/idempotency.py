"""
Idempotency key generation utilities.

Idempotency keys ensure that submitting the same draft twice (a retry after a
timeout, a double click) produces exactly one posted voucher.
"""


def generate_idempotency_key(
    producer: str,
    draft_id: str,
    draft_version: int,
) -> str:
    """
    Generate an idempotency key for a draft submission.

    Format: producer:draft_id:version

    The version is part of the key: resubmitting an unchanged draft replays,
    while an edited draft gets a fresh key.

    Example:
        >>> generate_idempotency_key("voucher", "7d1c...", 12)
        "voucher:7d1c...:12"
    """
    return f"{producer}:{draft_id}:{draft_version}"


def parse_idempotency_key(key: str) -> tuple[str, str, int]:
    """
    Parse an idempotency key into (producer, draft_id, version).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.rsplit(":", 2)
    if len(parts) != 3 or not parts[0] or not parts[1] or not parts[2].isdigit():
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], int(parts[2])
