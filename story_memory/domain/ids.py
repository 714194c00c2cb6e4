from __future__ import annotations

from datetime import datetime, timezone
import secrets
import string
import time

_ID_ALPHABET = string.ascii_lowercase + string.digits


def epoch_ms() -> int:
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def memory_id(timestamp_ms: int | None = None) -> str:
    """Returns ``mem_<epoch_ms>_<random>``."""

    ts = epoch_ms() if timestamp_ms is None else timestamp_ms
    return f"mem_{ts}_{_random_suffix()}"


def interaction_id(user_id: str, timestamp_ms: int) -> str:
    return f"interaction-{user_id}-{timestamp_ms}"


def profile_id(user_id: str) -> str:
    return f"profile-{user_id}"


def story_id(timestamp_ms: int | None = None) -> str:
    ts = epoch_ms() if timestamp_ms is None else timestamp_ms
    return f"story-{ts}"


def segment_id(story_id_value: str, index: int) -> str:
    return f"{story_id_value}-part-{index:03d}"


def story_context_id(story_id_value: str) -> str:
    return f"{story_id_value}-context"
