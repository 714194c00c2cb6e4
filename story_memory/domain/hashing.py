from __future__ import annotations

import hashlib


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def story_input_hash(participants: list[str], format_name: str, context_text: str) -> str:
    return sha256_text(f"{','.join(participants)}::{format_name}::{context_text}")
