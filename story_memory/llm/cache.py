from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import sqlite3
import time

from story_memory.config.schema import CacheConfig


@dataclass
class CacheResult:
    value: str | None
    hit: bool


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    writes: int = 0


class ResponseCache:
    """SQLite cache of raw LLM responses keyed by prompt hash."""

    def __init__(self, enabled: bool, backend: str, base_dir: Path, ttl_seconds: int):
        self.enabled = enabled and backend == "sqlite"
        self.ttl_seconds = ttl_seconds
        self.stats = CacheStats()
        self._conn: sqlite3.Connection | None = None

        if not self.enabled:
            return

        cache_path = (base_dir / "llm_cache.sqlite").resolve()
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(cache_path)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS responses (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                created_at REAL NOT NULL
            );
            """
        )
        self._conn.commit()

    @classmethod
    def from_config(cls, config: CacheConfig, base_dir: Path) -> "ResponseCache":
        return cls(config.enabled, config.backend, base_dir, config.ttl_seconds)

    def _expired(self, created_at: float) -> bool:
        return self.ttl_seconds > 0 and (time.time() - created_at) > self.ttl_seconds

    def get(self, key: str) -> CacheResult:
        if self._conn is None:
            return CacheResult(value=None, hit=False)

        row = self._conn.execute("SELECT value, created_at FROM responses WHERE key = ?", (key,)).fetchone()
        if row is None or self._expired(float(row[1])):
            if row is not None:
                self.delete(key)
            self.stats.misses += 1
            return CacheResult(value=None, hit=False)

        self.stats.hits += 1
        return CacheResult(value=str(row[0]), hit=True)

    def set(self, key: str, value: str) -> None:
        if self._conn is None:
            return
        self._conn.execute(
            "INSERT OR REPLACE INTO responses (key, value, created_at) VALUES (?, ?, ?)",
            (key, value, time.time()),
        )
        self._conn.commit()
        self.stats.writes += 1

    def delete(self, key: str) -> None:
        if self._conn is None:
            return
        self._conn.execute("DELETE FROM responses WHERE key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
