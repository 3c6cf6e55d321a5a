"""
Token usage metrics per target (chapter).
"""

from pathlib import Path
from typing import Dict, Optional

import aiosqlite

from novelforge.jobs.models import utc_now


class MetricsStore:
    """Keeps running input/output token totals for every chapter."""

    def __init__(self, db_path: str = "novelforge.db"):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        db_dir = Path(self.db_path).parent
        if str(db_dir) != "." and not db_dir.exists():
            db_dir.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path, timeout=30.0)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS chapter_metrics (
                target_id TEXT PRIMARY KEY,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                requests INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)
        await self._conn.commit()

    async def track_tokens(self, target_id: str, input_tokens: int, output_tokens: int):
        await self._conn.execute("""
            INSERT INTO chapter_metrics (target_id, input_tokens, output_tokens, requests, updated_at)
            VALUES (?, ?, ?, 1, ?)
            ON CONFLICT(target_id) DO UPDATE SET
                input_tokens = input_tokens + excluded.input_tokens,
                output_tokens = output_tokens + excluded.output_tokens,
                requests = requests + 1,
                updated_at = excluded.updated_at
        """, (target_id, input_tokens, output_tokens, utc_now()))
        await self._conn.commit()

    async def get_totals(self, target_id: str) -> Dict[str, int]:
        cursor = await self._conn.execute("""
            SELECT input_tokens, output_tokens, requests
            FROM chapter_metrics
            WHERE target_id = ?
        """, (target_id,))
        row = await cursor.fetchone()
        if not row:
            return {"input_tokens": 0, "output_tokens": 0, "requests": 0}
        return dict(row)

    async def close(self):
        if self._conn:
            await self._conn.close()
            self._conn = None
