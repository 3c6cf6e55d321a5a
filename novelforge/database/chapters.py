"""
Chapter Store

Holds projects (with their story bible) and the chapters pipeline jobs
operate on. Uses aiosqlite like the job database.
"""

import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from novelforge.jobs.contracts import Chapter, count_words
from novelforge.jobs.models import utc_now


class ChapterStore:
    """
    Chapter and project persistence.

    Implements the ChapterRepository protocol the stage handlers use.
    """

    def __init__(self, db_path: str = "novelforge.db"):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Connect to database and create tables if needed"""
        db_dir = Path(self.db_path).parent
        if str(db_dir) != "." and not db_dir.exists():
            db_dir.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path, timeout=30.0)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._create_tables()

    async def _create_tables(self):
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                story_bible TEXT,  -- JSON: {premise, characters: [{name, role, currentState}], ...}
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS chapters (
                id TEXT PRIMARY KEY,
                project_id TEXT REFERENCES projects(id),
                chapter_number INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',  -- pending, writing, editing, completed
                content TEXT,
                word_count INTEGER NOT NULL DEFAULT 0,
                summary TEXT,
                flags TEXT,        -- JSON list
                scene_cards TEXT,  -- JSON list
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chapters_project
            ON chapters(project_id, chapter_number)
        """)

        await self._conn.commit()

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_project(self, title: str, story_bible: Optional[Dict[str, Any]] = None) -> str:
        project_id = f"project_{uuid.uuid4().hex[:12]}"
        now = utc_now()
        await self._conn.execute("""
            INSERT INTO projects (id, title, story_bible, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
        """, (project_id, title, json.dumps(story_bible) if story_bible else None, now, now))
        await self._conn.commit()
        return project_id

    async def create_chapter(
        self,
        project_id: Optional[str],
        chapter_number: int,
        scene_cards: Optional[List[Dict[str, Any]]] = None,
        content: Optional[str] = None,
        status: str = "pending"
    ) -> str:
        chapter_id = f"chapter_{uuid.uuid4().hex[:12]}"
        now = utc_now()
        await self._conn.execute("""
            INSERT INTO chapters
            (id, project_id, chapter_number, status, content, word_count,
             flags, scene_cards, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, '[]', ?, ?, ?)
        """, (
            chapter_id,
            project_id,
            chapter_number,
            status,
            content,
            count_words(content),
            json.dumps(scene_cards or []),
            now,
            now
        ))
        await self._conn.commit()
        return chapter_id

    # =========================================================================
    # Chapter Reads
    # =========================================================================

    async def get_chapter(self, chapter_id: str) -> Optional[Chapter]:
        cursor = await self._conn.execute("""
            SELECT * FROM chapters WHERE id = ?
        """, (chapter_id,))
        row = await cursor.fetchone()
        return self._row_to_chapter(row) if row else None

    async def list_chapters(self, project_id: str) -> List[Chapter]:
        cursor = await self._conn.execute("""
            SELECT * FROM chapters
            WHERE project_id = ?
            ORDER BY chapter_number ASC
        """, (project_id,))
        return [self._row_to_chapter(row) for row in await cursor.fetchall()]

    async def get_previous_summary(self, chapter_id: str) -> Optional[str]:
        """Summary of the chapter right before this one in the same project"""
        cursor = await self._conn.execute("""
            SELECT prev.summary FROM chapters cur
            JOIN chapters prev ON prev.project_id = cur.project_id
            WHERE cur.id = ?
            AND prev.chapter_number < cur.chapter_number
            AND prev.summary IS NOT NULL
            ORDER BY prev.chapter_number DESC
            LIMIT 1
        """, (chapter_id,))
        row = await cursor.fetchone()
        return row["summary"] if row else None

    # =========================================================================
    # Chapter Updates
    # =========================================================================

    async def update_status(self, chapter_id: str, status: str):
        await self._conn.execute("""
            UPDATE chapters SET status = ?, updated_at = ? WHERE id = ?
        """, (status, utc_now(), chapter_id))
        await self._conn.commit()

    async def update_content(
        self,
        chapter_id: str,
        content: str,
        status: Optional[str] = None
    ):
        """Replace the chapter text; word count follows the new text"""
        if status:
            await self._conn.execute("""
                UPDATE chapters
                SET content = ?, word_count = ?, status = ?, updated_at = ?
                WHERE id = ?
            """, (content, count_words(content), status, utc_now(), chapter_id))
        else:
            await self._conn.execute("""
                UPDATE chapters
                SET content = ?, word_count = ?, updated_at = ?
                WHERE id = ?
            """, (content, count_words(content), utc_now(), chapter_id))
        await self._conn.commit()

    async def append_flags(self, chapter_id: str, flags: List[Dict[str, Any]]):
        if not flags:
            return
        chapter = await self.get_chapter(chapter_id)
        if chapter is None:
            return

        await self._conn.execute("""
            UPDATE chapters SET flags = ?, updated_at = ? WHERE id = ?
        """, (json.dumps(chapter.flags + list(flags)), utc_now(), chapter_id))
        await self._conn.commit()

    async def update_summary(self, chapter_id: str, summary: str):
        await self._conn.execute("""
            UPDATE chapters SET summary = ?, updated_at = ? WHERE id = ?
        """, (summary, utc_now(), chapter_id))
        await self._conn.commit()

    async def refresh_word_count(self, chapter_id: str) -> int:
        chapter = await self.get_chapter(chapter_id)
        if chapter is None:
            return 0

        word_count = count_words(chapter.content)
        await self._conn.execute("""
            UPDATE chapters SET word_count = ?, updated_at = ? WHERE id = ?
        """, (word_count, utc_now(), chapter_id))
        await self._conn.commit()
        return word_count

    # =========================================================================
    # Story Bible
    # =========================================================================

    async def get_story_bible(self, project_id: str) -> Optional[Dict[str, Any]]:
        cursor = await self._conn.execute("""
            SELECT story_bible FROM projects WHERE id = ?
        """, (project_id,))
        row = await cursor.fetchone()
        if not row or not row["story_bible"]:
            return None
        return json.loads(row["story_bible"])

    async def update_story_bible(self, project_id: str, story_bible: Dict[str, Any]):
        await self._conn.execute("""
            UPDATE projects SET story_bible = ?, updated_at = ? WHERE id = ?
        """, (json.dumps(story_bible), utc_now(), project_id))
        await self._conn.commit()

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _row_to_chapter(row: Any) -> Chapter:
        return Chapter(
            id=row["id"],
            project_id=row["project_id"],
            chapter_number=row["chapter_number"],
            status=row["status"],
            content=row["content"],
            word_count=row["word_count"],
            summary=row["summary"],
            flags=json.loads(row["flags"]) if row["flags"] else [],
            scene_cards=json.loads(row["scene_cards"]) if row["scene_cards"] else [],
        )

    async def close(self):
        """Close database connection"""
        if self._conn:
            await self._conn.close()
            self._conn = None
