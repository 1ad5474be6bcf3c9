"""
SQLite-backed repository.

Tables:
- conversations: owner, status, activity timestamp, next turn order counter
- turns: per-conversation ordered messages (cascade-deleted with the conversation)
- long_term_memories: user-scoped memories with float32 embedding blobs
- reflections: synthesized insights awaiting or past promotion

Turn orders are assigned from the ``next_order`` counter inside
``BEGIN IMMEDIATE`` transactions, so concurrent writers (threads or
processes sharing the file) never receive the same order.
"""

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Union

import structlog

from chat_memory.errors import NotFoundError, StorageError
from chat_memory.schemas import (
    Conversation,
    ConversationStatus,
    LongTermMemory,
    Reflection,
    ReflectionStatus,
    SenderRole,
    Turn,
    TurnDraft,
)
from .repository import Repository


logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    next_order INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL,
    last_activity_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id);

CREATE TABLE IF NOT EXISTS turns (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    turn_order INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    token_count INTEGER NOT NULL,
    metadata TEXT,
    created_at REAL NOT NULL,
    UNIQUE (conversation_id, turn_order)
);

CREATE TABLE IF NOT EXISTS reflections (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    text TEXT NOT NULL,
    triggering_turn_ids TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reflections_user ON reflections(user_id);

CREATE TABLE IF NOT EXISTS long_term_memories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    text TEXT NOT NULL,
    embedding BLOB NOT NULL,
    memory_type TEXT NOT NULL,
    importance_score REAL NOT NULL,
    source_turn_ids TEXT,
    source_reflection_id TEXT REFERENCES reflections(id) ON DELETE SET NULL,
    created_at REAL NOT NULL,
    last_accessed_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_ltm_user ON long_term_memories(user_id);
"""


class SQLiteRepository(Repository):
    """
    File-backed SQLite repository.

    Thread-safe: one shared connection guarded by a re-entrant lock,
    WAL mode, and IMMEDIATE transactions for every write.
    """

    def __init__(self, db_path: Union[str, Path] = "data/chat_memory.db"):
        """
        Initialize repository at given path.

        Args:
            db_path: Path to SQLite database file, or ``":memory:"``
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        try:
            # Autocommit mode; transactions are opened explicitly
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=10.0,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open database {self.db_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"Could not begin transaction: {exc}") from exc

            try:
                yield self._conn
            except sqlite3.Error as exc:
                self._conn.execute("ROLLBACK")
                raise StorageError(str(exc)) from exc
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise

            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._conn.execute("ROLLBACK")
                raise StorageError(f"Commit failed: {exc}") from exc

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            status=row["status"],
            created_at=row["created_at"],
            last_activity_at=row["last_activity_at"],
        )

    @staticmethod
    def _to_turn(row: sqlite3.Row) -> Turn:
        return Turn(
            id=row["id"],
            conversation_id=row["conversation_id"],
            order=row["turn_order"],
            role=row["role"],
            content=row["content"],
            token_count=row["token_count"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            created_at=row["created_at"],
        )

    @staticmethod
    def _to_memory(row: sqlite3.Row) -> LongTermMemory:
        return LongTermMemory(
            id=row["id"],
            user_id=row["user_id"],
            text=row["text"],
            embedding=bytes(row["embedding"]),
            memory_type=row["memory_type"],
            importance_score=row["importance_score"],
            source_turn_ids=json.loads(row["source_turn_ids"]) if row["source_turn_ids"] else None,
            source_reflection_id=row["source_reflection_id"],
            created_at=row["created_at"],
            last_accessed_at=row["last_accessed_at"],
        )

    @staticmethod
    def _to_reflection(row: sqlite3.Row) -> Reflection:
        return Reflection(
            id=row["id"],
            user_id=row["user_id"],
            text=row["text"],
            triggering_turn_ids=json.loads(row["triggering_turn_ids"]),
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        conversation = Conversation(user_id=user_id, title=title)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO conversations (id, user_id, title, status, next_order, created_at, last_activity_at) "
                "VALUES (?, ?, ?, ?, 1, ?, ?)",
                (
                    conversation.id,
                    conversation.user_id,
                    conversation.title,
                    conversation.status,
                    conversation.created_at,
                    conversation.last_activity_at,
                ),
            )
        logger.info("conversation_created", conversation_id=conversation.id, user_id=user_id)
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation:
        rows = self._query("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
        if not rows:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return self._to_conversation(rows[0])

    def list_conversations(self, user_id: str) -> List[Conversation]:
        rows = self._query(
            "SELECT * FROM conversations WHERE user_id = ? ORDER BY last_activity_at DESC, rowid DESC",
            (user_id,),
        )
        return [self._to_conversation(r) for r in rows]

    def touch_conversation(self, conversation_id: str) -> None:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE conversations SET last_activity_at = ? WHERE id = ?",
                (time.time(), conversation_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Conversation {conversation_id} not found")

    def update_conversation_status(self, conversation_id: str, status: ConversationStatus) -> Conversation:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE conversations SET status = ? WHERE id = ?",
                (status, conversation_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Conversation {conversation_id} not found")
        return self.get_conversation(conversation_id)

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def _reserve_orders(self, conn: sqlite3.Connection, conversation_id: str, count: int) -> int:
        """Bump the counter by ``count`` and return the first reserved order."""
        row = conn.execute(
            "SELECT next_order FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        first = row["next_order"]
        conn.execute(
            "UPDATE conversations SET next_order = ? WHERE id = ?",
            (first + count, conversation_id),
        )
        return first

    def _insert_turn(self, conn: sqlite3.Connection, turn: Turn) -> None:
        conn.execute(
            "INSERT INTO turns (id, conversation_id, turn_order, role, content, token_count, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                turn.id,
                turn.conversation_id,
                turn.order,
                turn.role,
                turn.content,
                turn.token_count,
                json.dumps(turn.metadata) if turn.metadata is not None else None,
                turn.created_at,
            ),
        )

    def get_next_order(self, conversation_id: str) -> int:
        with self._transaction() as conn:
            return self._reserve_orders(conn, conversation_id, 1)

    def create_turn(self, conversation_id: str, order: int, draft: TurnDraft) -> Turn:
        now = time.time()
        turn = Turn(
            conversation_id=conversation_id,
            order=order,
            role=draft.role,
            content=draft.content,
            token_count=draft.token_count,
            metadata=draft.metadata,
            created_at=now,
        )
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE conversations SET last_activity_at = ?, next_order = MAX(next_order, ?) WHERE id = ?",
                (now, order + 1, conversation_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            self._insert_turn(conn, turn)
        return turn

    def append_turns(self, conversation_id: str, drafts: Sequence[TurnDraft]) -> List[Turn]:
        if not drafts:
            return []

        now = time.time()
        with self._transaction() as conn:
            first = self._reserve_orders(conn, conversation_id, len(drafts))
            turns = [
                Turn(
                    conversation_id=conversation_id,
                    order=first + offset,
                    role=draft.role,
                    content=draft.content,
                    token_count=draft.token_count,
                    metadata=draft.metadata,
                    created_at=now,
                )
                for offset, draft in enumerate(drafts)
            ]
            for turn in turns:
                self._insert_turn(conn, turn)
            conn.execute(
                "UPDATE conversations SET last_activity_at = ? WHERE id = ?",
                (now, conversation_id),
            )
        return turns

    def list_turns(self, conversation_id: str, from_order: Optional[int] = None) -> List[Turn]:
        if from_order is None:
            rows = self._query(
                "SELECT * FROM turns WHERE conversation_id = ? ORDER BY turn_order ASC",
                (conversation_id,),
            )
        else:
            rows = self._query(
                "SELECT * FROM turns WHERE conversation_id = ? AND turn_order >= ? ORDER BY turn_order ASC",
                (conversation_id, from_order),
            )
        return [self._to_turn(r) for r in rows]

    def list_recent_turns(self, conversation_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []
        rows = self._query(
            "SELECT * FROM turns WHERE conversation_id = ? ORDER BY turn_order DESC LIMIT ?",
            (conversation_id, limit),
        )
        return [self._to_turn(r) for r in reversed(rows)]

    def count_turns(
        self,
        conversation_id: str,
        role: Optional[SenderRole] = None,
        through_order: Optional[int] = None,
    ) -> int:
        sql = "SELECT COUNT(*) FROM turns WHERE conversation_id = ?"
        params: list = [conversation_id]
        if role is not None:
            sql += " AND role = ?"
            params.append(role)
        if through_order is not None:
            sql += " AND turn_order <= ?"
            params.append(through_order)
        return self._query(sql, params)[0][0]

    def conversation_token_total(self, conversation_id: str) -> int:
        rows = self._query(
            "SELECT COALESCE(SUM(token_count), 0) FROM turns WHERE conversation_id = ?",
            (conversation_id,),
        )
        return int(rows[0][0])

    # ------------------------------------------------------------------
    # Long-term memories
    # ------------------------------------------------------------------

    def create_memory(self, memory: LongTermMemory) -> LongTermMemory:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO long_term_memories (id, user_id, text, embedding, memory_type, importance_score, "
                "source_turn_ids, source_reflection_id, created_at, last_accessed_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    memory.id,
                    memory.user_id,
                    memory.text,
                    sqlite3.Binary(memory.embedding),
                    memory.memory_type,
                    memory.importance_score,
                    json.dumps(memory.source_turn_ids) if memory.source_turn_ids is not None else None,
                    memory.source_reflection_id,
                    memory.created_at,
                    memory.last_accessed_at,
                ),
            )
        return memory

    def get_memory(self, memory_id: str) -> LongTermMemory:
        rows = self._query("SELECT * FROM long_term_memories WHERE id = ?", (memory_id,))
        if not rows:
            raise NotFoundError(f"Memory {memory_id} not found")
        return self._to_memory(rows[0])

    def list_memories(self, user_id: str) -> List[LongTermMemory]:
        rows = self._query(
            "SELECT * FROM long_term_memories WHERE user_id = ? ORDER BY rowid ASC",
            (user_id,),
        )
        return [self._to_memory(r) for r in rows]

    def update_memory_access_time(self, memory_ids: Iterable[str], accessed_at: float) -> int:
        ids = list(memory_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE long_term_memories SET last_accessed_at = ? WHERE id IN ({placeholders})",
                (accessed_at, *ids),
            )
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Reflections
    # ------------------------------------------------------------------

    def create_reflection(self, reflection: Reflection) -> Reflection:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO reflections (id, user_id, text, triggering_turn_ids, status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    reflection.id,
                    reflection.user_id,
                    reflection.text,
                    json.dumps(reflection.triggering_turn_ids),
                    reflection.status,
                    reflection.created_at,
                    reflection.updated_at,
                ),
            )
        return reflection

    def get_reflection(self, reflection_id: str) -> Reflection:
        rows = self._query("SELECT * FROM reflections WHERE id = ?", (reflection_id,))
        if not rows:
            raise NotFoundError(f"Reflection {reflection_id} not found")
        return self._to_reflection(rows[0])

    def list_reflections(self, user_id: str, status: Optional[ReflectionStatus] = None) -> List[Reflection]:
        if status is None:
            rows = self._query(
                "SELECT * FROM reflections WHERE user_id = ? ORDER BY rowid ASC",
                (user_id,),
            )
        else:
            rows = self._query(
                "SELECT * FROM reflections WHERE user_id = ? AND status = ? ORDER BY rowid ASC",
                (user_id, status),
            )
        return [self._to_reflection(r) for r in rows]

    def update_reflection_status(self, reflection_id: str, status: ReflectionStatus) -> Reflection:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE reflections SET status = ?, updated_at = ? WHERE id = ?",
                (status, time.time(), reflection_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Reflection {reflection_id} not found")
        return self.get_reflection(reflection_id)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()
