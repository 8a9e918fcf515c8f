"""SQLite message store.

Provides persistent chat history using a SQLite database file.
Uses aiosqlite for async access.
"""

from datetime import datetime
from pathlib import Path

try:
    import aiosqlite
    AIOSQLITE_AVAILABLE = True
except ImportError:
    AIOSQLITE_AVAILABLE = False
    aiosqlite = None

from .base import MessageStore
from .models import Message, Role


class SQLiteMessageStore(MessageStore):
    """SQLite-backed message store.

    Messages survive restarts. Rows are returned ordered by timestamp,
    with the autoincrement row id breaking ties.
    """

    def __init__(self, path: str | Path = "./tinychat.db"):
        if not AIOSQLITE_AVAILABLE:
            raise ImportError(
                "SQLite message store requires aiosqlite. "
                "Install with: pip install aiosqlite"
            )

        self._db_path = Path(path)
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._connection is not None:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._db_path)
        await self._create_schema()

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_timestamp
            ON messages(timestamp, seq)
        """)

        await self._connection.commit()

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> "aiosqlite.Connection":
        if self._connection is None:
            raise RuntimeError("SQLiteMessageStore is not connected; call connect() first")
        return self._connection

    async def append(self, message: Message) -> None:
        """Insert a message."""
        conn = self._require_connection()
        await conn.execute(
            "INSERT INTO messages (id, role, content, timestamp) VALUES (?, ?, ?, ?)",
            (
                message.id,
                message.role.value,
                message.content,
                message.timestamp.isoformat(timespec="microseconds"),
            )
        )
        await conn.commit()

    async def list_ordered(self) -> list[Message]:
        """Return all messages, oldest first."""
        conn = self._require_connection()

        async with conn.execute(
            "SELECT id, role, content, timestamp FROM messages ORDER BY timestamp ASC, seq ASC"
        ) as cursor:
            rows = await cursor.fetchall()

        return [
            Message(
                id=message_id,
                role=Role(role),
                content=content,
                timestamp=datetime.fromisoformat(ts)
            )
            for message_id, role, content, ts in rows
        ]

    async def delete_all(self) -> None:
        """Delete every message."""
        conn = self._require_connection()
        await conn.execute("DELETE FROM messages")
        await conn.commit()

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path
