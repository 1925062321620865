from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from notevault.logging import get_logger
from notevault.storage.errors import ConstraintViolation
from notevault.storage.models import DEFAULT_ROLES, Note, User, keep_recent, normalize_email

_NOTE_FIELDS = {"title", "body", "is_public", "tags"}

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        roles TEXT[] NOT NULL DEFAULT ARRAY['USER'],
        refresh_tokens TEXT[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS note (
        id UUID PRIMARY KEY,
        title TEXT NOT NULL,
        body TEXT NOT NULL,
        author_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        is_public BOOLEAN NOT NULL DEFAULT FALSE,
        tags TEXT[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS note_author_idx ON note (author_id, created_at DESC)",
)

_NOTE_SELECT = """
    SELECT n.*, u.email AS author_email
    FROM note n LEFT JOIN app_user u ON u.id = n.author_id
"""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresStore:
    """Postgres-backed credential and note store.

    Refresh token updates lock the user row (``SELECT ... FOR UPDATE``) so a
    rotation is one read-modify-write that concurrent requests cannot split.
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    @staticmethod
    def _user_from_row(row: dict) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            password_hash=row["password_hash"],
            roles=list(row.get("roles") or DEFAULT_ROLES),
            refresh_tokens=list(row.get("refresh_tokens") or []),
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    @staticmethod
    def _note_from_row(row: dict) -> Note:
        return Note(
            id=str(row["id"]),
            title=row["title"],
            body=row["body"],
            author_id=str(row["author_id"]),
            is_public=bool(row.get("is_public", False)),
            tags=list(row.get("tags") or []),
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
            author_email=row.get("author_email"),
        )

    # users
    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        roles: Optional[Iterable[str]] = None,
    ) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (id, email, password_hash, roles)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        str(uuid.uuid4()),
                        normalize_email(email),
                        password_hash,
                        list(roles or DEFAULT_ROLES),
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._user_from_row(row)

    def get_user(self, user_id: str) -> Optional[User]:
        try:
            uuid.UUID(str(user_id))
        except ValueError:
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (normalize_email(email),)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def list_users(self, limit: int = 100) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM app_user ORDER BY created_at DESC LIMIT %s", (limit,)
            ).fetchall()
        return [self._user_from_row(row) for row in rows]

    def update_user_roles(self, user_id: str, roles: Iterable[str]) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET roles = %s, updated_at = now() WHERE id = %s RETURNING *",
                (list(roles), user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
            return result.rowcount > 0

    # refresh tokens
    def _locked_tokens(self, conn, user_id: str) -> Optional[List[str]]:
        row = conn.execute(
            "SELECT refresh_tokens FROM app_user WHERE id = %s FOR UPDATE", (user_id,)
        ).fetchone()
        if not row:
            return None
        return list(row["refresh_tokens"] or [])

    @staticmethod
    def _write_tokens(conn, user_id: str, tokens: List[str]) -> None:
        conn.execute(
            "UPDATE app_user SET refresh_tokens = %s, updated_at = now() WHERE id = %s",
            (tokens, user_id),
        )

    def add_refresh_token(
        self, user_id: str, token: str, *, keep: Optional[int] = None
    ) -> bool:
        with self._connect() as conn:
            tokens = self._locked_tokens(conn, user_id)
            if tokens is None:
                return False
            self._write_tokens(conn, user_id, keep_recent(tokens + [token], keep))
            return True

    def rotate_refresh_token(
        self, user_id: str, old_token: str, new_token: str, *, keep: Optional[int] = None
    ) -> bool:
        with self._connect() as conn:
            tokens = self._locked_tokens(conn, user_id)
            if tokens is None or old_token not in tokens:
                return False
            remaining = [t for t in tokens if t != old_token]
            self._write_tokens(conn, user_id, keep_recent(remaining + [new_token], keep))
            return True

    def remove_refresh_token(self, user_id: str, token: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET refresh_tokens = array_remove(refresh_tokens, %s), updated_at = now()
                WHERE id = %s AND %s = ANY(refresh_tokens)
                RETURNING id
                """,
                (token, user_id, token),
            ).fetchone()
        return row is not None

    def clear_refresh_tokens(self, user_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE app_user SET refresh_tokens = '{}', updated_at = now() WHERE id = %s",
                (user_id,),
            )

    # notes
    def create_note(
        self,
        title: str,
        body: str,
        author_id: str,
        *,
        is_public: bool = False,
        tags: Optional[List[str]] = None,
    ) -> Note:
        note = Note.new(title, body, author_id, is_public=is_public, tags=tags)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO note (id, title, body, author_id, is_public, tags, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        note.id,
                        note.title,
                        note.body,
                        note.author_id,
                        note.is_public,
                        note.tags,
                        note.created_at,
                        note.updated_at,
                    ),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("author does not exist", {"author_id": author_id})
        return self.get_note(note.id) or note

    def get_note(self, note_id: str) -> Optional[Note]:
        try:
            uuid.UUID(str(note_id))
        except ValueError:
            return None
        with self._connect() as conn:
            row = conn.execute(_NOTE_SELECT + " WHERE n.id = %s", (note_id,)).fetchone()
        return self._note_from_row(row) if row else None

    def update_note(self, note_id: str, **fields: Any) -> Optional[Note]:
        unknown = set(fields) - _NOTE_FIELDS
        if unknown:
            raise ValueError(f"unknown note fields: {sorted(unknown)}")
        if not fields:
            return self.get_note(note_id)
        # Column names come from the fixed whitelist above
        assignments = ", ".join(f"{name} = %s" for name in fields)
        params = [list(v) if name == "tags" else v for name, v in fields.items()]
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE note SET {assignments}, updated_at = now() WHERE id = %s RETURNING id",
                (*params, note_id),
            ).fetchone()
        if not row:
            return None
        return self.get_note(note_id)

    def delete_note(self, note_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM note WHERE id = %s", (note_id,))
            return result.rowcount > 0

    def list_notes(
        self,
        viewer_id: str,
        *,
        search: Optional[str] = None,
        tags: Optional[List[str]] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Note], int]:
        clauses = ["(n.author_id = %s OR n.is_public)"]
        params: List[Any] = [viewer_id]
        if search:
            pattern = f"%{_escape_like(search)}%"
            clauses.append("(n.title ILIKE %s OR n.body ILIKE %s)")
            params.extend([pattern, pattern])
        if tags:
            clauses.append("n.tags && %s")
            params.append(list(tags))
        return self._page(" AND ".join(clauses), params, offset, limit)

    def list_user_notes(
        self, user_id: str, *, offset: int = 0, limit: int = 10
    ) -> Tuple[List[Note], int]:
        return self._page("n.author_id = %s", [user_id], offset, limit)

    def _page(
        self, where: str, params: List[Any], offset: int, limit: int
    ) -> Tuple[List[Note], int]:
        with self._connect() as conn:
            total_row = conn.execute(
                f"SELECT COUNT(*) AS total FROM note n WHERE {where}", params
            ).fetchone()
            rows = conn.execute(
                _NOTE_SELECT + f" WHERE {where} ORDER BY n.created_at DESC LIMIT %s OFFSET %s",
                (*params, limit, offset),
            ).fetchall()
        return [self._note_from_row(row) for row in rows], int(total_row["total"])
