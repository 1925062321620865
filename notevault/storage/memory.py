from __future__ import annotations

import json
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from notevault.logging import get_logger
from notevault.storage.errors import ConstraintViolation
from notevault.storage.models import DEFAULT_ROLES, Note, User, keep_recent, normalize_email

_NOTE_FIELDS = {"title", "body", "is_public", "tags"}


class MemoryStore:
    """In-memory credential and note store with a JSON snapshot on disk.

    Every mutation runs under one re-entrant lock, which makes each refresh
    token list update a single atomic read-modify-write.
    """

    def __init__(self, fs_root: str = "/tmp/notevault") -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.notes: Dict[str, Note] = {}
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    @staticmethod
    def _copy_user(user: User) -> User:
        return replace(user, roles=list(user.roles), refresh_tokens=list(user.refresh_tokens))

    def _copy_note(self, note: Note) -> Note:
        author = self.users.get(note.author_id)
        return replace(
            note, tags=list(note.tags), author_email=author.email if author else None
        )

    def verify_connection(self) -> None:
        self._state_path()

    # users
    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        roles: Optional[Iterable[str]] = None,
    ) -> User:
        normalized = normalize_email(email)
        with self._data_lock:
            if any(existing.email == normalized for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            now = datetime.utcnow()
            user = User(
                id=str(uuid.uuid4()),
                email=normalized,
                password_hash=password_hash,
                roles=list(roles or DEFAULT_ROLES),
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            self._persist_state()
            return self._copy_user(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return self._copy_user(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = normalize_email(email)
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == normalized), None)
            return self._copy_user(user) if user else None

    def list_users(self, limit: int = 100) -> List[User]:
        with self._data_lock:
            ordered = sorted(self.users.values(), key=lambda u: u.created_at, reverse=True)
            return [self._copy_user(u) for u in ordered[:limit]]

    def update_user_roles(self, user_id: str, roles: Iterable[str]) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.roles = list(roles)
            user.updated_at = datetime.utcnow()
            self._persist_state()
            return self._copy_user(user)

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            if self.users.pop(user_id, None) is None:
                return False
            for note_id, note in list(self.notes.items()):
                if note.author_id == user_id:
                    self.notes.pop(note_id, None)
            self._persist_state()
            return True

    # refresh tokens
    def add_refresh_token(
        self, user_id: str, token: str, *, keep: Optional[int] = None
    ) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return False
            user.refresh_tokens = keep_recent(user.refresh_tokens + [token], keep)
            user.updated_at = datetime.utcnow()
            self._persist_state()
            return True

    def rotate_refresh_token(
        self, user_id: str, old_token: str, new_token: str, *, keep: Optional[int] = None
    ) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or old_token not in user.refresh_tokens:
                return False
            remaining = [t for t in user.refresh_tokens if t != old_token]
            user.refresh_tokens = keep_recent(remaining + [new_token], keep)
            user.updated_at = datetime.utcnow()
            self._persist_state()
            return True

    def remove_refresh_token(self, user_id: str, token: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or token not in user.refresh_tokens:
                return False
            user.refresh_tokens = [t for t in user.refresh_tokens if t != token]
            user.updated_at = datetime.utcnow()
            self._persist_state()
            return True

    def clear_refresh_tokens(self, user_id: str) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or not user.refresh_tokens:
                return
            user.refresh_tokens = []
            user.updated_at = datetime.utcnow()
            self._persist_state()

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
        with self._data_lock:
            if author_id not in self.users:
                raise ConstraintViolation("author does not exist", {"author_id": author_id})
            note = Note.new(title, body, author_id, is_public=is_public, tags=tags)
            self.notes[note.id] = note
            self._persist_state()
            return self._copy_note(note)

    def get_note(self, note_id: str) -> Optional[Note]:
        with self._data_lock:
            note = self.notes.get(note_id)
            return self._copy_note(note) if note else None

    def update_note(self, note_id: str, **fields) -> Optional[Note]:
        unknown = set(fields) - _NOTE_FIELDS
        if unknown:
            raise ValueError(f"unknown note fields: {sorted(unknown)}")
        with self._data_lock:
            note = self.notes.get(note_id)
            if not note:
                return None
            for name, value in fields.items():
                setattr(note, name, list(value) if name == "tags" else value)
            note.updated_at = datetime.utcnow()
            self._persist_state()
            return self._copy_note(note)

    def delete_note(self, note_id: str) -> bool:
        with self._data_lock:
            if self.notes.pop(note_id, None) is None:
                return False
            self._persist_state()
            return True

    def list_notes(
        self,
        viewer_id: str,
        *,
        search: Optional[str] = None,
        tags: Optional[List[str]] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Note], int]:
        needle = search.lower() if search else None
        wanted = set(tags or [])
        with self._data_lock:
            matches = []
            for note in self.notes.values():
                if note.author_id != viewer_id and not note.is_public:
                    continue
                if needle and needle not in note.title.lower() and needle not in note.body.lower():
                    continue
                if wanted and not wanted.intersection(note.tags):
                    continue
                matches.append(note)
            return self._page(matches, offset, limit)

    def list_user_notes(
        self, user_id: str, *, offset: int = 0, limit: int = 10
    ) -> Tuple[List[Note], int]:
        with self._data_lock:
            matches = [n for n in self.notes.values() if n.author_id == user_id]
            return self._page(matches, offset, limit)

    def _page(self, notes: List[Note], offset: int, limit: int) -> Tuple[List[Note], int]:
        ordered = sorted(notes, key=lambda n: n.created_at, reverse=True)
        window = ordered[offset : offset + limit]
        return [self._copy_note(n) for n in window], len(ordered)

    # persistence
    def _persist_state(self) -> None:
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "notes": [self._serialize_note(n) for n in self.notes.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.notes = {n["id"]: self._deserialize_note(n) for n in data.get("notes", [])}
        self.logger.info("memory_store_loaded", users=len(self.users), notes=len(self.notes))
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "password_hash": user.password_hash,
            "roles": user.roles,
            "refresh_tokens": user.refresh_tokens,
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=str(data["id"]),
            email=data["email"],
            password_hash=data["password_hash"],
            roles=list(data.get("roles") or DEFAULT_ROLES),
            refresh_tokens=list(data.get("refresh_tokens") or []),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data.get("updated_at", data["created_at"])),
        )

    def _serialize_note(self, note: Note) -> dict:
        return {
            "id": note.id,
            "title": note.title,
            "body": note.body,
            "author_id": note.author_id,
            "is_public": note.is_public,
            "tags": note.tags,
            "created_at": self._serialize_datetime(note.created_at),
            "updated_at": self._serialize_datetime(note.updated_at),
        }

    def _deserialize_note(self, data: dict) -> Note:
        return Note(
            id=str(data["id"]),
            title=data["title"],
            body=data["body"],
            author_id=str(data["author_id"]),
            is_public=bool(data.get("is_public", False)),
            tags=list(data.get("tags") or []),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data.get("updated_at", data["created_at"])),
        )
