from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from notevault.config import Settings
from notevault.logging import get_logger
from notevault.service.auth import AuthContext
from notevault.service.errors import ForbiddenError, NotFoundError, ValidationError
from notevault.storage.models import Note

MAX_TITLE_LENGTH = 200
MAX_BODY_LENGTH = 5000


@dataclass
class Pagination:
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def as_dict(self) -> dict:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def _check_id(note_id: str) -> str:
    try:
        uuid.UUID(str(note_id))
    except ValueError:
        raise ValidationError("Invalid note ID format", error="Invalid ID")
    return note_id


def _clean_tags(tags: Optional[List[str]]) -> List[str]:
    return [t.strip() for t in tags or [] if isinstance(t, str) and t.strip()]


def parse_tag_filter(raw: Optional[str]) -> List[str]:
    """Split a ``tags=a,b`` query value into a list of tag names."""
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]


class NoteService:
    def __init__(self, store, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.logger = get_logger(__name__)

    def _window(self, page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
        page = max(1, page or 1)
        limit = limit or self.settings.default_page_size
        limit = min(max(1, limit), self.settings.max_page_size)
        return page, limit

    def list_notes(
        self,
        ctx: AuthContext,
        *,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        search: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> Tuple[List[Note], Pagination]:
        page, limit = self._window(page, limit)
        notes, total = self.store.list_notes(
            ctx.user_id,
            search=search.strip() if search and search.strip() else None,
            tags=parse_tag_filter(tags),
            offset=(page - 1) * limit,
            limit=limit,
        )
        return notes, Pagination(page=page, limit=limit, total=total)

    def list_my_notes(
        self, ctx: AuthContext, *, page: Optional[int] = None, limit: Optional[int] = None
    ) -> Tuple[List[Note], Pagination]:
        page, limit = self._window(page, limit)
        notes, total = self.store.list_user_notes(
            ctx.user_id, offset=(page - 1) * limit, limit=limit
        )
        return notes, Pagination(page=page, limit=limit, total=total)

    def _load(self, note_id: str) -> Note:
        note = self.store.get_note(_check_id(note_id))
        if not note:
            raise NotFoundError("Note not found")
        return note

    def get_note(self, ctx: AuthContext, note_id: str) -> Note:
        note = self._load(note_id)
        if not note.is_public and note.author_id != ctx.user_id:
            raise ForbiddenError("You don't have permission to view this note")
        return note

    def create_note(
        self,
        ctx: AuthContext,
        *,
        title: Optional[str],
        body: Optional[str],
        is_public: bool = False,
        tags: Optional[List[str]] = None,
    ) -> Note:
        if not title or not body:
            raise ValidationError("Title and body are required")
        title = self._validated_title(title)
        body = self._validated_body(body)
        note = self.store.create_note(
            title, body, ctx.user_id, is_public=bool(is_public), tags=_clean_tags(tags)
        )
        self.logger.info("note_created", note_id=note.id, user_id=ctx.user_id)
        return note

    def update_note(
        self,
        ctx: AuthContext,
        note_id: str,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        is_public: Optional[bool] = None,
        tags: Optional[List[str]] = None,
    ) -> Note:
        note = self._load(note_id)
        if note.author_id != ctx.user_id:
            raise ForbiddenError("You can only edit your own notes")
        changes: dict = {}
        if title is not None:
            changes["title"] = self._validated_title(title)
        if body is not None:
            changes["body"] = self._validated_body(body)
        if is_public is not None:
            changes["is_public"] = bool(is_public)
        if tags is not None:
            changes["tags"] = _clean_tags(tags)
        updated = self.store.update_note(note.id, **changes)
        if not updated:
            raise NotFoundError("Note not found")
        self.logger.info("note_updated", note_id=note.id, fields=sorted(changes))
        return updated

    def delete_note(self, ctx: AuthContext, note_id: str) -> None:
        note = self._load(note_id)
        if note.author_id != ctx.user_id and not ctx.is_admin:
            raise ForbiddenError("You can only delete your own notes")
        self.store.delete_note(note.id)
        self.logger.info("note_deleted", note_id=note.id, user_id=ctx.user_id)

    @staticmethod
    def _validated_title(title: str) -> str:
        title = title.strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
        return title

    @staticmethod
    def _validated_body(body: str) -> str:
        body = body.strip()
        if not body:
            raise ValidationError("Body cannot be empty")
        if len(body) > MAX_BODY_LENGTH:
            raise ValidationError(f"Body cannot exceed {MAX_BODY_LENGTH} characters")
        return body
