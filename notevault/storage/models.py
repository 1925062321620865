from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

DEFAULT_ROLES = ("USER",)
ADMIN_ROLE = "ADMIN"


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class User:
    id: str
    email: str
    password_hash: str
    roles: List[str] = field(default_factory=lambda: list(DEFAULT_ROLES))
    # Live refresh tokens, oldest first
    refresh_tokens: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


@dataclass
class Note:
    id: str
    title: str
    body: str
    author_id: str
    is_public: bool = False
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    author_email: Optional[str] = None

    @classmethod
    def new(
        cls,
        title: str,
        body: str,
        author_id: str,
        *,
        is_public: bool = False,
        tags: Optional[List[str]] = None,
    ) -> "Note":
        now = datetime.utcnow()
        return cls(
            id=str(uuid.uuid4()),
            title=title,
            body=body,
            author_id=author_id,
            is_public=is_public,
            tags=list(tags or []),
            created_at=now,
            updated_at=now,
        )


def keep_recent(tokens: List[str], keep: Optional[int]) -> List[str]:
    """Trim a refresh-token list to its ``keep`` most recent entries."""
    if keep is None or keep <= 0 or len(tokens) <= keep:
        return tokens
    return tokens[-keep:]
