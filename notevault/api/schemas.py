from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from notevault.service.notes import Pagination
from notevault.storage.models import Note

# Request fields are optional so that missing values reach the service and
# surface as its own "Validation Error" messages.
MAX_EMAIL_LENGTH = 320
MAX_PASSWORD_LENGTH = 1024
MAX_TOKEN_LENGTH = 4096
MAX_TAGS = 50
MAX_STRING_LENGTH = 65536


class ErrorBody(BaseModel):
    success: bool = False
    error: str
    message: str


class RegisterRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)


class RegisterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "User registered"
    user_id: str = Field(serialization_alias="userId")


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)


class TokenRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=MAX_TOKEN_LENGTH)


class LoginResponse(BaseModel):
    success: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class RefreshResponse(BaseModel):
    success: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class MeResponse(BaseModel):
    success: bool = True
    user_id: str
    roles: List[str]


class NoteCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    body: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    is_public: bool = Field(default=False, alias="isPublic")
    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)


class NoteUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    body: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    is_public: Optional[bool] = Field(default=None, alias="isPublic")
    tags: Optional[List[str]] = Field(default=None, max_length=MAX_TAGS)


class NoteAuthor(BaseModel):
    id: str
    email: Optional[str] = None


class NoteOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    body: str
    author: NoteAuthor
    is_public: bool = Field(serialization_alias="isPublic")
    tags: List[str]
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    @classmethod
    def from_note(cls, note: Note) -> "NoteOut":
        return cls(
            id=note.id,
            title=note.title,
            body=note.body,
            author=NoteAuthor(id=note.author_id, email=note.author_email),
            is_public=note.is_public,
            tags=list(note.tags),
            created_at=note.created_at,
            updated_at=note.updated_at,
        )


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def from_pagination(cls, pagination: Pagination) -> "PaginationOut":
        return cls(**pagination.as_dict())


class NoteListResponse(BaseModel):
    success: bool = True
    notes: List[NoteOut]
    pagination: PaginationOut


class NoteResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    note: NoteOut
