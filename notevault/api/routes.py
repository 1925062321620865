from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse

from notevault.api.error_handling import error_response
from notevault.api.schemas import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    NoteCreateRequest,
    NoteListResponse,
    NoteOut,
    NoteResponse,
    NoteUpdateRequest,
    PaginationOut,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    TokenRequest,
)
from notevault.logging import get_logger
from notevault.service.auth import AuthContext
from notevault.service.errors import BadRequestError, ExternalProviderError
from notevault.service.oauth import STATE_COOKIE
from notevault.service.runtime import get_runtime

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
oauth_router = APIRouter(tags=["oauth"])
notes_router = APIRouter(prefix="/api/v1/notes", tags=["notes"])


async def get_user(
    request: Request, authorization: Optional[str] = Header(None)
) -> AuthContext:
    """Bearer guard: resolves the access token and records the caller on the request."""
    ctx = get_runtime().auth.authenticate(authorization)
    request.state.user = ctx
    return ctx


# local credentials and token lifecycle
@auth_router.post("/register", status_code=201, response_model=RegisterResponse)
def register(body: RegisterRequest):
    user = get_runtime().auth.register(body.email, body.password)
    return RegisterResponse(user_id=user.id)


@auth_router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest):
    pair = get_runtime().auth.login(body.email, body.password)
    return LoginResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
    )


@auth_router.post("/refresh", response_model=RefreshResponse)
def refresh(body: TokenRequest):
    pair = get_runtime().auth.refresh(body.refresh_token)
    return RefreshResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
    )


@auth_router.post("/revoke", response_model=MessageResponse)
def revoke(body: TokenRequest):
    get_runtime().auth.revoke(body.refresh_token)
    return MessageResponse(message="Refresh token revoked (if valid)")


@auth_router.get("/me", response_model=MeResponse)
async def me(principal: AuthContext = Depends(get_user)):
    return MeResponse(user_id=principal.user_id, roles=principal.roles)


# GitHub authorization-code flow
@oauth_router.get("/auth/github")
async def github_start():
    runtime = get_runtime()
    start = runtime.oauth.start()
    response = RedirectResponse(start.authorization_url, status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        start.state,
        max_age=runtime.settings.oauth_state_ttl_seconds,
        path="/",
        httponly=True,
        samesite="lax",
        secure=runtime.settings.cookie_secure,
    )
    return response


def _clear_state_cookie(response, secure: bool) -> None:
    response.delete_cookie(STATE_COOKIE, path="/", httponly=True, samesite="lax", secure=secure)


@oauth_router.get("/auth/github/callback")
async def github_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
):
    runtime = get_runtime()
    secure = runtime.settings.cookie_secure
    try:
        runtime.oauth.check_state(state, request.cookies.get(STATE_COOKIE))
    except BadRequestError as exc:
        logger.warning("oauth_state_mismatch", has_cookie=STATE_COOKIE in request.cookies)
        response = error_response(exc.status_code, exc.message, exc.error)
        _clear_state_cookie(response, secure)
        return response

    try:
        if error:
            raise ExternalProviderError(f"GitHub denied authorization: {error}")
        result = await runtime.oauth.complete(code)
        target = runtime.oauth.success_redirect(result)
    except Exception as exc:
        # Provider details stay in the log; the client only sees a generic marker
        logger.error(
            "oauth_callback_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        target = runtime.oauth.failure_redirect()
    response = RedirectResponse(target, status_code=302)
    _clear_state_cookie(response, secure)
    return response


# notes
@notes_router.get("", response_model=NoteListResponse)
def list_notes(
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    tags: Optional[str] = Query(None, max_length=1000),
    principal: AuthContext = Depends(get_user),
):
    notes, pagination = get_runtime().notes.list_notes(
        principal, page=page, limit=limit, search=search, tags=tags
    )
    return NoteListResponse(
        notes=[NoteOut.from_note(n) for n in notes],
        pagination=PaginationOut.from_pagination(pagination),
    )


@notes_router.get("/my", response_model=NoteListResponse)
def list_my_notes(
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    principal: AuthContext = Depends(get_user),
):
    notes, pagination = get_runtime().notes.list_my_notes(principal, page=page, limit=limit)
    return NoteListResponse(
        notes=[NoteOut.from_note(n) for n in notes],
        pagination=PaginationOut.from_pagination(pagination),
    )


@notes_router.get("/{note_id}", response_model=NoteResponse, response_model_exclude_none=True)
def get_note(note_id: str, principal: AuthContext = Depends(get_user)):
    note = get_runtime().notes.get_note(principal, note_id)
    return NoteResponse(note=NoteOut.from_note(note))


@notes_router.post("", status_code=201, response_model=NoteResponse)
def create_note(body: NoteCreateRequest, principal: AuthContext = Depends(get_user)):
    note = get_runtime().notes.create_note(
        principal,
        title=body.title,
        body=body.body,
        is_public=body.is_public,
        tags=body.tags,
    )
    return NoteResponse(message="Note created successfully", note=NoteOut.from_note(note))


@notes_router.put("/{note_id}", response_model=NoteResponse)
def update_note(
    note_id: str, body: NoteUpdateRequest, principal: AuthContext = Depends(get_user)
):
    note = get_runtime().notes.update_note(
        principal,
        note_id,
        title=body.title,
        body=body.body,
        is_public=body.is_public,
        tags=body.tags,
    )
    return NoteResponse(message="Note updated successfully", note=NoteOut.from_note(note))


@notes_router.delete("/{note_id}", response_model=MessageResponse)
def delete_note(note_id: str, principal: AuthContext = Depends(get_user)):
    get_runtime().notes.delete_note(principal, note_id)
    return MessageResponse(message="Note deleted successfully")
