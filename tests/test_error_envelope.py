"""Tests for the error envelope.

Every error response has the shape:
{
    "success": false,
    "error": "<kind>",
    "message": "<human readable>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from notevault.api.error_handling import (
    _STATUS_TO_ERROR,
    _error_kind_for_status,
    error_response,
    register_exception_handlers,
)
from notevault.api.schemas import ErrorBody
from notevault.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ExternalProviderError,
    ForbiddenError,
    NotFoundError,
    ServerError,
    ServiceError,
    ValidationError as ServiceValidationError,
)
from notevault.storage.errors import ConstraintViolation


class TestErrorBody:
    def test_defaults_to_failure(self):
        body = ErrorBody(error="Unauthorized", message="Invalid credentials")
        assert body.model_dump() == {
            "success": False,
            "error": "Unauthorized",
            "message": "Invalid credentials",
        }

    def test_message_required(self):
        with pytest.raises(ValidationError):
            ErrorBody(error="Conflict")


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status,kind",
        [
            (400, "Validation Error"),
            (401, "Unauthorized"),
            (403, "Access Denied"),
            (404, "Not Found"),
            (409, "Conflict"),
            (500, "Server Error"),
        ],
    )
    def test_known_statuses(self, status, kind):
        assert _STATUS_TO_ERROR[status] == kind
        assert _error_kind_for_status(status) == kind

    def test_unknown_statuses(self):
        assert _error_kind_for_status(418) == "Bad Request"
        assert _error_kind_for_status(503) == "Server Error"

    def test_error_response_renders_envelope(self):
        response = error_response(401, "nope")
        assert response.status_code == 401
        assert json.loads(response.body) == {
            "success": False,
            "error": "Unauthorized",
            "message": "nope",
        }


class TestServiceErrors:
    @pytest.mark.parametrize(
        "exc_type,status,kind",
        [
            (ServiceValidationError, 400, "Validation Error"),
            (BadRequestError, 400, "Bad Request"),
            (AuthenticationError, 401, "Unauthorized"),
            (ForbiddenError, 403, "Access Denied"),
            (NotFoundError, 404, "Not Found"),
            (ConflictError, 409, "Conflict"),
            (ExternalProviderError, 502, "Provider Error"),
            (ServerError, 500, "Server Error"),
        ],
    )
    def test_taxonomy(self, exc_type, status, kind):
        exc = exc_type("message")
        assert isinstance(exc, ServiceError)
        assert exc.status_code == status
        assert exc.error == kind

    def test_overrides(self):
        exc = ServiceValidationError("Invalid note ID format", error="Invalid ID")
        assert exc.status_code == 400
        assert exc.error == "Invalid ID"


@pytest.fixture
def probe_client():
    """A bare app with the handlers installed and routes that raise."""
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/service")
    async def service():
        raise ForbiddenError("You can only edit your own notes")

    @app.get("/constraint")
    async def constraint():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database password is hunter2")

    @app.get("/typed")
    async def typed(page: int):
        return {"page": page}

    return TestClient(app, raise_server_exceptions=False)


class TestHandlers:
    def test_service_error(self, probe_client):
        response = probe_client.get("/service")
        assert response.status_code == 403
        assert response.json() == {
            "success": False,
            "error": "Access Denied",
            "message": "You can only edit your own notes",
        }

    def test_constraint_violation_is_conflict(self, probe_client):
        response = probe_client.get("/constraint")
        assert response.status_code == 409
        assert response.json()["error"] == "Conflict"

    def test_unhandled_exception_hides_details(self, probe_client):
        response = probe_client.get("/boom")
        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Server Error",
            "message": "Something went wrong",
        }
        assert "hunter2" not in response.text

    def test_request_validation_is_400(self, probe_client):
        response = probe_client.get("/typed", params={"page": "abc"})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation Error"
        assert "page" in body["message"]

    def test_unknown_route(self, probe_client):
        response = probe_client.get("/missing")
        assert response.status_code == 404
        assert response.json()["success"] is False
        assert response.json()["error"] == "Not Found"
