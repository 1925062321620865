import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Configure the environment before anything imports the settings or runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="notevault_test_")
os.environ.setdefault("DATA_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-testing-only-0123456789")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-for-testing-only-9876543210")
os.environ.setdefault("GITHUB_CLIENT_ID", "test-client-id")
os.environ.setdefault("GITHUB_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GITHUB_CALLBACK_URL", "http://testserver/auth/github/callback")
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from notevault.service.runtime import reset_runtime_for_tests  # noqa: E402

_SNAPSHOT = Path(os.environ["DATA_ROOT"]) / "state" / "memory_store.json"


def _fresh_runtime():
    # The memory store reloads its snapshot on start; drop it so each test begins empty
    _SNAPSHOT.unlink(missing_ok=True)
    return reset_runtime_for_tests()


@pytest.fixture(autouse=True)
def reset_runtime_state():
    _fresh_runtime()
    yield
    _fresh_runtime()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


GITHUB_PROFILE = {
    "id": 4242,
    "login": "octocat",
    "name": "The Octocat",
    "email": None,
    "location": "San Francisco",
    "company": "@github",
    "blog": "https://github.blog",
    "bio": None,
    "public_repos": 8,
    "followers": 100,
    "following": 9,
    "avatar_url": "https://avatars.githubusercontent.com/u/4242",
    "html_url": "https://github.com/octocat",
    "created_at": "2011-01-25T18:44:36Z",
    "updated_at": "2024-01-01T00:00:00Z",
    "site_admin": False,
}


class FakeGitHub:
    """Answers the GitHub token, profile and email endpoints and records each request.

    ``fail`` names a path that answers 500, or ``"timeout"`` to make every
    request raise ``httpx.ConnectTimeout``.
    """

    def __init__(self, *, token="gho_test", profile=None, emails=None, fail=None):
        self.token = token
        self.profile = dict(GITHUB_PROFILE, **(profile or {}))
        self.emails = emails if emails is not None else []
        self.fail = fail
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if self.fail == "timeout":
            raise httpx.ConnectTimeout("timed out", request=request)
        if self.fail == path:
            return httpx.Response(500, json={"message": "boom"})
        if path == "/login/oauth/access_token":
            if self.token is None:
                return httpx.Response(200, json={"error": "bad_verification_code"})
            return httpx.Response(200, json={"access_token": self.token, "token_type": "bearer"})
        if path == "/user":
            return httpx.Response(200, json=self.profile)
        if path == "/user/emails":
            return httpx.Response(200, json=self.emails)
        return httpx.Response(404)


@pytest.fixture
def make_github():
    return FakeGitHub
