from __future__ import annotations

import threading
from typing import Optional

import httpx

from notevault.config import get_settings, reset_settings_cache
from notevault.logging import get_logger
from notevault.service.auth import AuthService
from notevault.service.notes import NoteService
from notevault.service.oauth import GitHubOAuth
from notevault.service.tokens import TokenSigner
from notevault.storage.memory import MemoryStore
from notevault.storage.postgres import PostgresStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, *, oauth_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore(fs_root=self.settings.data_root)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.signer = TokenSigner.from_settings(self.settings)
        self.auth = AuthService(self.store, self.signer, self.settings)
        self.oauth = GitHubOAuth(
            self.store, self.auth, self.settings, transport=oauth_transport
        )
        self.notes = NoteService(self.store, self.settings)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton.

    Double-checked locking: the unlocked read is the fast path once the
    runtime exists; the locked re-check prevents two threads building it.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(
    *, oauth_transport: Optional[httpx.AsyncBaseTransport] = None
) -> Runtime:
    """Rebuild the runtime from a fresh read of the environment.

    ``oauth_transport`` lets tests route GitHub calls to an
    ``httpx.MockTransport`` instead of the network.
    """
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(oauth_transport=oauth_transport)
        return runtime
