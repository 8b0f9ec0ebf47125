"""Process-wide registry of lazily constructed remote-service clients.

One client per provider, built on first use and reused by every pipeline
invocation afterwards. A factory that cannot build its client (missing
credentials) degrades to None instead of raising, so the caller can treat
the provider as "not configured".
"""

import asyncio
import logging
import threading
from typing import Any, Callable

import httpx

from config import settings

logger = logging.getLogger(__name__)


class ProviderNotConfigured(Exception):
    """Provider credentials or endpoint are missing."""


class ClientRegistry:
    """Thread-safe, injectable cache of remote clients keyed by provider name."""

    def __init__(self) -> None:
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, name: str, factory: Callable[[], Any]) -> Any | None:
        """Return the cached client for name, building it with factory on first use."""
        with self._lock:
            client = self._clients.get(name)
            if client is not None:
                return client

            try:
                client = factory()
            except ProviderNotConfigured as e:
                logger.info("%s not configured: %s", name, e)
                return None
            except Exception as e:
                logger.warning("%s client construction failed: %s", name, e)
                return None

            # Only successful constructions are cached
            self._clients[name] = client
            logger.info("%s client initialized", name)
            return client

    async def aget(self, name: str, factory: Callable[[], Any]) -> Any | None:
        """Async get: first-use construction runs in a worker thread, off the event loop."""
        with self._lock:
            client = self._clients.get(name)
        if client is not None:
            return client
        return await asyncio.to_thread(self.get, name, factory)

    def register(self, name: str, client: Any) -> None:
        with self._lock:
            self._clients[name] = client

    def close(self) -> None:
        """Close every cached client that supports it."""
        with self._lock:
            clients, self._clients = self._clients, {}

        for name, client in clients.items():
            close = getattr(client, "close", None)
            if callable(close):
                try:
                    close()
                except Exception as e:
                    logger.warning("%s client close failed: %s", name, e)


def build_http_client(
    base_url: str = "",
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
) -> httpx.Client:
    """Build a synchronous httpx client with the service-wide timeouts."""
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        headers=headers,
        params=params,
        timeout=httpx.Timeout(
            connect=settings.HTTP_CONNECT_TIMEOUT,
            read=settings.HTTP_TIMEOUT_SECONDS,
            write=30.0,
            pool=30.0,
        ),
    )


default_registry = ClientRegistry()
