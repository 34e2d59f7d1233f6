# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_federation

"""
FederationSupervisor component for wiring the upstream provider controller.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_federation.cache import DynamicProviderCache
from coreason_federation.config import FederationConfig
from coreason_federation.controller import SyncResult, UpstreamWatcherController
from coreason_federation.discovery import DiscoveryClient
from coreason_federation.reconciler import ProviderReconciler, utcnow
from coreason_federation.runner import ControllerRunner
from coreason_federation.secrets import SecretResolver
from coreason_federation.store import ConfigurationStore
from coreason_federation.transport import SafeAsyncTransport
from coreason_federation.utils.logger import logger


class FederationSupervisor:
    """
    Async implementation of the supervisor (The Core).
    Handles resources via async context manager.

    Attributes:
        config (FederationConfig): The configuration object.
        store (ConfigurationStore): The configuration store.
        cache (DynamicProviderCache): The validated providers, read by the authentication path.
    """

    def __init__(
        self,
        config: FederationConfig,
        store: ConfigurationStore,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the FederationSupervisor.

        Args:
            config: The configuration object.
            store: The configuration store holding declared providers and secrets.
            client: External async client (optional). If not provided, a `SafeAsyncTransport` client is created.
            clock: Source of condition transition times.
        """
        self.config = config
        self.store = store
        self._internal_client = client is None

        if client:
            self._client = client
        else:
            if self.config.unsafe_local_dev:
                logger.warning("unsafe_local_dev is enabled: SSRF protection for issuer discovery is disabled")
                transport: httpx.AsyncBaseTransport = httpx.AsyncHTTPTransport()
            else:
                # Use SafeAsyncTransport to prevent SSRF and DNS Rebinding
                transport = SafeAsyncTransport()
            self._client = httpx.AsyncClient(transport=transport, timeout=self.config.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        self.cache = DynamicProviderCache()
        self.discovery_client = DiscoveryClient(
            self._client,
            cache_ttl=self.config.discovery_cache_ttl,
            retry_attempts=self.config.discovery_retry_attempts,
            max_response_bytes=self.config.max_response_bytes,
        )
        self.secret_resolver = SecretResolver(self.store, secret_type=self.config.client_secret_type)
        self.reconciler = ProviderReconciler(self.store, self.secret_resolver, self.discovery_client, clock=clock)
        self.controller = UpstreamWatcherController(self.store, self.reconciler, self.cache)
        self.runner = ControllerRunner(
            self.controller,
            self.store,
            resync_interval=self.config.resync_interval,
            sync_timeout=self.config.sync_timeout,
            backoff_initial=self.config.requeue_backoff_initial,
            backoff_max=self.config.requeue_backoff_max,
        )

    async def __aenter__(self) -> "FederationSupervisor":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def sync(self) -> SyncResult:
        """
        Runs a single reconciliation pass under the configured deadline.

        Returns:
            SyncResult: The outcome of the pass.
        """
        return await self.runner.run_once()

    async def run(self) -> None:
        """
        Runs the controller loop until cancelled.

        Typically started in a task group next to the authentication request handler.
        """
        await self.runner.run()
