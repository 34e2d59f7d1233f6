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
Configuration store boundary and an in-memory reference implementation.
"""

from typing import Protocol

import anyio

from coreason_federation.exceptions import NotFoundError
from coreason_federation.models import Secret, UpstreamProviderConfig, UpstreamProviderStatus


class ConfigurationStore(Protocol):
    """
    Protocol for the store that holds declared upstream providers and their secrets.

    Implementations typically keep a local index in sync with a remote source via
    a background watch, and wake `wait_for_change` whenever that index changes.
    """

    async def list_declared_providers(self) -> list[UpstreamProviderConfig]:
        """Returns a snapshot of every currently declared upstream provider."""
        ...

    async def get_secret(self, namespace: str, name: str) -> Secret:
        """
        Returns the named secret.

        Raises:
            NotFoundError: If the secret does not exist.
        """
        ...

    async def update_provider_status(
        self, provider: UpstreamProviderConfig, status: UpstreamProviderStatus
    ) -> UpstreamProviderConfig:
        """
        Writes `status` to the stored provider without touching its spec.

        Raises:
            StoreError: If the write is rejected.
        """
        ...

    async def wait_for_change(self) -> None:
        """Blocks until the declared providers or secrets change."""
        ...


class InMemoryConfigurationStore:
    """
    In-memory implementation of ConfigurationStore.
    Suitable for tests and single-process embedding; state is lost on restart.
    """

    def __init__(self) -> None:
        self._providers: dict[tuple[str, str], UpstreamProviderConfig] = {}
        self._secrets: dict[tuple[str, str], Secret] = {}
        self._changed: anyio.Event | None = None
        self._pending = False

    def _notify(self) -> None:
        # A change with nobody waiting is remembered until the next wait.
        self._pending = True
        changed, self._changed = self._changed, None
        if changed is not None:
            changed.set()

    def apply_provider(self, provider: UpstreamProviderConfig) -> UpstreamProviderConfig:
        """
        Creates or replaces a declared provider.

        When `provider.generation` is 0, the generation is derived the way an
        API server would: 1 on create, incremented whenever the spec changes.
        """
        key = (provider.namespace, provider.name)
        existing = self._providers.get(key)

        if provider.generation == 0:
            if existing is None:
                generation = 1
            elif existing.spec != provider.spec:
                generation = existing.generation + 1
            else:
                generation = existing.generation
            provider = provider.model_copy(update={"generation": generation})

        self._providers[key] = provider
        self._notify()
        return provider

    def delete_provider(self, namespace: str, name: str) -> None:
        if self._providers.pop((namespace, name), None) is None:
            raise NotFoundError(f'upstream provider "{namespace}/{name}" not found')
        self._notify()

    def apply_secret(self, secret: Secret) -> Secret:
        self._secrets[(secret.namespace, secret.name)] = secret
        self._notify()
        return secret

    def delete_secret(self, namespace: str, name: str) -> None:
        if self._secrets.pop((namespace, name), None) is None:
            raise NotFoundError(f'secret "{namespace}/{name}" not found')
        self._notify()

    def get_provider(self, namespace: str, name: str) -> UpstreamProviderConfig:
        try:
            return self._providers[(namespace, name)]
        except KeyError as e:
            raise NotFoundError(f'upstream provider "{namespace}/{name}" not found') from e

    async def list_declared_providers(self) -> list[UpstreamProviderConfig]:
        return list(self._providers.values())

    async def get_secret(self, namespace: str, name: str) -> Secret:
        try:
            return self._secrets[(namespace, name)]
        except KeyError as e:
            raise NotFoundError(f'secret "{namespace}/{name}" not found') from e

    async def update_provider_status(
        self, provider: UpstreamProviderConfig, status: UpstreamProviderStatus
    ) -> UpstreamProviderConfig:
        key = (provider.namespace, provider.name)
        current = self._providers.get(key)
        if current is None:
            raise NotFoundError(f'upstream provider "{provider.namespace}/{provider.name}" not found')

        # Status subresource semantics: the spec stored now wins over the caller's snapshot.
        updated = current.model_copy(update={"status": status})
        self._providers[key] = updated
        return updated

    async def wait_for_change(self) -> None:
        """
        Returns once a change has happened since the previous call.

        Intended for the single reconciliation worker; concurrent waiters share
        one pending flag.
        """
        if not self._pending:
            if self._changed is None:
                self._changed = anyio.Event()
            await self._changed.wait()
        self._pending = False
