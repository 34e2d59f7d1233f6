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
Process-wide registry of validated upstream providers.
"""

import threading
from collections.abc import Iterable

from coreason_federation.models import ValidatedUpstreamProvider


class DynamicProviderCache:
    """
    Holds the latest complete snapshot of validated upstream providers.

    The reconciliation controller is the only writer and replaces the whole
    snapshot once per sync pass. Authentication request handlers read it
    concurrently, from any thread or task, and always observe either the
    previous snapshot or the new one in full.
    """

    def __init__(self) -> None:
        self._providers: tuple[ValidatedUpstreamProvider, ...] = ()
        self._lock = threading.Lock()

    def current_list(self) -> list[ValidatedUpstreamProvider]:
        """
        Returns the current snapshot.

        Returns:
            list[ValidatedUpstreamProvider]: A new list; mutating it does not affect the cache.
        """
        with self._lock:
            snapshot = self._providers
        return list(snapshot)

    def get(self, name: str) -> ValidatedUpstreamProvider | None:
        """Returns the provider named `name` from the current snapshot, if present."""
        with self._lock:
            snapshot = self._providers
        for provider in snapshot:
            if provider.name == name:
                return provider
        return None

    def replace(self, providers: Iterable[ValidatedUpstreamProvider]) -> None:
        """
        Replaces the whole snapshot. Only the reconciliation controller calls this.

        Args:
            providers: The complete new set of providers. An empty iterable clears the cache.
        """
        # Build first so the lock only guards a reference swap.
        snapshot = tuple(providers)
        with self._lock:
            self._providers = snapshot

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)
