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
UpstreamWatcherController: one reconciliation pass over every declared upstream provider.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from coreason_federation.cache import DynamicProviderCache
from coreason_federation.exceptions import StoreError
from coreason_federation.models import ValidatedUpstreamProvider
from coreason_federation.reconciler import COMPONENT, ProviderReconciler
from coreason_federation.store import ConfigurationStore
from coreason_federation.utils.logger import logger


class SyncOutcome(StrEnum):
    OK = "Ok"
    RETRY_REQUESTED = "RetryRequested"
    ERROR = "Error"


class SyncResult(BaseModel):
    """
    Tagged result of a sync pass, consumed by the scheduling loop.

    `RETRY_REQUESTED` is the synthetic requeue: a scheduling instruction with no
    cause attached. Per-provider detail lives in status conditions and logs.
    `ERROR` carries the root cause; it is retried as well.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    outcome: SyncOutcome
    cause: BaseException | None = None

    @classmethod
    def ok(cls) -> "SyncResult":
        return _OK

    @classmethod
    def retry_requested(cls) -> "SyncResult":
        return _RETRY_REQUESTED

    @classmethod
    def error(cls, cause: BaseException) -> "SyncResult":
        return cls(outcome=SyncOutcome.ERROR, cause=cause)

    @property
    def should_requeue(self) -> bool:
        return self.outcome != SyncOutcome.OK


_OK = SyncResult(outcome=SyncOutcome.OK)
_RETRY_REQUESTED = SyncResult(outcome=SyncOutcome.RETRY_REQUESTED)


class UpstreamWatcherController:
    """
    Reconciles every declared upstream provider and publishes the validated ones.

    Attributes:
        store (ConfigurationStore): Source of declared providers.
        reconciler (ProviderReconciler): Validates a single provider.
        cache (DynamicProviderCache): Replaced wholesale at the end of every pass.
    """

    def __init__(
        self,
        store: ConfigurationStore,
        reconciler: ProviderReconciler,
        cache: DynamicProviderCache,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.cache = cache

    async def sync(self) -> SyncResult:
        """
        Runs one reconciliation pass.

        The cache is replaced exactly once, after every provider has been
        processed, even when no providers are declared.

        Returns:
            SyncResult: `ERROR` if any store call failed, otherwise `RETRY_REQUESTED`
            if any provider failed validation, otherwise `OK`.
        """
        providers = await self.store.list_declared_providers()

        validated: list[ValidatedUpstreamProvider] = []
        first_error: StoreError | None = None
        failed = 0

        for provider in providers:
            try:
                result = await self.reconciler.reconcile(provider)
            except StoreError as e:
                logger.bind(component=COMPONENT, name=provider.name, namespace=provider.namespace).error(
                    f"failed to reconcile upstream provider: {e}"
                )
                failed += 1
                first_error = first_error or e
                continue

            if result.validated is not None:
                validated.append(result.validated)
            if result.failed:
                failed += 1
            if result.write_error is not None:
                first_error = first_error or result.write_error

        self.cache.replace(validated)
        logger.bind(component=COMPONENT).debug(
            f"Published {len(validated)} of {len(providers)} upstream providers ({failed} failing)"
        )

        if first_error is not None:
            return SyncResult.error(first_error)
        if failed:
            return SyncResult.retry_requested()
        return SyncResult.ok()
