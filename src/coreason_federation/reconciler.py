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
ProviderReconciler component for validating a single upstream provider.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, ConfigDict

from coreason_federation.conditions import first_failing_condition, merge_status
from coreason_federation.discovery import DiscoveryClient
from coreason_federation.exceptions import CredentialResolutionError, DiscoveryError, StoreError
from coreason_federation.models import (
    ClientCredentials,
    Condition,
    ConditionStatus,
    ConditionType,
    Phase,
    UpstreamProviderConfig,
    UpstreamProviderStatus,
    ValidatedUpstreamProvider,
)
from coreason_federation.secrets import SecretResolver
from coreason_federation.store import ConfigurationStore
from coreason_federation.utils.logger import logger

tracer = trace.get_tracer(__name__)

COMPONENT = "upstream-observer"
OPENID_SCOPE = "openid"
SUCCESS_REASON = "Success"
CREDENTIALS_LOADED_MESSAGE = "loaded client credentials"
DISCOVERY_SUCCEEDED_MESSAGE = "discovered issuer configuration"
FAILING_CONDITION_ERROR = "upstream provider has a failing condition"


def utcnow() -> datetime:
    return datetime.now(UTC)


def effective_scopes(additional_scopes: Iterable[str]) -> tuple[str, ...]:
    """
    Returns 'openid' followed by the additional scopes, without duplicates.

    Args:
        additional_scopes: Scopes declared on the upstream provider.

    Returns:
        tuple[str, ...]: The scopes to request, in first-seen order.
    """
    scopes = [OPENID_SCOPE]
    for scope in additional_scopes:
        if scope not in scopes:
            scopes.append(scope)
    return tuple(scopes)


class ReconcileResult(BaseModel):
    """
    Outcome of reconciling one upstream provider.

    Attributes:
        provider (UpstreamProviderConfig): The snapshot that was reconciled.
        status (UpstreamProviderStatus): The status computed (and written) for it.
        validated (ValidatedUpstreamProvider | None): The cache entry, present only when every check passed.
        write_error (StoreError | None): The error raised while persisting the status, if any.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    provider: UpstreamProviderConfig
    status: UpstreamProviderStatus
    validated: ValidatedUpstreamProvider | None = None
    write_error: StoreError | None = None

    @property
    def failed(self) -> bool:
        return self.status.phase != Phase.READY


class ProviderReconciler:
    """
    Runs every health check for an upstream provider and records the outcome.

    Both checks always run; neither is skipped because the other failed.

    Attributes:
        store (ConfigurationStore): Where statuses are written.
        secret_resolver (SecretResolver): Loads client credentials.
        discovery_client (DiscoveryClient): Discovers and validates the issuer.
        clock (Callable[[], datetime]): Source of condition transition times.
    """

    def __init__(
        self,
        store: ConfigurationStore,
        secret_resolver: SecretResolver,
        discovery_client: DiscoveryClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.secret_resolver = secret_resolver
        self.discovery_client = discovery_client
        self.clock = clock

    async def reconcile(self, provider: UpstreamProviderConfig) -> ReconcileResult:
        """
        Validates `provider`, writes its status, and builds its cache entry.

        Emits an OpenTelemetry span `reconcile_upstream`.

        Args:
            provider: The declared upstream provider.

        Returns:
            ReconcileResult: The computed status and, when every check passed, the cache entry.

        Raises:
            StoreError: If the credential secret cannot be read for a reason other than absence.
        """
        log = logger.bind(component=COMPONENT, name=provider.name, namespace=provider.namespace)

        with tracer.start_as_current_span("reconcile_upstream") as span:
            span.set_attribute("upstream.name", provider.name)
            span.set_attribute("upstream.namespace", provider.namespace)

            now = self.clock()
            credentials, credentials_condition = await self._validate_secret(provider, now)
            authorization_url, discovery_condition = await self._validate_issuer(provider, now)

            status, changes = merge_status(provider.status, [credentials_condition, discovery_condition])
            for condition in status.conditions:
                self._log_condition(log, condition, changes[condition.type])

            write_error = await self._update_status(log, provider, status)

            failing = first_failing_condition(status)
            if failing is not None:
                log.bind(
                    type=str(failing.type),
                    status=str(failing.status),
                    reason=failing.reason,
                    message=failing.message,
                    error=FAILING_CONDITION_ERROR,
                ).warning("found failing condition")
                span.set_status(Status(StatusCode.ERROR, FAILING_CONDITION_ERROR))
                return ReconcileResult(provider=provider, status=status, write_error=write_error)

            if credentials is None or authorization_url is None:  # pragma: no cover
                raise RuntimeError("phase is Ready but a check produced no result")

            validated = ValidatedUpstreamProvider(
                name=provider.name,
                client_id=credentials.client_id,
                authorization_url=authorization_url,
                scopes=effective_scopes(provider.spec.authorization_config.additional_scopes),
            )
            span.set_status(Status(StatusCode.OK))
            return ReconcileResult(provider=provider, status=status, validated=validated, write_error=write_error)

    def _condition(
        self,
        provider: UpstreamProviderConfig,
        condition_type: ConditionType,
        status: ConditionStatus,
        reason: str,
        message: str,
        now: datetime,
    ) -> Condition:
        return Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=now,
            observed_generation=provider.generation,
        )

    async def _validate_secret(
        self, provider: UpstreamProviderConfig, now: datetime
    ) -> tuple[ClientCredentials | None, Condition]:
        condition_type = ConditionType.CLIENT_CREDENTIALS_VALID
        try:
            credentials = await self.secret_resolver.resolve(provider.namespace, provider.spec.client.secret_name)
        except CredentialResolutionError as e:
            return None, self._condition(provider, condition_type, ConditionStatus.FALSE, e.reason, str(e), now)

        condition = self._condition(
            provider, condition_type, ConditionStatus.TRUE, SUCCESS_REASON, CREDENTIALS_LOADED_MESSAGE, now
        )
        return credentials, condition

    async def _validate_issuer(
        self, provider: UpstreamProviderConfig, now: datetime
    ) -> tuple[httpx.URL | None, Condition]:
        condition_type = ConditionType.OIDC_DISCOVERY_SUCCEEDED
        try:
            authorization_url = await self.discovery_client.discover(provider.spec.issuer)
        except DiscoveryError as e:
            return None, self._condition(provider, condition_type, ConditionStatus.FALSE, e.reason, str(e), now)

        condition = self._condition(
            provider, condition_type, ConditionStatus.TRUE, SUCCESS_REASON, DISCOVERY_SUCCEEDED_MESSAGE, now
        )
        return authorization_url, condition

    def _log_condition(self, log: Any, condition: Condition, changed: bool) -> None:
        # Every written condition is logged, including ones identical to the stored copy.
        log.bind(
            type=str(condition.type),
            status=str(condition.status),
            reason=condition.reason,
            message=condition.message,
            changed=changed,
        ).info("updated condition")

    async def _update_status(
        self, log: Any, provider: UpstreamProviderConfig, status: UpstreamProviderStatus
    ) -> StoreError | None:
        try:
            await self.store.update_provider_status(provider, status)
        except StoreError as e:
            log.bind(error=str(e)).error("failed to update status")
            return e
        return None
