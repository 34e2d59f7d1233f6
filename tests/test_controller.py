# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_federation

from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from conftest import (
    AUTHORIZE_URL,
    ISSUER,
    TEST_CLIENT_ID,
    TEST_NAME,
    TEST_NAMESPACE,
    FakeIssuer,
    make_provider,
    make_secret,
)
from coreason_federation.cache import DynamicProviderCache
from coreason_federation.controller import SyncOutcome, SyncResult, UpstreamWatcherController
from coreason_federation.discovery import DiscoveryClient
from coreason_federation.exceptions import StoreError
from coreason_federation.models import (
    Condition,
    ConditionStatus,
    ConditionType,
    Phase,
    UpstreamProviderConfig,
    UpstreamProviderStatus,
    ValidatedUpstreamProvider,
)
from coreason_federation.reconciler import ProviderReconciler
from coreason_federation.secrets import SecretResolver
from coreason_federation.store import InMemoryConfigurationStore

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
EARLIER = NOW - timedelta(hours=1)

CCV = ConditionType.CLIENT_CREDENTIALS_VALID
ODS = ConditionType.OIDC_DISCOVERY_SUCCEEDED


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FailingStatusStore(InMemoryConfigurationStore):
    """Rejects status writes for the named providers."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing

    async def update_provider_status(
        self, provider: UpstreamProviderConfig, status: UpstreamProviderStatus
    ) -> UpstreamProviderConfig:
        if provider.name in self.failing:
            raise StoreError(f'conflict updating "{provider.name}"')
        return await super().update_provider_status(provider, status)


@pytest.fixture
def store() -> InMemoryConfigurationStore:
    return InMemoryConfigurationStore()


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def cache() -> DynamicProviderCache:
    cache = DynamicProviderCache()
    cache.replace(
        [
            ValidatedUpstreamProvider(
                name="initial-entry",
                client_id="initial",
                authorization_url=httpx.URL("https://initial.example.com/authorize"),
                scopes=("openid",),
            )
        ]
    )
    return cache


def build_controller(
    store: InMemoryConfigurationStore,
    http_client: httpx.AsyncClient,
    cache: DynamicProviderCache,
    clock: Clock,
) -> UpstreamWatcherController:
    discovery = DiscoveryClient(http_client, retry_attempts=1)
    reconciler = ProviderReconciler(store, SecretResolver(store), discovery, clock=clock)
    return UpstreamWatcherController(store, reconciler, cache)


@pytest.fixture
def controller(
    store: InMemoryConfigurationStore, http_client: httpx.AsyncClient, cache: DynamicProviderCache, clock: Clock
) -> UpstreamWatcherController:
    return build_controller(store, http_client, cache, clock)


def _condition(
    condition_type: ConditionType,
    status: ConditionStatus,
    reason: str,
    message: str,
    when: datetime = NOW,
    generation: int = 1,
) -> Condition:
    return Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=when,
        observed_generation=generation,
    )


def _condition_logs(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {key: r["extra"].get(key) for key in ("component", "name", "namespace", "type", "status", "reason", "message")}
        | {"msg": r["message"]}
        for r in records
        if r["message"] in ("updated condition", "found failing condition")
    ]


CREDENTIALS_OK = _condition(CCV, ConditionStatus.TRUE, "Success", "loaded client credentials")
DISCOVERY_OK = _condition(ODS, ConditionStatus.TRUE, "Success", "discovered issuer configuration")


@pytest.mark.asyncio
async def test_no_upstreams(controller: UpstreamWatcherController, cache: DynamicProviderCache) -> None:
    result = await controller.sync()

    assert result == SyncResult.ok()
    assert cache.current_list() == []


@pytest.mark.parametrize(
    ("secret", "reason", "message"),
    [
        (None, "SecretNotFound", 'secret "test-namespace/test-client-secret" not found'),
        (
            make_secret(secret_type="some-other-type"),
            "SecretWrongType",
            'referenced Secret "test-client-secret" has wrong type "some-other-type" '
            '(should be "secrets.coreason.ai/oidc-client")',
        ),
        (
            make_secret(data={}),
            "SecretMissingKeys",
            'referenced Secret "test-client-secret" is missing required keys ["clientID" "clientSecret"]',
        ),
    ],
    ids=["missing secret", "secret has wrong type", "secret is missing key"],
)
@pytest.mark.asyncio
async def test_credential_failures(
    controller: UpstreamWatcherController,
    store: InMemoryConfigurationStore,
    cache: DynamicProviderCache,
    log_records: list[dict[str, Any]],
    secret: Any,
    reason: str,
    message: str,
) -> None:
    store.apply_provider(make_provider())
    if secret is not None:
        store.apply_secret(secret)

    result = await controller.sync()

    assert result == SyncResult.retry_requested()
    assert result.cause is None
    assert cache.current_list() == []

    stored = store.get_provider(TEST_NAMESPACE, TEST_NAME)
    assert stored.status == UpstreamProviderStatus(
        phase=Phase.ERROR,
        conditions=[
            _condition(CCV, ConditionStatus.FALSE, reason, message),
            DISCOVERY_OK,
        ],
    )

    base = {"component": "upstream-observer", "name": TEST_NAME, "namespace": TEST_NAMESPACE}
    assert _condition_logs(log_records) == [
        base | {"type": "ClientCredentialsValid", "status": "False", "reason": reason, "message": message}
        | {"msg": "updated condition"},
        base
        | {
            "type": "OIDCDiscoverySucceeded",
            "status": "True",
            "reason": "Success",
            "message": "discovered issuer configuration",
        }
        | {"msg": "updated condition"},
        base | {"type": "ClientCredentialsValid", "status": "False", "reason": reason, "message": message}
        | {"msg": "found failing condition"},
    ]
    failing = [r for r in log_records if r["message"] == "found failing condition"]
    assert failing[0]["extra"]["error"] == "upstream provider has a failing condition"


@pytest.mark.parametrize(
    ("issuer", "reason", "message"),
    [
        (
            "invalid-url",
            "Unreachable",
            'failed to perform OIDC discovery against "invalid-url": '
            'Get "invalid-url/.well-known/openid-configuration": unsupported protocol scheme ""',
        ),
        (
            f"{ISSUER}/invalid",
            "InvalidResponse",
            'failed to parse authorization endpoint URL: parse "%": invalid URL escape "%"',
        ),
        (
            f"{ISSUER}/insecure",
            "InvalidResponse",
            'authorization endpoint URL scheme must be "https", not "http"',
        ),
    ],
    ids=["issuer is invalid URL", "issuer returns invalid authorize URL", "issuer returns insecure authorize URL"],
)
@pytest.mark.asyncio
async def test_discovery_failures(
    controller: UpstreamWatcherController,
    store: InMemoryConfigurationStore,
    cache: DynamicProviderCache,
    issuer: str,
    reason: str,
    message: str,
) -> None:
    store.apply_provider(make_provider(issuer=issuer))
    store.apply_secret(make_secret())

    result = await controller.sync()

    assert result.outcome == SyncOutcome.RETRY_REQUESTED
    assert cache.current_list() == []
    stored = store.get_provider(TEST_NAMESPACE, TEST_NAME)
    assert stored.status == UpstreamProviderStatus(
        phase=Phase.ERROR,
        conditions=[
            CREDENTIALS_OK,
            _condition(ODS, ConditionStatus.FALSE, reason, message),
        ],
    )


@pytest.mark.asyncio
async def test_upstream_becomes_valid(
    controller: UpstreamWatcherController,
    store: InMemoryConfigurationStore,
    cache: DynamicProviderCache,
) -> None:
    store.apply_provider(
        make_provider(
            additional_scopes=["scope1", "scope2", "scope3", "xyz", "openid"],
            status=UpstreamProviderStatus(
                phase=Phase.ERROR,
                conditions=[
                    _condition(CCV, ConditionStatus.FALSE, "SomeError1", "some previous error 1", when=EARLIER),
                    _condition(ODS, ConditionStatus.FALSE, "SomeError2", "some previous error 2", when=EARLIER),
                ],
            ),
        )
    )
    store.apply_secret(make_secret())

    result = await controller.sync()

    assert result == SyncResult.ok()
    assert cache.current_list() == [
        ValidatedUpstreamProvider(
            name=TEST_NAME,
            client_id=TEST_CLIENT_ID,
            authorization_url=httpx.URL(AUTHORIZE_URL),
            scopes=("openid", "scope1", "scope2", "scope3", "xyz"),
        )
    ]
    stored = store.get_provider(TEST_NAMESPACE, TEST_NAME)
    assert stored.status == UpstreamProviderStatus(phase=Phase.READY, conditions=[CREDENTIALS_OK, DISCOVERY_OK])
    # Transition time is the pass that flipped it, not the previous one.
    assert all(c.last_transition_time == NOW for c in stored.status.conditions)


@pytest.mark.asyncio
async def test_existing_valid_upstream(
    controller: UpstreamWatcherController,
    store: InMemoryConfigurationStore,
    cache: DynamicProviderCache,
    log_records: list[dict[str, Any]],
) -> None:
    store.apply_provider(
        make_provider(
            generation=1234,
            status=UpstreamProviderStatus(
                phase=Phase.READY,
                conditions=[
                    _condition(CCV, ConditionStatus.TRUE, "Success", "loaded client credentials", EARLIER, 0),
                    _condition(ODS, ConditionStatus.TRUE, "Success", "discovered issuer configuration", EARLIER, 0),
                ],
            ),
        )
    )
    store.apply_secret(make_secret())

    result = await controller.sync()

    assert result == SyncResult.ok()
    assert [p.scopes for p in cache.current_list()] == [("openid", "scope1", "scope2", "scope3")]
    stored = store.get_provider(TEST_NAMESPACE, TEST_NAME)
    assert stored.status == UpstreamProviderStatus(
        phase=Phase.READY,
        conditions=[
            _condition(CCV, ConditionStatus.TRUE, "Success", "loaded client credentials", EARLIER, 1234),
            _condition(ODS, ConditionStatus.TRUE, "Success", "discovered issuer configuration", EARLIER, 1234),
        ],
    )
    assert [log["msg"] for log in _condition_logs(log_records)] == ["updated condition", "updated condition"]
    updates = [r for r in log_records if r["message"] == "updated condition"]
    assert all(r["level"].name == "INFO" and r["extra"]["changed"] is False for r in updates)


@pytest.mark.asyncio
async def test_scopes_are_a_set_union(
    controller: UpstreamWatcherController, store: InMemoryConfigurationStore, cache: DynamicProviderCache
) -> None:
    store.apply_provider(make_provider(additional_scopes=["scope1", "scope1", "xyz"]))
    store.apply_secret(make_secret())

    await controller.sync()

    (provider,) = cache.current_list()
    assert set(provider.scopes) == {"openid", "scope1", "xyz"}
    assert len(provider.scopes) == 3


@pytest.mark.asyncio
async def test_second_sync_is_idempotent(
    controller: UpstreamWatcherController,
    store: InMemoryConfigurationStore,
    fake_issuer: FakeIssuer,
    clock: Clock,
) -> None:
    store.apply_provider(make_provider())
    # Secret missing: the pass fails and must fail the same way again.

    first = await controller.sync()
    first_status = store.get_provider(TEST_NAMESPACE, TEST_NAME).status

    clock.now = NOW + timedelta(minutes=5)
    second = await controller.sync()
    second_status = store.get_provider(TEST_NAMESPACE, TEST_NAME).status

    assert first == second == SyncResult.retry_requested()
    assert second_status == first_status
    assert all(c.last_transition_time == NOW for c in second_status.conditions)
    # Second pass hits the discovery cache.
    assert len(fake_issuer.requests) == 1


@pytest.mark.asyncio
async def test_transition_after_error_uses_new_pass_time(
    controller: UpstreamWatcherController,
    store: InMemoryConfigurationStore,
    cache: DynamicProviderCache,
    clock: Clock,
) -> None:
    store.apply_provider(make_provider())
    assert (await controller.sync()).outcome == SyncOutcome.RETRY_REQUESTED

    later = NOW + timedelta(minutes=10)
    clock.now = later
    store.apply_secret(make_secret())
    assert await controller.sync() == SyncResult.ok()

    status = store.get_provider(TEST_NAMESPACE, TEST_NAME).status
    assert status.phase == Phase.READY
    assert status.get_condition(CCV).last_transition_time == later
    # Discovery never changed status, so its transition time stays put.
    assert status.get_condition(ODS).last_transition_time == NOW
    assert [p.name for p in cache.current_list()] == [TEST_NAME]


@pytest.mark.asyncio
async def test_reason_change_does_not_move_transition_time(
    controller: UpstreamWatcherController, store: InMemoryConfigurationStore, clock: Clock
) -> None:
    store.apply_provider(make_provider())
    await controller.sync()

    clock.now = NOW + timedelta(minutes=1)
    store.apply_secret(make_secret(secret_type="some-other-type"))
    await controller.sync()

    condition = store.get_provider(TEST_NAMESPACE, TEST_NAME).status.get_condition(CCV)
    assert condition.reason == "SecretWrongType"
    assert condition.last_transition_time == NOW


@pytest.mark.asyncio
async def test_observed_generation_refreshed_every_sync(
    controller: UpstreamWatcherController, store: InMemoryConfigurationStore, clock: Clock
) -> None:
    store.apply_provider(make_provider())
    store.apply_secret(make_secret())
    await controller.sync()
    current = store.get_provider(TEST_NAMESPACE, TEST_NAME)
    assert {c.observed_generation for c in current.status.conditions} == {1}

    # A spec edit bumps the generation; conditions stay True with frozen timestamps.
    clock.now = NOW + timedelta(minutes=5)
    store.apply_provider(make_provider(additional_scopes=["email"], status=current.status))
    await controller.sync()

    status = store.get_provider(TEST_NAMESPACE, TEST_NAME).status
    assert {c.observed_generation for c in status.conditions} == {2}
    assert all(c.last_transition_time == NOW for c in status.conditions)


@pytest.mark.asyncio
async def test_removed_upstream_is_dropped_from_cache(
    controller: UpstreamWatcherController, store: InMemoryConfigurationStore, cache: DynamicProviderCache
) -> None:
    store.apply_provider(make_provider())
    store.apply_secret(make_secret())
    await controller.sync()
    assert len(cache) == 1

    store.delete_provider(TEST_NAMESPACE, TEST_NAME)
    assert await controller.sync() == SyncResult.ok()
    assert cache.current_list() == []


@pytest.mark.asyncio
async def test_partial_success_is_published(
    controller: UpstreamWatcherController, store: InMemoryConfigurationStore, cache: DynamicProviderCache
) -> None:
    store.apply_provider(make_provider(name="good"))
    store.apply_provider(make_provider(name="bad", issuer=f"{ISSUER}/insecure"))
    store.apply_secret(make_secret())

    result = await controller.sync()

    assert result == SyncResult.retry_requested()
    assert [p.name for p in cache.current_list()] == ["good"]
    assert store.get_provider(TEST_NAMESPACE, "good").status.phase == Phase.READY
    assert store.get_provider(TEST_NAMESPACE, "bad").status.phase == Phase.ERROR


@pytest.mark.asyncio
async def test_hostile_issuer_does_not_stop_the_pass(
    store: InMemoryConfigurationStore,
    cache: DynamicProviderCache,
    fake_issuer: FakeIssuer,
    controller: UpstreamWatcherController,
) -> None:
    fake_issuer.raw_bodies["/nested/.well-known/openid-configuration"] = "[" * 200_000 + "]" * 200_000
    store.apply_provider(make_provider(name="hostile", issuer=f"{ISSUER}/nested"))
    store.apply_provider(make_provider(name="good"))
    store.apply_secret(make_secret())

    result = await controller.sync()

    assert result == SyncResult.retry_requested()
    assert [p.name for p in cache.current_list()] == ["good"]
    hostile = store.get_provider(TEST_NAMESPACE, "hostile").status
    assert hostile.phase == Phase.ERROR
    discovery = hostile.get_condition(ODS)
    assert discovery is not None
    assert discovery.reason == "Unreachable"
    assert "invalid JSON" in discovery.message


@pytest.mark.asyncio
async def test_status_write_failure_surfaces_but_cache_is_replaced(
    http_client: httpx.AsyncClient, cache: DynamicProviderCache, clock: Clock, log_records: list[dict[str, Any]]
) -> None:
    store = FailingStatusStore(failing={"flaky"})
    store.apply_provider(make_provider(name="flaky"))
    store.apply_provider(make_provider(name="steady"))
    store.apply_secret(make_secret())
    controller = build_controller(store, http_client, cache, clock)

    result = await controller.sync()

    assert result.outcome == SyncOutcome.ERROR
    assert isinstance(result.cause, StoreError)
    assert 'conflict updating "flaky"' in str(result.cause)
    assert sorted(p.name for p in cache.current_list()) == ["flaky", "steady"]
    assert store.get_provider(TEST_NAMESPACE, "steady").status.phase == Phase.READY
    assert store.get_provider(TEST_NAMESPACE, "flaky").status.phase == Phase.PENDING
    assert any(r["message"] == "failed to update status" and r["extra"]["name"] == "flaky" for r in log_records)


@pytest.mark.asyncio
async def test_status_write_does_not_clobber_spec(
    controller: UpstreamWatcherController, store: InMemoryConfigurationStore
) -> None:
    snapshot = store.apply_provider(make_provider())
    store.apply_secret(make_secret())
    # The spec changes after the snapshot was taken but before the status write lands.
    store.apply_provider(make_provider(additional_scopes=["email"]))

    await controller.reconciler.reconcile(snapshot)

    stored = store.get_provider(TEST_NAMESPACE, TEST_NAME)
    assert stored.spec.authorization_config.additional_scopes == ["email"]
    assert stored.status.phase == Phase.READY
