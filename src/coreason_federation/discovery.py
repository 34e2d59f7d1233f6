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
DiscoveryClient component for fetching, caching and validating upstream OIDC metadata.
"""

import re
import time
from typing import Any, NamedTuple

import anyio
import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_federation.exceptions import (
    CoreasonFederationError,
    DiscoveryInvalidResponseError,
    DiscoveryUnreachableError,
    OversizedResponseError,
    SecurityError,
)
from coreason_federation.models_internal import OIDCDiscoveryDocument
from coreason_federation.transport import DEFAULT_MAX_RESPONSE_BYTES, safe_json_fetch
from coreason_federation.utils.logger import logger

tracer = trace.get_tracer(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"
REQUIRED_AUTHORIZATION_SCHEME = "https"

# A '%' not followed by two hex digits.
_INVALID_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def parse_url(raw: str) -> httpx.URL:
    """
    Parses a URL strictly.

    httpx silently re-encodes malformed percent escapes, so they are rejected here
    before parsing.

    Raises:
        ValueError: If the URL contains an invalid escape or cannot be parsed.
    """
    match = _INVALID_ESCAPE.search(raw)
    if match:
        escape = raw[match.start() : match.start() + 3]
        raise ValueError(f'parse "{raw}": invalid URL escape "{escape}"')
    try:
        return httpx.URL(raw)
    except httpx.InvalidURL as e:
        raise ValueError(f'parse "{raw}": {e}') from e


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class _CacheEntry(NamedTuple):
    document: OIDCDiscoveryDocument
    fetched_at: float


class DiscoveryClient:
    """
    Discovers upstream OIDC issuers and validates the metadata they advertise.

    Successful discovery documents are cached per issuer. Each issuer has its own
    lock, so refreshing one issuer never blocks another.

    Attributes:
        client (httpx.AsyncClient): The HTTP client used for discovery requests.
        cache_ttl (float): Seconds a discovery document is reused before refetching.
        retry_attempts (int): Attempts per fetch on transient HTTP errors.
        max_response_bytes (int): Upper bound for a discovery document body.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache_ttl: float = 900.0,
        retry_attempts: int = 3,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
    ) -> None:
        self.client = client
        self.cache_ttl = cache_ttl
        self.retry_attempts = retry_attempts
        self.max_response_bytes = max_response_bytes
        self._cache: dict[str, _CacheEntry] = {}
        self._locks: dict[str, anyio.Lock] = {}

    async def discover(self, issuer: str) -> httpx.URL:
        """
        Returns the issuer's validated authorization endpoint.

        Args:
            issuer: The issuer URL exactly as declared.

        Returns:
            httpx.URL: The parsed authorization endpoint. Its scheme is always https.

        Raises:
            DiscoveryUnreachableError: If the issuer cannot be discovered.
            DiscoveryInvalidResponseError: If the advertised authorization endpoint is unusable.
        """
        document = await self._get_document(issuer)
        return self._validate_authorization_endpoint(document)

    def invalidate(self, issuer: str | None = None) -> None:
        """Drops the cached document for `issuer`, or every cached document, with any idle per-issuer lock."""
        if issuer is None:
            self._cache = {}
            self._locks = {key: lock for key, lock in self._locks.items() if lock.locked()}
        else:
            self._cache.pop(issuer, None)
            lock = self._locks.get(issuer)
            # A held lock stays so waiters and the holder keep sharing it.
            if lock is not None and not lock.locked():
                del self._locks[issuer]

    def _cached(self, issuer: str) -> OIDCDiscoveryDocument | None:
        entry = self._cache.get(issuer)
        if entry is not None and (time.monotonic() - entry.fetched_at) < self.cache_ttl:
            return entry.document
        return None

    async def _get_document(self, issuer: str) -> OIDCDiscoveryDocument:
        # Double-checked locking pattern optimization (Check 1: No lock)
        document = self._cached(issuer)
        if document is not None:
            return document

        lock = self._locks.get(issuer)
        if lock is None:
            lock = self._locks[issuer] = anyio.Lock()

        async with lock:
            document = self._cached(issuer)
            if document is not None:
                return document

            document = await self._fetch_document(issuer)
            self._cache[issuer] = _CacheEntry(document, time.monotonic())
            return document

    def _unreachable(self, issuer: str, detail: str) -> DiscoveryUnreachableError:
        return DiscoveryUnreachableError(f'failed to perform OIDC discovery against "{issuer}": {detail}')

    async def _fetch_payload(self, issuer: str, discovery_url: str) -> Any:
        """
        Fetches the raw discovery payload.

        Retries on `httpx.HTTPError` up to `retry_attempts` times with exponential
        backoff (initial=0.1s, max=1.0s).
        """
        wait_initial = 0.1
        wait_max = 1.0

        for attempt in range(self.retry_attempts):
            try:
                return await safe_json_fetch(self.client, discovery_url, max_bytes=self.max_response_bytes)
            except (SecurityError, OversizedResponseError) as e:
                # Not transient: retrying cannot help.
                raise self._unreachable(issuer, _describe(e)) from e
            except httpx.HTTPError as e:
                if attempt == self.retry_attempts - 1:
                    raise self._unreachable(issuer, f'Get "{discovery_url}": {_describe(e)}') from e

                sleep_time = min(wait_initial * (2**attempt), wait_max)
                logger.debug(f"Discovery against {issuer} failed ({_describe(e)}), retrying in {sleep_time}s")
                await anyio.sleep(sleep_time)
            except CoreasonFederationError as e:
                raise self._unreachable(issuer, _describe(e)) from e

        raise self._unreachable(issuer, "no discovery attempts were made")

    async def _fetch_document(self, issuer: str) -> OIDCDiscoveryDocument:
        discovery_url = issuer.rstrip("/") + WELL_KNOWN_PATH

        try:
            url = httpx.URL(discovery_url)
        except httpx.InvalidURL as e:
            raise self._unreachable(issuer, f'parse "{discovery_url}": {e}') from e
        if url.scheme not in ("http", "https"):
            raise self._unreachable(issuer, f'Get "{discovery_url}": unsupported protocol scheme "{url.scheme}"')

        with tracer.start_as_current_span("oidc_discovery") as span:
            span.set_attribute("oidc.issuer", issuer)
            try:
                data = await self._fetch_payload(issuer, discovery_url)

                if not isinstance(data, dict):
                    raise self._unreachable(issuer, "discovery response is not a JSON object")

                try:
                    document = OIDCDiscoveryDocument.model_validate(data)
                except ValidationError as e:
                    fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in e.errors())
                    raise self._unreachable(issuer, f"invalid discovery document (fields: {fields})") from e

                if document.issuer != issuer:
                    raise self._unreachable(
                        issuer,
                        "issuer did not match the issuer returned by provider, "
                        f'expected "{issuer}" got "{document.issuer}"',
                    )
            except DiscoveryUnreachableError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_status(Status(StatusCode.OK))
            logger.debug(f"Discovered issuer configuration for {issuer}")
            return document

    def _validate_authorization_endpoint(self, document: OIDCDiscoveryDocument) -> httpx.URL:
        try:
            url = parse_url(document.authorization_endpoint)
        except ValueError as e:
            raise DiscoveryInvalidResponseError(f"failed to parse authorization endpoint URL: {e}") from e

        if url.scheme != REQUIRED_AUTHORIZATION_SCHEME:
            raise DiscoveryInvalidResponseError(
                f'authorization endpoint URL scheme must be "{REQUIRED_AUTHORIZATION_SCHEME}", not "{url.scheme}"'
            )
        return url
