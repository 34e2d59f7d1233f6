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
Secure HTTP Transport module to mitigate SSRF via DNS Rebinding.

Upstream issuer URLs come from declarative configuration and discovery documents
come from third parties, so every outbound request is pinned to a vetted public IP.
"""

import ipaddress
import json
import socket
from typing import Any

import anyio
import httpx

from coreason_federation.exceptions import CoreasonFederationError, OversizedResponseError, SecurityError
from coreason_federation.utils.logger import logger

DEFAULT_MAX_RESPONSE_BYTES = 1_000_000


class SafeAsyncTransport(httpx.AsyncHTTPTransport):
    """
    A secure HTTP transport that enforces DNS pinning to prevent SSRF/DNS Rebinding attacks.

    It resolves the hostname, rejects private, loopback, link-local, reserved and
    multicast addresses, and then connects to the first acceptable IP while
    preserving the original Host header and SNI for certificate verification.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            ip_obj = ipaddress.ip_address(hostname)
        except ValueError:
            ip_obj = None

        if ip_obj is not None:
            self._validate_ip(ip_obj, hostname)
            return await super().handle_async_request(request)

        try:
            addr_infos = await anyio.to_thread.run_sync(
                socket.getaddrinfo, hostname, None, 0, socket.SOCK_STREAM
            )
        except socket.gaierror as e:
            logger.error(f"DNS resolution failed for {hostname}: {e}")
            raise SecurityError(f"DNS resolution failed for {hostname}") from e

        target_ip: str | None = None
        for _, _, _, _, sockaddr in addr_infos:
            try:
                candidate = ipaddress.ip_address(sockaddr[0])
                self._validate_ip(candidate, hostname)
            except (SecurityError, ValueError):
                # Only ever connect to a vetted address; skip the rest.
                continue
            target_ip = str(candidate)
            break

        if not target_ip:
            logger.error(f"SSRF Protection: No public IP found for {hostname}")
            raise SecurityError(f"SSRF Protection: No public IP found for {hostname}")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: Any, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"SSRF Protection: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"SSRF Protection: Blocked access to {hostname} ({ip_obj})")


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
    **kwargs: Any,
) -> Any:
    """
    Fetches a JSON document while bounding the number of bytes read.

    Args:
        client: The async HTTP client to use.
        url: The URL to request.
        method: The HTTP method. Defaults to GET.
        max_bytes: Maximum accepted body size in bytes.
        **kwargs: Passed through to `client.stream`.

    Returns:
        Any: The decoded JSON value.

    Raises:
        OversizedResponseError: If the body exceeds `max_bytes`.
        httpx.HTTPStatusError: If the response status is not 2xx.
        httpx.HTTPError: For transport failures.
        CoreasonFederationError: If the body is not valid JSON.
    """
    async with client.stream(method, url, **kwargs) as response:
        content_length = response.headers.get("Content-Length")
        if content_length and content_length.isdigit() and int(content_length) > max_bytes:
            raise OversizedResponseError(
                f"Response Content-Length {content_length} exceeds limit of {max_bytes} bytes"
            )

        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"{response.status_code} {response.reason_phrase}",
                request=response.request,
                response=response,
            )

        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) > max_bytes:
                raise OversizedResponseError(f"Response body exceeds limit of {max_bytes} bytes")

    try:
        return json.loads(bytes(body))
    except (ValueError, RecursionError) as e:
        # Deeply nested documents exhaust the decoder's recursion limit.
        raise CoreasonFederationError(f"invalid JSON in response from {url}: {e}") from e
