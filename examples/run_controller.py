# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_federation

import os
import sys

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

import anyio

from coreason_federation.config import FederationConfig
from coreason_federation.models import (
    OIDCAuthorizationConfig,
    OIDCClient,
    Secret,
    UpstreamProviderConfig,
    UpstreamProviderSpec,
)
from coreason_federation.store import InMemoryConfigurationStore
from coreason_federation.supervisor import FederationSupervisor


async def main() -> None:
    """
    Runs the upstream provider controller against an in-memory store.

    Declares one provider pointing at a public issuer, runs the loop for a few
    seconds, and prints the resulting status and cache contents.
    """
    print(">>> Starting upstream provider controller example")

    issuer = os.getenv("EXAMPLE_ISSUER", "https://accounts.google.com")

    store = InMemoryConfigurationStore()
    store.apply_secret(
        Secret(
            namespace="idp",
            name="example-client",
            type="secrets.coreason.ai/oidc-client",
            data={"clientID": "example-client-id", "clientSecret": "example-client-secret"},
        )
    )
    store.apply_provider(
        UpstreamProviderConfig(
            namespace="idp",
            name="example",
            spec=UpstreamProviderSpec(
                issuer=issuer,
                client=OIDCClient(secret_name="example-client"),
                authorization_config=OIDCAuthorizationConfig(additional_scopes=["email", "profile"]),
            ),
        )
    )

    config = FederationConfig(http_timeout=5.0, resync_interval=30.0)

    async with FederationSupervisor(config, store) as supervisor:
        with anyio.move_on_after(5):
            await supervisor.run()

        provider = store.get_provider("idp", "example")
        print(f">>> Phase: {provider.status.phase}")
        for condition in provider.status.conditions:
            print(f"    - {condition.type}={condition.status} ({condition.reason}): {condition.message}")

        for validated in supervisor.cache.current_list():
            print(f">>> Cached: {validated.name} -> {validated.authorization_url} scopes={validated.scopes}")


if __name__ == "__main__":
    anyio.run(main)
