# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_federation

import pytest

from coreason_federation.exceptions import (
    CoreasonFederationError,
    CredentialResolutionError,
    DiscoveryError,
    DiscoveryInvalidResponseError,
    DiscoveryUnreachableError,
    NotFoundError,
    OversizedResponseError,
    SecretMissingKeysError,
    SecretNotFoundError,
    SecretWrongTypeError,
    SecurityError,
    StoreError,
)


def test_exception_hierarchy() -> None:
    """Test that all custom exceptions inherit from CoreasonFederationError."""
    for exc_type in (
        CredentialResolutionError,
        DiscoveryError,
        OversizedResponseError,
        SecurityError,
        StoreError,
    ):
        assert issubclass(exc_type, CoreasonFederationError)

    assert issubclass(NotFoundError, StoreError)
    assert issubclass(SecretNotFoundError, CredentialResolutionError)
    assert issubclass(DiscoveryUnreachableError, DiscoveryError)
    # Credential failures are condition outcomes, not store failures.
    assert not issubclass(SecretNotFoundError, StoreError)


@pytest.mark.parametrize(
    ("exc_type", "reason"),
    [
        (SecretNotFoundError, "SecretNotFound"),
        (SecretWrongTypeError, "SecretWrongType"),
        (SecretMissingKeysError, "SecretMissingKeys"),
        (DiscoveryUnreachableError, "Unreachable"),
        (DiscoveryInvalidResponseError, "InvalidResponse"),
    ],
)
def test_condition_reasons(exc_type: type[CredentialResolutionError | DiscoveryError], reason: str) -> None:
    err = exc_type("boom")
    assert err.reason == reason
    assert str(err) == "boom"
