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
Custom exceptions for the coreason-federation package.
"""


class CoreasonFederationError(Exception):
    """Base exception for all coreason-federation errors."""


class CredentialResolutionError(CoreasonFederationError):
    """
    Raised when the client credentials of an upstream provider cannot be loaded.

    The `reason` attribute is the machine-readable token written to the
    `ClientCredentialsValid` condition.
    """

    reason = "CredentialResolutionFailed"


class SecretNotFoundError(CredentialResolutionError):
    """Raised when the referenced client secret does not exist."""

    reason = "SecretNotFound"


class SecretWrongTypeError(CredentialResolutionError):
    """Raised when the referenced client secret has an unexpected type."""

    reason = "SecretWrongType"


class SecretMissingKeysError(CredentialResolutionError):
    """Raised when the referenced client secret lacks `clientID` or `clientSecret`."""

    reason = "SecretMissingKeys"


class DiscoveryError(CoreasonFederationError):
    """
    Raised when OIDC discovery against an upstream issuer fails.

    The `reason` attribute is the machine-readable token written to the
    `OIDCDiscoverySucceeded` condition.
    """

    reason = "DiscoveryFailed"


class DiscoveryUnreachableError(DiscoveryError):
    """Raised when the issuer cannot be reached or does not serve a discovery document."""

    reason = "Unreachable"


class DiscoveryInvalidResponseError(DiscoveryError):
    """Raised when the discovery document advertises unusable endpoints."""

    reason = "InvalidResponse"


class OversizedResponseError(CoreasonFederationError):
    """Raised when an HTTP response is too large."""


class SecurityError(CoreasonFederationError):
    """Raised when a security violation is detected."""


class StoreError(CoreasonFederationError):
    """Raised when the configuration store rejects a read or write."""


class NotFoundError(StoreError):
    """Raised when the requested object does not exist in the configuration store."""
