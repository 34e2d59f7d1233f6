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
Data models for the coreason-federation package.
"""

from datetime import datetime
from enum import StrEnum

import httpx
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_serializer
from pydantic.alias_generators import to_camel


class ConditionType(StrEnum):
    """Health checks recorded on every upstream provider, in declaration order."""

    CLIENT_CREDENTIALS_VALID = "ClientCredentialsValid"
    OIDC_DISCOVERY_SUCCEEDED = "OIDCDiscoverySucceeded"


class ConditionStatus(StrEnum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Phase(StrEnum):
    PENDING = "Pending"
    READY = "Ready"
    ERROR = "Error"


class Condition(BaseModel):
    """
    A single named health signal of an upstream provider.

    Rendered with camelCase keys (`lastTransitionTime`, `observedGeneration`)
    when dumped with `by_alias=True`.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "type": "ClientCredentialsValid",
                "status": "False",
                "reason": "SecretNotFound",
                "message": 'secret "idp/upstream-client" not found',
                "lastTransitionTime": "2025-01-01T00:00:00Z",
                "observedGeneration": 3,
            }
        },
    )

    type: ConditionType
    status: ConditionStatus
    reason: str = Field(..., description="Short machine-readable token, e.g. 'SecretNotFound'.")
    message: str = Field(default="", description="Human-readable detail. May embed nested error text.")
    last_transition_time: datetime | None = Field(
        default=None, description="When `status` last changed value."
    )
    observed_generation: int = Field(
        default=0, description="Generation of the provider object as of the sync that wrote this condition."
    )


class UpstreamProviderStatus(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    phase: Phase = Phase.PENDING
    conditions: list[Condition] = Field(default_factory=list)

    def get_condition(self, condition_type: ConditionType) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class OIDCClient(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    secret_name: str = Field(..., description="Name of a Secret in the provider's namespace holding client credentials.")


class OIDCAuthorizationConfig(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    additional_scopes: list[str] = Field(
        default_factory=list, description="Scopes requested in addition to 'openid'."
    )


class OIDCClaims(BaseModel):
    """Claim-to-identity mapping. Carried through for consumers; not interpreted here."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    username: str | None = None
    groups: str | None = None


class TLSSpec(BaseModel):
    """TLS trust bundle for the issuer. Carried through for consumers; not interpreted here."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    certificate_authority_data: str | None = None


class UpstreamProviderSpec(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    issuer: str
    client: OIDCClient
    authorization_config: OIDCAuthorizationConfig = Field(default_factory=OIDCAuthorizationConfig)
    claims: OIDCClaims = Field(default_factory=OIDCClaims)
    tls: TLSSpec | None = None


class UpstreamProviderConfig(BaseModel):
    """
    A declared upstream OIDC identity provider.

    Owned by the configuration store. The reconciler treats each instance as an
    immutable snapshot for the duration of a sync pass.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    namespace: str
    name: str
    generation: int = 0
    spec: UpstreamProviderSpec
    status: UpstreamProviderStatus = Field(default_factory=UpstreamProviderStatus)


class Secret(BaseModel):
    """A credential object as returned by the configuration store."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    type: str
    data: dict[str, str] = Field(default_factory=dict)

    def __repr__(self) -> str:
        # Secret values MUST NOT appear in __repr__
        return (
            f"Secret(namespace={self.namespace!r}, name={self.name!r}, "
            f"type={self.type!r}, keys={sorted(self.data)!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class ClientCredentials(BaseModel):
    """
    OAuth client identity loaded from an upstream provider's Secret.

    Attributes:
        client_id (str): The OAuth client ID registered with the upstream issuer.
        client_secret (SecretStr): The OAuth client secret. Protected from logging.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    client_id: str
    client_secret: SecretStr


class ValidatedUpstreamProvider(BaseModel):
    """
    An upstream provider that passed every check and is ready for use by the
    authentication request path.

    This model is frozen (immutable); the cache replaces entries, never edits them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    name: str
    client_id: str
    authorization_url: httpx.URL
    scopes: tuple[str, ...]

    @field_serializer("authorization_url")
    def _serialize_url(self, value: httpx.URL) -> str:
        return str(value)
