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
Configuration for the coreason-federation package.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

OIDC_CLIENT_SECRET_TYPE = "secrets.coreason.ai/oidc-client"


class FederationConfig(BaseSettings):
    """
    Configuration settings for the upstream provider controller.

    Attributes:
        http_timeout (float): Timeout in seconds for every request to an upstream issuer.
        sync_timeout (float): Deadline in seconds for a whole reconciliation pass.
        resync_interval (float): Seconds between passes when nothing has changed.
        requeue_backoff_initial (float): First delay in seconds before retrying a failed pass.
        requeue_backoff_max (float): Upper bound in seconds for the retry delay.
        discovery_cache_ttl (float): Seconds a successful discovery result is reused.
        discovery_retry_attempts (int): Attempts per discovery fetch on transient errors.
        max_response_bytes (int): Upper bound for a discovery document body.
        client_secret_type (str): Required `type` of client credential secrets.
        unsafe_local_dev (bool): Disables SSRF protection so issuers on private networks are reachable.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_FEDERATION_",
        case_sensitive=False,
    )

    http_timeout: float = Field(..., gt=0, description="Timeout in seconds for all issuer network operations.")
    sync_timeout: float = Field(default=60.0, gt=0)
    resync_interval: float = Field(default=180.0, gt=0)
    requeue_backoff_initial: float = Field(default=0.5, gt=0)
    requeue_backoff_max: float = Field(default=60.0, gt=0)
    discovery_cache_ttl: float = Field(default=900.0, ge=0)
    discovery_retry_attempts: int = Field(default=3, ge=1)
    max_response_bytes: int = Field(default=1_000_000, gt=0)
    client_secret_type: str = OIDC_CLIENT_SECRET_TYPE
    unsafe_local_dev: bool = False

    @model_validator(mode="after")
    def validate_backoff_bounds(self) -> "FederationConfig":
        """
        Ensures the requeue backoff ceiling is not below its starting delay.
        """
        if self.requeue_backoff_max < self.requeue_backoff_initial:
            raise ValueError("requeue_backoff_max must be greater than or equal to requeue_backoff_initial.")
        return self
