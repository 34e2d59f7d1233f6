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
Upstream identity provider federation: reconciles declared OIDC issuers into a live provider cache.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .cache import DynamicProviderCache
from .conditions import merge_condition, merge_status
from .config import FederationConfig
from .controller import SyncOutcome, SyncResult, UpstreamWatcherController
from .discovery import DiscoveryClient
from .exceptions import CoreasonFederationError
from .models import (
    Condition,
    ConditionStatus,
    ConditionType,
    Phase,
    UpstreamProviderConfig,
    UpstreamProviderStatus,
    ValidatedUpstreamProvider,
)
from .reconciler import ProviderReconciler
from .runner import ControllerRunner
from .secrets import SecretResolver
from .store import ConfigurationStore, InMemoryConfigurationStore
from .supervisor import FederationSupervisor

__all__ = [
    "Condition",
    "ConditionStatus",
    "ConditionType",
    "ConfigurationStore",
    "ControllerRunner",
    "CoreasonFederationError",
    "DiscoveryClient",
    "DynamicProviderCache",
    "FederationConfig",
    "FederationSupervisor",
    "InMemoryConfigurationStore",
    "Phase",
    "ProviderReconciler",
    "SecretResolver",
    "SyncOutcome",
    "SyncResult",
    "UpstreamProviderConfig",
    "UpstreamProviderStatus",
    "UpstreamWatcherController",
    "ValidatedUpstreamProvider",
    "merge_condition",
    "merge_status",
]
