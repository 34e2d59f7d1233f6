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
Condition merging for upstream provider status.

These functions are pure: they never touch the configuration store and never
read the clock. Callers stamp `last_transition_time` on computed conditions.
"""

from collections.abc import Iterable

from coreason_federation.models import (
    Condition,
    ConditionStatus,
    ConditionType,
    Phase,
    UpstreamProviderStatus,
)

CONDITION_ORDER: tuple[ConditionType, ...] = tuple(ConditionType)


def merge_condition(previous: Condition | None, computed: Condition) -> tuple[Condition, bool]:
    """
    Merges a freshly computed condition with the previously persisted one of the same type.

    The computed timestamp is kept only when `status` changed; otherwise the
    previous `last_transition_time` is carried forward. `observed_generation`
    always comes from the computed condition.

    Args:
        previous: The persisted condition of the same type, if any.
        computed: The condition produced by this sync.

    Returns:
        tuple[Condition, bool]: The merged condition, and whether status, reason or message changed.
    """
    if previous is None or previous.status != computed.status:
        return computed, True

    merged = computed.model_copy(update={"last_transition_time": previous.last_transition_time})
    changed = previous.reason != computed.reason or previous.message != computed.message
    return merged, changed


def compute_phase(conditions: Iterable[Condition]) -> Phase:
    """Returns Ready iff every condition is True."""
    for condition in conditions:
        if condition.status != ConditionStatus.TRUE:
            return Phase.ERROR
    return Phase.READY


def merge_status(
    previous: UpstreamProviderStatus, computed: Iterable[Condition]
) -> tuple[UpstreamProviderStatus, dict[ConditionType, bool]]:
    """
    Builds the new status from computed conditions, preserving unchanged transition times.

    Conditions are emitted in declaration order regardless of the order in which
    they were computed.

    Returns:
        The new status and a per-type map of whether each condition changed.
    """
    by_type = {condition.type: condition for condition in computed}

    merged: list[Condition] = []
    changes: dict[ConditionType, bool] = {}
    for condition_type in CONDITION_ORDER:
        condition = by_type.get(condition_type)
        if condition is None:
            continue
        merged_condition, changed = merge_condition(previous.get_condition(condition_type), condition)
        merged.append(merged_condition)
        changes[condition_type] = changed

    return UpstreamProviderStatus(phase=compute_phase(merged), conditions=merged), changes


def first_failing_condition(status: UpstreamProviderStatus) -> Condition | None:
    for condition in status.conditions:
        if condition.status != ConditionStatus.TRUE:
            return condition
    return None
