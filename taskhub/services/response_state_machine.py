"""Allowed response status transitions.

Transitions are keyed by (current status, capability). Managers and owners
share the single elevated capability; it adds edges on top of the regular
ones rather than replacing them.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from taskhub.core.exceptions import InvalidTransitionError
from taskhub.models.task import ResponseStatus


class Capability(str, Enum):
    """Actor capability relevant to response transitions."""

    REGULAR = "regular"
    ELEVATED = "elevated"


_S = ResponseStatus

_REGULAR: Dict[ResponseStatus, FrozenSet[ResponseStatus]] = {
    _S.PENDING: frozenset({_S.ACKNOWLEDGED, _S.PENDING_REVIEW, _S.COMPLETED}),
    _S.ACKNOWLEDGED: frozenset({_S.PENDING_REVIEW, _S.COMPLETED}),
    _S.PENDING_REVIEW: frozenset(),
    _S.REJECTED: frozenset({_S.PENDING_REVIEW, _S.COMPLETED}),
    _S.COMPLETED: frozenset(),
}

_ELEVATED_EXTRA: Dict[ResponseStatus, FrozenSet[ResponseStatus]] = {
    _S.PENDING: frozenset({_S.PENDING}),
    _S.ACKNOWLEDGED: frozenset({_S.PENDING}),
    _S.PENDING_REVIEW: frozenset({_S.PENDING, _S.COMPLETED}),
    _S.REJECTED: frozenset({_S.PENDING}),
    _S.COMPLETED: frozenset({_S.PENDING}),
}

TRANSITIONS: Dict[Tuple[ResponseStatus, Capability], FrozenSet[ResponseStatus]] = {}
for _status, _targets in _REGULAR.items():
    TRANSITIONS[(_status, Capability.REGULAR)] = _targets
    TRANSITIONS[(_status, Capability.ELEVATED)] = _targets | _ELEVATED_EXTRA[_status]


def capability_for(elevated: bool) -> Capability:
    return Capability.ELEVATED if elevated else Capability.REGULAR


def allowed_targets(current: Optional[str], capability: Capability) -> FrozenSet[ResponseStatus]:
    """Targets reachable from ``current``; a missing response counts as pending."""
    status = ResponseStatus(current) if current else ResponseStatus.PENDING
    return TRANSITIONS[(status, capability)]


def is_allowed(current: Optional[str], target: str, capability: Capability) -> bool:
    return ResponseStatus(target) in allowed_targets(current, capability)


def ensure_transition(current: Optional[str], target: str, capability: Capability) -> None:
    """Raise InvalidTransitionError naming the edge when it is not allowed."""
    if not is_allowed(current, target, capability):
        source = current or ResponseStatus.PENDING.value
        raise InvalidTransitionError(source, ResponseStatus(target).value)
