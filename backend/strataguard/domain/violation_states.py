# backend/strataguard/domain/violation_states.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ViolationStatus(str, Enum):
    NEW = "new"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DISPUTED = "disputed"
    REJECTED = "rejected"


ALL_STATUSES: tuple[str, ...] = tuple(s.value for s in ViolationStatus)

# adjudicated outcomes; re-entering disputed from these is a policy switch
DECIDED: frozenset[str] = frozenset({ViolationStatus.APPROVED.value, ViolationStatus.REJECTED.value})

_BASE_TRANSITIONS: dict[str, frozenset[str]] = {
    "new": frozenset({"pending_approval", "approved", "rejected"}),
    "pending_approval": frozenset({"approved", "rejected", "disputed"}),
    "disputed": frozenset({"approved", "rejected", "pending_approval"}),
    "approved": frozenset(),
    "rejected": frozenset(),
}


@dataclass(frozen=True)
class TransitionCheck:
    current: str
    target: str
    allowed: bool
    reason: Optional[str] = None


def allowed_targets(current: str, *, allow_redispute: bool) -> frozenset[str]:
    targets = _BASE_TRANSITIONS.get(current, frozenset())
    if allow_redispute and current in DECIDED:
        targets = targets | {ViolationStatus.DISPUTED.value}
    return targets


def check_transition(current: str, target: str, *, allow_redispute: bool) -> TransitionCheck:
    """
    Edges:
      new -> pending_approval | approved | rejected
      pending_approval -> approved | rejected | disputed
      disputed -> approved | rejected | pending_approval
      approved | rejected -> disputed   (only when re-dispute is allowed)
    Nothing returns to new, and a status never transitions to itself.
    """
    if target not in ALL_STATUSES:
        return TransitionCheck(current, target, False, f"unknown status '{target}'")
    if current == target:
        return TransitionCheck(current, target, False, f"violation is already {target}")
    if target not in allowed_targets(current, allow_redispute=allow_redispute):
        return TransitionCheck(current, target, False, f"cannot move from {current} to {target}")
    return TransitionCheck(current, target, True)


def history_action_for(target: str) -> str:
    return f"Status changed to {target}"
