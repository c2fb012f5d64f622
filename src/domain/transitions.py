"""
Transition validator.

``validate`` answers whether a status change is legal for an entity type;
``ensure_valid`` is the raising variant used by the engine.  Unknown
current statuses (including raw strings that are not members of the
entity's status enum) are always rejected.  A status never transitions to
itself because no rule table lists self-loops.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .enums import STATUS_TYPES, TRANSITIONS, EntityType
from .errors import InvalidTransition


@dataclass(frozen=True)
class TransitionCheck:
    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


def _coerce(entity_type: EntityType, status: Any):
    try:
        return STATUS_TYPES[entity_type](status)
    except ValueError:
        return None


def validate(
    entity_type: EntityType,
    current_status: Any,
    requested_status: Any,
    rules: Optional[Mapping] = None,
) -> TransitionCheck:
    """Check *current_status* -> *requested_status* against the rule table."""
    entity_type = EntityType(entity_type)
    table = TRANSITIONS[entity_type] if rules is None else rules

    current = _coerce(entity_type, current_status)
    if current is None or current not in table:
        return TransitionCheck(
            False, f"Invalid current {entity_type.value} status: {current_status}"
        )

    requested = _coerce(entity_type, requested_status)
    if requested is None or requested not in table[current]:
        return TransitionCheck(
            False,
            f"Cannot transition {entity_type.value} from {current.value} "
            f"to {getattr(requested_status, 'value', requested_status)}",
        )
    return TransitionCheck(True)


def ensure_valid(
    entity_type: EntityType,
    current_status: Any,
    requested_status: Any,
    rules: Optional[Mapping] = None,
) -> None:
    if not validate(entity_type, current_status, requested_status, rules):
        raise InvalidTransition(entity_type, current_status, requested_status)


def allowed_next(entity_type: EntityType, current_status: Any) -> set:
    """Return the statuses reachable from *current_status* (empty if unknown)."""
    entity_type = EntityType(entity_type)
    current = _coerce(entity_type, current_status)
    if current is None:
        return set()
    return set(TRANSITIONS[entity_type].get(current, set()))

