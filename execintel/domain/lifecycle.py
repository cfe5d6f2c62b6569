from __future__ import annotations

from execintel.core.errors import InvalidTransitionError


STATUSES: tuple[str, ...] = ("draft", "generating", "review", "approved", "published", "archived")

# Forward workflow edges plus the generation rollback edge.
_ALLOWED: dict[str, frozenset[str]] = {
    "draft": frozenset({"generating"}),
    "generating": frozenset({"review", "draft"}),
    "review": frozenset({"approved"}),
    "approved": frozenset({"published"}),
    "published": frozenset(),
    "archived": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Return True when a report may move from ``current`` to ``target``.

    Archival is reachable from every non-archived state. ``archived -> archived``
    is accepted so callers can treat a repeat archive as a no-op.
    """
    if current not in _ALLOWED or target not in _ALLOWED:
        return False
    if target == "archived":
        return True
    return target in _ALLOWED[current]


def assert_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def is_noop(current: str, target: str) -> bool:
    # Only archival is idempotent; every other self-transition is rejected.
    return current == target == "archived"


# Content and metadata are locked while generation runs and after publication.
LOCKED_STATUSES = frozenset({"generating", "published", "archived"})


def assert_editable(status: str, action: str) -> None:
    """Reject ``action`` on a report whose status locks its content."""
    if status in LOCKED_STATUSES:
        raise InvalidTransitionError(status, status, f"Cannot {action} while the report is {status}")
