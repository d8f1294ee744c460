"""
Normalized work item assignment.

The ``assignedTo`` field has been written in three shapes over time:
a single user id string, the ``"__ALL__"`` sentinel, or a list of ids.
``Assignment.normalize`` folds all of them into one tagged value at the
cache boundary; filtering, notification diffing and badge counts only
ever see the normalized form.

Usage:
    from worksync.models.assignment import Assignment

    a = Assignment.normalize(["u1", "u2", "u1"])
    a.includes("u2")                      # True
    a.newly_assigned(Assignment.none())   # {"u1", "u2"}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

ALL_SENTINEL = "__ALL__"
UNASSIGNED_FILTER = "unassigned"


class AssignmentKind(str, Enum):
    NONE = "none"
    SINGLE = "single"
    ALL = "all"
    MANY = "many"


@dataclass(frozen=True)
class Assignment:
    """Tagged assignment value: None, Single(id), All, or Many(ids)."""

    kind: AssignmentKind
    user_ids: frozenset = field(default_factory=frozenset)

    # ── Constructors ─────────────────────────────────────────────────────

    @classmethod
    def none(cls) -> Assignment:
        return cls(AssignmentKind.NONE)

    @classmethod
    def single(cls, user_id: str) -> Assignment:
        return cls(AssignmentKind.SINGLE, frozenset({user_id}))

    @classmethod
    def everyone(cls) -> Assignment:
        return cls(AssignmentKind.ALL)

    @classmethod
    def many(cls, user_ids) -> Assignment:
        ids = frozenset(uid for uid in user_ids if uid)
        if not ids:
            return cls.none()
        return cls(AssignmentKind.MANY, ids)

    @classmethod
    def normalize(cls, raw) -> Assignment:
        """Fold any stored ``assignedTo`` shape into an Assignment."""
        if isinstance(raw, Assignment):
            return raw
        if raw is None or raw == "":
            return cls.none()
        if isinstance(raw, str):
            return cls.everyone() if raw == ALL_SENTINEL else cls.single(raw)
        if isinstance(raw, (list, tuple, set, frozenset)):
            ids = [str(uid) for uid in raw if uid]
            if ALL_SENTINEL in ids:
                return cls.everyone()
            return cls.many(ids)
        return cls.single(str(raw))

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_empty(self) -> bool:
        return self.kind == AssignmentKind.NONE

    def includes(self, user_id: str) -> bool:
        """True when ``user_id`` is covered by this assignment (All covers everyone)."""
        if self.kind == AssignmentKind.ALL:
            return True
        return user_id in self.user_ids

    def matches_filter(self, assignee: str | None) -> bool:
        """Assignee filter of the "everything" view; an empty filter passes."""
        if not assignee:
            return True
        if assignee == UNASSIGNED_FILTER:
            return self.is_empty
        return self.includes(assignee)

    def resolve(self, universe=()) -> frozenset:
        """Concrete user ids; All expands to ``universe`` (the known users)."""
        if self.kind == AssignmentKind.ALL:
            return frozenset(universe)
        return self.user_ids

    def newly_assigned(self, previous: Assignment, universe=()) -> frozenset:
        """Users covered now but not by ``previous``."""
        if previous.kind == AssignmentKind.ALL:
            return frozenset()
        return self.resolve(universe) - previous.resolve(universe)

    def to_raw(self):
        """Wire shape written back to the store."""
        if self.kind == AssignmentKind.ALL:
            return ALL_SENTINEL
        return sorted(self.user_ids)
