"""
Staged multi-page toggling.

A ``DiffOverlay`` pairs a live snapshot of entities with the set of ids
the user has toggled but not yet committed. Nothing is written until
``commit``; the displayed value of every entity is

    effective(e) = e.<flag> XOR (e.id in pending)

Screens re-fetch the snapshot on every navigation and pass it through
``refresh`` so concurrent edits by other operators show up, and ids that
disappeared from the store drop out of ``pending``.
"""
from typing import Any, Callable, FrozenSet, List, Sequence, Tuple, TypeVar

from pydantic import BaseModel

R = TypeVar("R")


class DiffOverlay(BaseModel):
    snapshot: Tuple[Any, ...] = ()
    pending: FrozenSet[int] = frozenset()
    flag: str = "planned"

    class Config:
        frozen = True

    @classmethod
    def over(cls, snapshot: Sequence[Any], flag: str = "planned") -> "DiffOverlay":
        return cls(snapshot=tuple(snapshot), flag=flag)

    def effective(self, entity) -> bool:
        return bool(getattr(entity, self.flag)) ^ (entity.id in self.pending)

    def toggle(self, entity_id: int) -> "DiffOverlay":
        return self.model_copy(update={"pending": self.pending ^ {entity_id}})

    def refresh(self, snapshot: Sequence[Any]) -> "DiffOverlay":
        snapshot = tuple(snapshot)
        live_ids = {entity.id for entity in snapshot}
        return self.model_copy(update={"snapshot": snapshot, "pending": self.pending & live_ids})

    def get(self, entity_id: int):
        for entity in self.snapshot:
            if entity.id == entity_id:
                return entity
        return None

    def changes(self) -> List[Any]:
        """Snapshot entities with a staged toggle, in snapshot order."""
        return [entity for entity in self.snapshot if entity.id in self.pending]

    def clamp_start(self, start: int, page_size: int) -> int:
        """Largest valid page start not after ``start``."""
        if not self.snapshot:
            return 0
        last_start = ((len(self.snapshot) - 1) // page_size) * page_size
        return max(0, min(start, last_start))

    def page(self, start: int, page_size: int) -> List[Any]:
        return list(self.snapshot[start:start + page_size])

    def commit(self, apply: Callable[[List[int]], R]) -> Tuple[R, "DiffOverlay"]:
        """
        Hand every pending id to ``apply`` in one call.

        ``apply`` must write all of them atomically. Returns its result and
        an overlay with nothing pending; the snapshot is stale afterwards
        and callers re-fetch before rendering again. If ``apply`` raises,
        the overlay is untouched.
        """
        result = apply(sorted(self.pending))
        return result, self.model_copy(update={"pending": frozenset()})
