"""Work queue for entities waiting on unmapped predecessors.

When an entity reaches the transformer before some of its predecessors have
been written to the target, it is parked here together with the set of
predecessors it is still waiting for. A reverse index from predecessor to
waiting entities lets the transformer release everything that becomes ready
as soon as a predecessor is mapped, without rescanning the whole queue.

Example:
    queue = DeferredQueue()
    queue.push(DeferredEntity(EntityKind.element, 0x21, {PredecessorRef.element(0x20)}, payload=element))
    ready = queue.resolve(PredecessorRef.element(0x20))
    # ready == [the entity for 0x21], and it is no longer queued
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterator

from imodel_transformer.core.constants import id_to_hex
from imodel_transformer.core.enums import EntityKind
from imodel_transformer.model.references import PredecessorRef

DeferredKey = tuple[EntityKind, int]


@dataclass
class DeferredEntity:
    """An entity held back until its predecessors are mapped.

    Attributes:
        kind: Kind of the held entity (element, model or aspect).
        source_id: Source id of the held entity. Aspect batches are keyed by the id of the
            element that owns them.
        unresolved: Predecessors not yet mapped in the target.
        payload: Source props captured when the entity was deferred.
    """

    kind: EntityKind
    source_id: int
    unresolved: set[PredecessorRef]
    payload: Any = None

    @property
    def key(self) -> DeferredKey:
        return self.kind, self.source_id

    def __str__(self) -> str:
        waiting = ", ".join(sorted(str(r) for r in self.unresolved))
        return f"{self.kind.value.lower()} {id_to_hex(self.source_id)} waiting on [{waiting}]"


class DeferredQueue:
    """Insertion-ordered queue of deferred entities with a predecessor index."""

    def __init__(self):
        self._entries: dict[DeferredKey, DeferredEntity] = {}
        self._waiting_on: dict[PredecessorRef, set[DeferredKey]] = defaultdict(set)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: DeferredKey) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[DeferredEntity]:
        return iter(list(self._entries.values()))

    def get(self, key: DeferredKey) -> DeferredEntity | None:
        return self._entries.get(key)

    def push(self, entity: DeferredEntity) -> None:
        """Queue an entity, replacing any entry with the same key."""
        if entity.key in self._entries:
            self.remove(entity.key)
        self._entries[entity.key] = entity
        for ref in entity.unresolved:
            self._waiting_on[ref].add(entity.key)

    def remove(self, key: DeferredKey) -> DeferredEntity | None:
        entity = self._entries.pop(key, None)
        if entity is not None:
            for ref in entity.unresolved:
                waiting = self._waiting_on.get(ref)
                if waiting is not None:
                    waiting.discard(key)
                    if not waiting:
                        del self._waiting_on[ref]
        return entity

    def resolve(self, ref: PredecessorRef) -> list[DeferredEntity]:
        """Record that a predecessor is now mapped.

        Args:
            ref: The predecessor that was just written to the target.

        Returns:
            Entities that no longer wait on anything, in queue order. They are
            removed from the queue.
        """
        ready = []
        for key in self._waiting_on.pop(ref, set()):
            entity = self._entries.get(key)
            if entity is None:
                continue
            entity.unresolved.discard(ref)
            if not entity.unresolved:
                ready.append(entity)
        if len(ready) > 1:
            position = {k: i for i, k in enumerate(self._entries)}
            ready.sort(key=lambda e: position[e.key])
        for entity in ready:
            del self._entries[entity.key]
        return ready

    def waiting_on(self, ref: PredecessorRef) -> list[DeferredEntity]:
        return [self._entries[k] for k in self._waiting_on.get(ref, ()) if k in self._entries]

    def unresolved_refs(self) -> set[PredecessorRef]:
        """Every predecessor some queued entity still waits on."""
        return {ref for ref, keys in self._waiting_on.items() if keys}

    def clear(self) -> None:
        self._entries.clear()
        self._waiting_on.clear()
