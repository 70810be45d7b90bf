"""Short-lived ``@eN`` ids for DOM element handles."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from browser_parity.errors import StaleReference

logger = logging.getLogger(__name__)

_REF_RE = re.compile(r"^@?e(\d+)$")


def format_ref(index: int) -> str:
    return f"@e{index}"


def parse_ref(ref: str) -> int:
    match = _REF_RE.match(ref.strip()) if isinstance(ref, str) else None
    if not match:
        raise StaleReference(str(ref), "not a reference id")
    return int(match.group(1))


class ReferenceTable:
    """Arena of handles indexed by small integers.

    Ids are never reused within one table: the counter keeps increasing across
    snapshots, so an id handed out before an invalidation can only ever be
    stale, never alias a newer element.
    """

    def __init__(self) -> None:
        self._next_index = 1
        self._handles: dict[int, Any] = {}
        self.generation = 0
        self.last_invalidation = ""

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, ref: str) -> bool:
        try:
            return parse_ref(ref) in self._handles
        except StaleReference:
            return False

    def replace(self, handles: Iterable[Any]) -> list[str]:
        """Drop every current entry and register ``handles`` under fresh ids."""
        self.invalidate("snapshot")
        refs = []
        for handle in handles:
            index = self._next_index
            self._next_index += 1
            self._handles[index] = handle
            refs.append(format_ref(index))
        return refs

    def lookup(self, ref: str) -> Any:
        index = parse_ref(ref)
        try:
            return self._handles[index]
        except KeyError:
            if index >= self._next_index or not self.last_invalidation:
                reason = "never issued"
            else:
                reason = f"invalidated by {self.last_invalidation}"
            raise StaleReference(ref, reason) from None

    def invalidate(self, reason: str) -> None:
        if self._handles:
            logger.debug("Invalidating %d references (%s)", len(self._handles), reason)
        self._handles.clear()
        self.generation += 1
        self.last_invalidation = reason
