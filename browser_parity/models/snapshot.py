"""DOM snapshot data structures returned by Session.snapshot()."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SnapshotNode(BaseModel):
    ref: str
    tag: str
    role: str = ""
    name: str = ""
    interactive: bool = True


class PageSnapshot(BaseModel):
    url: str
    nodes: list[SnapshotNode] = Field(default_factory=list)

    def to_text(self) -> str:
        lines = []
        for node in self.nodes:
            label = f' "{node.name}"' if node.name else ""
            lines.append(f"- {node.role or node.tag}{label} [ref={node.ref}]")
        return "\n".join(lines)

    def find(self, name: str, role: str | None = None) -> SnapshotNode | None:
        """First node whose name contains ``name`` (case-insensitive)."""
        needle = name.lower()
        for node in self.nodes:
            if needle in node.name.lower() and (role is None or node.role == role):
                return node
        return None
