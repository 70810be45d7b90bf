"""Capture data structures: viewports, masked regions and screenshots."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Viewport(BaseModel):
    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)
    name: str = "desktop"

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def same_size(self, other: Viewport | None) -> bool:
        return other is not None and self.size == other.size


class Rect(BaseModel):
    """Axis-aligned rectangle in image pixels. The right/bottom edges are exclusive."""
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=0)
    height: int = Field(ge=0)

    @classmethod
    def from_corners(cls, x0: int, y0: int, x1: int, y1: int) -> "Rect":
        left, right = sorted((x0, x1))
        top, bottom = sorted((y0, y1))
        return cls(x=left, y=top, width=right - left, height=bottom - top)

    def clip(self, width: int, height: int) -> tuple[int, int, int, int]:
        """Return (x0, y0, x1, y1) clipped to an image of the given size."""
        x0 = min(self.x, width)
        y0 = min(self.y, height)
        x1 = min(self.x + self.width, width)
        y1 = min(self.y + self.height, height)
        return x0, y0, x1, y1


class CaptureResult(BaseModel):
    image: bytes = Field(repr=False)  # PNG
    viewport: Viewport
    captured_at: str  # ISO timestamp
    url: str
    outstanding_requests: list[str] = Field(default_factory=list)
    incomplete: bool = False
