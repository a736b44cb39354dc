"""Object detection results."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Rectangle:
    """An axis-aligned rectangle with top-left corner (x, y)."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def area(self) -> int:
        return self.width * self.height

    def bounded_to(self, other: Rectangle) -> Rectangle:
        """The intersection with ``other``; zero-sized if they do not overlap."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        return Rectangle(left, top, max(right - left, 0), max(bottom - top, 0))


@dataclass
class Detection:
    """One detected object: category, label, confidence and box."""

    category: int
    name: str
    confidence: float
    box: Rectangle

    def __str__(self) -> str:
        box = self.box
        return (
            f"{self.name}[{self.category}] ({self.confidence:.2g}) @ "
            f"{box.x},{box.y} {box.width}x{box.height}"
        )