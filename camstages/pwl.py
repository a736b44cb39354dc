"""Piecewise linear functions defined by a list of control points."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Sequence

DEFAULT_EPS = 1e-6


@dataclass
class Interval:
    """A closed interval [start, end]."""

    start: float
    end: float

    def contains(self, value: float) -> bool:
        return self.start <= value <= self.end

    def clip(self, value: float) -> float:
        if value < self.start:
            return self.start
        if value > self.end:
            return self.end
        return value

    def length(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Point:
    """A 2D point, also used as a vector."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> Point:
        return Point(self.x * factor, self.y * factor)

    def __truediv__(self, factor: float) -> Point:
        return Point(self.x / factor, self.y / factor)

    def dot(self, other: Point) -> float:
        return self.x * other.x + self.y * other.y

    def len2(self) -> float:
        return self.x * self.x + self.y * self.y

    def length(self) -> float:
        return math.sqrt(self.len2())


class PerpType(enum.Enum):
    """What kind of closest point :meth:`Pwl.invert` found."""

    NOT_FOUND = enum.auto()
    START = enum.auto()
    END = enum.auto()
    VERTEX = enum.auto()
    PERPENDICULAR = enum.auto()


def _as_point(p) -> Point:
    if isinstance(p, Point):
        return p
    x, y = p
    return Point(float(x), float(y))


class Pwl:
    """A piecewise linear function through ordered control points."""

    def __init__(self, points: Iterable = ()) -> None:
        self._points: list[Point] = [_as_point(p) for p in points]

    @classmethod
    def from_values(cls, values: Sequence[float]) -> Pwl:
        """Build from a flat sequence x0, y0, x1, y1, ... with increasing x."""
        values = list(values)
        if len(values) % 2:
            raise ValueError("Pwl needs an even number of values")
        xs = values[0::2]
        ys = values[1::2]
        if len(xs) < 2:
            raise ValueError("Pwl needs at least two points")
        for prev, cur in zip(xs, xs[1:]):
            if not cur > prev:
                raise ValueError("Pwl x values must be strictly increasing")
        return cls(Point(float(x), float(y)) for x, y in zip(xs, ys))

    def append(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        if not self._points or self._points[-1].x + eps < x:
            self._points.append(Point(x, y))

    def prepend(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        if not self._points or self._points[0].x - eps > x:
            self._points.insert(0, Point(x, y))

    def domain(self) -> Interval:
        return Interval(self._points[0].x, self._points[-1].x)

    def range(self) -> Interval:
        ys = [p.y for p in self._points]
        return Interval(min(ys), max(ys))

    def empty(self) -> bool:
        return not self._points

    def __iter__(self) -> Iterator[Point]:
        return iter(list(self._points))

    def __len__(self) -> int:
        return len(self._points)

    def _find_span(self, x: float, span: int) -> int:
        # Pwls are small, so a linear search from the guess is fine.
        last_span = len(self._points) - 2
        span = max(0, min(last_span, span))
        while span < last_span and x >= self._points[span + 1].x:
            span += 1
        while span and x < self._points[span].x:
            span -= 1
        return span

    def eval(self, x: float, span: int | None = None) -> float:
        """Evaluate at x, optionally starting the span search at ``span``."""
        return self.eval_with_span(x, span)[0]

    def eval_with_span(self, x: float, span: int | None = None) -> tuple[float, int]:
        """Evaluate at x and also return the span that was used."""
        if len(self._points) < 2:
            raise ValueError("Pwl needs at least two points to evaluate")
        guess = len(self._points) // 2 - 1 if span is None or span == -1 else span
        s = self._find_span(x, guess)
        p0, p1 = self._points[s], self._points[s + 1]
        return p0.y + (x - p0.x) * (p1.y - p0.y) / (p1.x - p0.x), s

    def invert(self, xy: Point, span: int = -1, eps: float = DEFAULT_EPS):
        """Find the closest point to xy, searching from span + 1.

        Returns (PerpType, closest point or None, span).
        """
        if span < -1:
            raise ValueError("span must be at least -1")
        points = self._points
        prev_off_end = False
        span += 1
        while span < len(points) - 1:
            span_vec = points[span + 1] - points[span]
            t = (xy - points[span]).dot(span_vec) / span_vec.len2()
            if t < -eps:
                if span == 0:
                    return PerpType.START, points[span], span
                if prev_off_end:
                    return PerpType.VERTEX, points[span], span
            elif t > 1 + eps:
                if span == len(points) - 2:
                    return PerpType.END, points[span + 1], span
                prev_off_end = True
            else:
                return PerpType.PERPENDICULAR, points[span] + span_vec * t, span
            span += 1
        return PerpType.NOT_FOUND, None, span

    def compose(self, other: Pwl, eps: float = DEFAULT_EPS) -> Pwl:
        """Return the function applying this one first, then ``other``."""
        points = self._points
        opts = other._points
        this_x, this_y = points[0].x, points[0].y
        this_span = 0
        other_span = other._find_span(this_y, 0)
        result = Pwl([Point(this_x, other.eval(this_y, other_span))])
        while this_span != len(points) - 1:
            dx = points[this_span + 1].x - points[this_span].x
            dy = points[this_span + 1].y - points[this_span].y
            if (
                abs(dy) > eps
                and other_span + 1 < len(opts)
                and points[this_span + 1].y >= opts[other_span + 1].x + eps
            ):
                # Next knot is where our y reaches the next span of other.
                this_x = points[this_span].x + (opts[other_span + 1].x - points[this_span].y) * dx / dy
                other_span += 1
                this_y = opts[other_span].x
            elif (
                abs(dy) > eps
                and other_span > 0
                and points[this_span + 1].y <= opts[other_span - 1].x - eps
            ):
                # Next knot is where our y reaches the previous span of other.
                this_x = points[this_span].x + (opts[other_span + 1].x - points[this_span].y) * dx / dy
                other_span -= 1
                this_y = opts[other_span].x
            else:
                this_span += 1
                this_x, this_y = points[this_span].x, points[this_span].y
            result.append(this_x, other.eval(this_y, other_span), eps)
        return result

    @staticmethod
    def map2(pwl0: Pwl, pwl1: Pwl) -> Iterator[tuple[float, float, float]]:
        """Yield (x, y0, y1) wherever either function has a control point."""
        p0, p1 = pwl0._points, pwl1._points
        span0 = span1 = 0
        x = min(p0[0].x, p1[0].x)
        yield x, pwl0.eval(x, span0), pwl1.eval(x, span1)
        while span0 < len(p0) - 1 or span1 < len(p1) - 1:
            if span0 == len(p0) - 1:
                span1 += 1
                x = p1[span1].x
            elif span1 == len(p1) - 1:
                span0 += 1
                x = p0[span0].x
            elif p0[span0 + 1].x > p1[span1 + 1].x:
                span1 += 1
                x = p1[span1].x
            else:
                span0 += 1
                x = p0[span0].x
            yield x, pwl0.eval(x, span0), pwl1.eval(x, span1)

    @staticmethod
    def combine(
        pwl0: Pwl,
        pwl1: Pwl,
        f: Callable[[float, float, float], float],
        eps: float = DEFAULT_EPS,
    ) -> Pwl:
        """New Pwl with y = f(x, y0, y1) at every knot of either input."""
        result = Pwl()
        for x, y0, y1 in Pwl.map2(pwl0, pwl1):
            result.append(x, f(x, y0, y1), eps)
        return result

    def match_domain(self, domain: Interval, clip: bool = True, eps: float = DEFAULT_EPS) -> None:
        """Extend to cover ``domain``, either flat (clip) or linearly."""
        value, _ = self.eval_with_span(self._points[0].x if clip else domain.start, 0)
        self.prepend(domain.start, value, eps)
        value, _ = self.eval_with_span(
            self._points[-1].x if clip else domain.end, len(self._points) - 2
        )
        self.append(domain.end, value, eps)

    def generate_lut(self, as_int: bool = False) -> list:
        """Tabulate the function at 0, 1, ..., int(domain end)."""
        end = int(self.domain().end + 1)
        lut = []
        span = 0
        for x in range(end):
            value, span = self.eval_with_span(x, span)
            lut.append(int(value) if as_int else value)
        return lut

    def __imul__(self, factor: float) -> Pwl:
        self._points = [Point(p.x, p.y * factor) for p in self._points]
        return self

    def __str__(self) -> str:
        lines = ["Pwl {"]
        lines.extend(f"\t({p.x:g}, {p.y:g})" for p in self._points)
        lines.append("}")
        return "\n".join(lines)