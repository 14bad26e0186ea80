from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass, fields
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

from PIL import Image

CHANNELS = ("all", "red", "green", "blue")
INTERPOLATIONS = ("linear", "monotone")


class ControlPoint(NamedTuple):
    x: int
    y: int


Curve = Tuple[ControlPoint, ...]

IDENTITY_CURVE: Curve = (ControlPoint(0, 0), ControlPoint(255, 255))


def validate_curve(points: Iterable[Sequence[int]]) -> Curve:
    """Normalize ``points`` into a curve tuple, raising ``ValueError`` if invalid.

    A curve has at least two points, unique and strictly increasing ``x``,
    starts at ``x=0`` and ends at ``x=255``. Every coordinate lies in 0..255.
    """
    curve = tuple(ControlPoint(int(p[0]), int(p[1])) for p in points)
    if len(curve) < 2:
        raise ValueError("A curve needs at least two control points.")
    for point in curve:
        if not (0 <= point.x <= 255 and 0 <= point.y <= 255):
            raise ValueError(f"Control point out of range: {tuple(point)}")
    if curve[0].x != 0 or curve[-1].x != 255:
        raise ValueError("A curve must start at x=0 and end at x=255.")
    for prev, cur in zip(curve, curve[1:]):
        if cur.x <= prev.x:
            raise ValueError("Control point x values must be strictly increasing.")
    return curve


@dataclass(frozen=True)
class CurveSettings:
    all: Curve = IDENTITY_CURVE
    red: Curve = IDENTITY_CURVE
    green: Curve = IDENTITY_CURVE
    blue: Curve = IDENTITY_CURVE

    def __post_init__(self) -> None:
        for name in CHANNELS:
            object.__setattr__(self, name, validate_curve(getattr(self, name)))

    def channel(self, name: str) -> Curve:
        if name not in CHANNELS:
            raise KeyError(name)
        return getattr(self, name)

    def with_channel(self, name: str, points: Iterable[Sequence[int]]) -> "CurveSettings":
        if name not in CHANNELS:
            raise KeyError(name)
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values[name] = points
        return CurveSettings(**values)

    def is_identity(self) -> bool:
        return all(getattr(self, name) == IDENTITY_CURVE for name in CHANNELS)

    def to_dict(self) -> dict:
        return {name: [[p.x, p.y] for p in getattr(self, name)] for name in CHANNELS}

    @classmethod
    def from_dict(cls, data: dict) -> "CurveSettings":
        unknown = set(data) - set(CHANNELS)
        if unknown:
            raise ValueError(f"Unknown curve channels: {', '.join(sorted(unknown))}")
        values = {}
        for name, points in data.items():
            values[name] = [(p["x"], p["y"]) if isinstance(p, dict) else p for p in points]
        return cls(**values)


def _monotone_tangents(curve: Curve) -> List[float]:
    # Fritsch-Carlson: zero tangent at local extrema, limited elsewhere.
    count = len(curve)
    slopes = [
        (curve[i + 1].y - curve[i].y) / float(curve[i + 1].x - curve[i].x) for i in range(count - 1)
    ]
    tangents = [0.0] * count
    tangents[0] = slopes[0]
    tangents[-1] = slopes[-1]
    for i in range(1, count - 1):
        if slopes[i - 1] * slopes[i] <= 0:
            tangents[i] = 0.0
        else:
            tangents[i] = (slopes[i - 1] + slopes[i]) / 2.0
    for i, slope in enumerate(slopes):
        if slope == 0:
            tangents[i] = 0.0
            tangents[i + 1] = 0.0
            continue
        alpha = tangents[i] / slope
        beta = tangents[i + 1] / slope
        norm = alpha * alpha + beta * beta
        if norm > 9.0:
            tau = 3.0 / math.sqrt(norm)
            tangents[i] = tau * alpha * slope
            tangents[i + 1] = tau * beta * slope
    return tangents


def sample_curve(points: Iterable[Sequence[int]], interpolation: str = "linear") -> List[float]:
    """Evaluate the curve at every integer input 0..255.

    This is the single evaluator behind both the LUT and the drawn curve,
    so what is displayed is exactly what gets applied. Values are not
    clamped here.
    """
    if interpolation not in INTERPOLATIONS:
        raise ValueError(f"Unknown interpolation: {interpolation}")
    curve = validate_curve(points)
    xs = [p.x for p in curve]
    tangents = _monotone_tangents(curve) if interpolation == "monotone" else None

    values: List[float] = []
    for i in range(256):
        k = min(bisect_right(xs, i) - 1, len(curve) - 2)
        p0, p1 = curve[k], curve[k + 1]
        span = float(p1.x - p0.x)
        t = (i - p0.x) / span
        if tangents is None:
            values.append(p0.y + (p1.y - p0.y) * t)
            continue
        t2 = t * t
        t3 = t2 * t
        h00 = 2 * t3 - 3 * t2 + 1
        h10 = t3 - 2 * t2 + t
        h01 = -2 * t3 + 3 * t2
        h11 = t3 - t2
        values.append(
            h00 * p0.y + h10 * span * tangents[k] + h01 * p1.y + h11 * span * tangents[k + 1]
        )
    return values


def _round_clamp(value: float) -> int:
    return int(min(255, max(0, math.floor(value + 0.5))))


def build_lut(points: Iterable[Sequence[int]], interpolation: str = "linear") -> List[int]:
    return [_round_clamp(v) for v in sample_curve(points, interpolation)]


def compose_luts(first: Sequence[int], second: Sequence[int]) -> List[int]:
    """Return the table for ``second[first[v]]``."""
    return [second[v] for v in first]


def channel_luts(settings: CurveSettings, interpolation: str = "linear") -> Tuple[List[int], List[int], List[int]]:
    lut_all = build_lut(settings.all, interpolation)
    return (
        compose_luts(lut_all, build_lut(settings.red, interpolation)),
        compose_luts(lut_all, build_lut(settings.green, interpolation)),
        compose_luts(lut_all, build_lut(settings.blue, interpolation)),
    )


def apply_curves(image: Image.Image, settings: CurveSettings, interpolation: str = "linear") -> Image.Image:
    """Grade ``image`` with ``settings``; the ``all`` curve runs before each colour curve.

    Alpha is carried through untouched. The input image is never modified.
    """
    alpha: Optional[Image.Image] = None
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        alpha = rgba.getchannel("A")
        rgb = rgba.convert("RGB")
    elif image.mode != "RGB":
        rgb = image.convert("RGB")
    else:
        rgb = image

    if settings.is_identity():
        graded = rgb.copy()
    else:
        red, green, blue = channel_luts(settings, interpolation)
        graded = rgb.point(red + green + blue)

    if alpha is not None:
        graded.putalpha(alpha)
    return graded


def curve_polyline(
    points: Iterable[Sequence[int]],
    size: Tuple[int, int],
    interpolation: str = "linear",
) -> List[Tuple[float, float]]:
    """Curve drawn in a ``size`` box with the origin bottom-left, as canvas coordinates."""
    width, height = size
    values = sample_curve(points, interpolation)
    sx = width / 255.0
    sy = height / 255.0
    return [(i * sx, height - min(255.0, max(0.0, v)) * sy) for i, v in enumerate(values)]


def clamp_byte(value: float) -> int:
    return int(min(255, max(0, round(value))))


def add_point(points: Iterable[Sequence[int]], x: float, y: float) -> Curve:
    x, y = clamp_byte(x), clamp_byte(y)
    curve = list(validate_curve(points))
    for idx, point in enumerate(curve):
        if point.x == x:
            curve[idx] = ControlPoint(x, y)
            return tuple(curve)
    curve.append(ControlPoint(x, y))
    curve.sort(key=lambda p: p.x)
    return tuple(curve)


def move_point(points: Iterable[Sequence[int]], index: int, x: float, y: float) -> Curve:
    """Move point ``index``; end points keep their ``x`` and interior points stay between neighbours."""
    curve = list(validate_curve(points))
    y = clamp_byte(y)
    if index == 0 or index == len(curve) - 1:
        curve[index] = ControlPoint(curve[index].x, y)
        return tuple(curve)
    low = curve[index - 1].x + 1
    high = curve[index + 1].x - 1
    curve[index] = ControlPoint(min(high, max(low, clamp_byte(x))), y)
    return tuple(curve)


def remove_point(points: Iterable[Sequence[int]], index: int) -> Curve:
    curve = validate_curve(points)
    if index <= 0 or index >= len(curve) - 1:
        return curve
    return tuple(p for i, p in enumerate(curve) if i != index)


def nearest_point(points: Iterable[Sequence[int]], x: float, y: float, radius: float = 8.0) -> Optional[int]:
    best: Optional[int] = None
    best_dist = radius
    for idx, point in enumerate(validate_curve(points)):
        dist = math.hypot(point.x - x, point.y - y)
        if dist <= best_dist:
            best = idx
            best_dist = dist
    return best
