from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from PIL import Image

from .config import CropConfig

Size = Tuple[float, float]
Matrix = Tuple[float, float, float, float, float, float]


@dataclass(frozen=True)
class ViewportState:
    zoom: float = 1.0
    rotation_deg: float = 0.0
    pan_x: float = 0.0
    pan_y: float = 0.0


@dataclass(frozen=True)
class CropBox:
    width: float
    height: float

    @classmethod
    def from_config(cls, config: CropConfig) -> "CropBox":
        return cls(width=config.box_height * config.aspect, height=config.box_height)

    def origin(self, container: Size) -> Tuple[float, float]:
        container_w, container_h = container
        return ((container_w - self.width) / 2.0, (container_h - self.height) / 2.0)


@dataclass(frozen=True)
class CropRegion:
    x: int
    y: int
    width: int
    height: int
    rotation_deg: float = 0.0

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)


def clamp_zoom(zoom: float, config: CropConfig = CropConfig()) -> float:
    if not math.isfinite(zoom):
        return config.zoom_min
    return min(max(zoom, config.zoom_min), config.zoom_max)


def parse_rotation(text: str) -> float:
    """Numeric entry for the rotation field; anything unparsable means 0."""
    try:
        value = float(str(text).strip())
    except ValueError:
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return value


def wrap_rotation(rotation_deg: float) -> float:
    """Rotation folded into (-180, 180] for display."""
    wrapped = math.fmod(rotation_deg, 360.0)
    if wrapped > 180.0:
        wrapped -= 360.0
    elif wrapped <= -180.0:
        wrapped += 360.0
    return wrapped


def slider_rotation(rotation_deg: float) -> float:
    """Rotation folded into [-90, 90) for the fine rotation slider."""
    return ((rotation_deg + 90.0) % 180.0) - 90.0


def rotated_size(size: Tuple[int, int], rotation_deg: float) -> Tuple[int, int]:
    """Pixel size of ``size`` rotated about its center with an expanded canvas.

    Matches ``Image.rotate(-rotation_deg, expand=True)``.
    """
    width, height = size
    angle = rotation_deg % 360.0
    if angle == 0.0 or angle == 180.0:
        return (width, height)
    if angle == 90.0 or angle == 270.0:
        return (height, width)
    # same operation order as Pillow so ceil/floor land identically
    rad = -math.radians((-rotation_deg) % 360.0)
    a = round(math.cos(rad), 15)
    b = round(math.sin(rad), 15)
    d = round(-math.sin(rad), 15)
    e = round(math.cos(rad), 15)
    cx = width / 2
    cy = height / 2
    c = a * -cx + b * -cy + 0.0 + cx
    f = d * -cx + e * -cy + 0.0 + cy
    xs = []
    ys = []
    for px, py in ((0, 0), (width, 0), (width, height), (0, height)):
        xs.append(a * px + b * py + c)
        ys.append(d * px + e * py + f)
    new_w = math.ceil(max(xs)) - math.floor(min(xs))
    new_h = math.ceil(max(ys)) - math.floor(min(ys))
    return (int(new_w), int(new_h))


def rotate_for_crop(image: Image.Image, rotation_deg: float, resample: int = Image.BICUBIC) -> Image.Image:
    """Rotate clockwise about the center into the full bounding box."""
    if rotation_deg % 360.0 == 0.0:
        return image
    bands = len(image.getbands())
    fill = 255 if bands == 1 else (255,) * bands
    return image.rotate(-rotation_deg, resample=resample, expand=True, fillcolor=fill)


def auto_frame(natural_size: Tuple[int, int], box: CropBox, config: CropConfig = CropConfig()) -> ViewportState:
    """Initial zoom and pan biased towards a head-and-shoulders framing."""
    natural_w, natural_h = natural_size
    if natural_w <= 0 or natural_h <= 0:
        return ViewportState()
    width_zoom = (box.width / natural_w) * config.width_fill
    height_zoom = (box.height / natural_h) * config.height_fill
    zoom = min(max(width_zoom, height_zoom), config.zoom_max)
    rendered_h = natural_h * zoom
    return ViewportState(zoom=zoom, pan_y=-(rendered_h * config.upward_bias))


def crop_rect(
    source_size: Tuple[int, int],
    viewport: ViewportState,
    box: CropBox,
    container: Size,
) -> Tuple[float, float, float, float]:
    """Unclamped ``(x, y, width, height)`` of the crop box in ``source_size`` pixels.

    ``source_size`` is the size of the raster the user sees, i.e. the
    rotated bounding box when a rotation is set.
    """
    natural_w, natural_h = source_size
    container_w, container_h = container
    rendered_w = natural_w * viewport.zoom
    rendered_h = natural_h * viewport.zoom
    image_left = (container_w - rendered_w) / 2.0 + viewport.pan_x
    image_top = (container_h - rendered_h) / 2.0 + viewport.pan_y
    box_left, box_top = box.origin(container)
    scale = natural_w / rendered_w
    return (
        (box_left - image_left) * scale,
        (box_top - image_top) * scale,
        box.width * scale,
        box.height * scale,
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_rect(rect: Tuple[float, float, float, float], bounds: Tuple[int, int]) -> Tuple[int, int, int, int]:
    """Integer ``(x, y, width, height)`` inside ``bounds``, never smaller than 1x1."""
    x, y, width, height = rect
    bound_w, bound_h = bounds
    left = _round_half_up(x)
    top = _round_half_up(y)
    right = _round_half_up(x + width)
    bottom = _round_half_up(y + height)
    left = min(max(left, 0), max(bound_w - 1, 0))
    top = min(max(top, 0), max(bound_h - 1, 0))
    right = min(max(right, left + 1), bound_w)
    bottom = min(max(bottom, top + 1), bound_h)
    return (left, top, right - left, bottom - top)


def compute_crop_region(
    natural_size: Tuple[int, int],
    viewport: ViewportState,
    box: CropBox,
    container: Size,
) -> CropRegion:
    working = rotated_size(natural_size, viewport.rotation_deg)
    x, y, width, height = clamp_rect(crop_rect(working, viewport, box, container), working)
    return CropRegion(x=x, y=y, width=width, height=height, rotation_deg=viewport.rotation_deg)


def extract_crop(image: Image.Image, region: CropRegion, resample: int = Image.BICUBIC) -> Image.Image:
    """Cut ``region`` out of the full-resolution ``image``."""
    working = rotate_for_crop(image, region.rotation_deg, resample=resample)
    x, y, width, height = clamp_rect((region.x, region.y, region.width, region.height), working.size)
    return working.crop((x, y, x + width, y + height))


def view_to_source_matrix(
    natural_size: Tuple[int, int],
    viewport: ViewportState,
    container: Size,
    source_scale: float = 1.0,
) -> Matrix:
    """Affine coefficients mapping container pixels to source pixels.

    Suitable for ``Image.transform(..., Image.AFFINE, matrix)``. ``source_scale``
    is the ratio between the raster being sampled and the natural size, so a
    downscaled preview can be drawn with the full-resolution geometry.
    """
    angle = math.radians(viewport.rotation_deg)
    ca = math.cos(angle)
    sa = math.sin(angle)
    zoom = viewport.zoom
    cx = container[0] / 2.0 + viewport.pan_x
    cy = container[1] / 2.0 + viewport.pan_y
    sx = natural_size[0] / 2.0
    sy = natural_size[1] / 2.0
    a0 = source_scale * ca / zoom
    a1 = source_scale * sa / zoom
    a2 = source_scale * (sx - (ca * cx + sa * cy) / zoom)
    b0 = -source_scale * sa / zoom
    b1 = source_scale * ca / zoom
    b2 = source_scale * (sy - (-sa * cx + ca * cy) / zoom)
    return (a0, a1, a2, b0, b1, b2)


class SessionState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class CroppingSession:
    """Interactive pan/zoom/rotate state for one source image."""

    def __init__(
        self,
        natural_size: Tuple[int, int],
        config: CropConfig = CropConfig(),
        container: Optional[Size] = None,
        frame: bool = True,
    ) -> None:
        self.natural_size = natural_size
        self.config = config
        self.box = CropBox.from_config(config)
        self.container: Size = container or (config.container_width, config.container_height)
        self.viewport = auto_frame(natural_size, self.box, config) if frame else ViewportState()
        self.state = SessionState.IDLE
        self._drag_anchor: Optional[Tuple[float, float]] = None

    @property
    def is_open(self) -> bool:
        return self.state in (SessionState.IDLE, SessionState.DRAGGING)

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise RuntimeError(f"Cropping session is {self.state.value}.")

    def begin_drag(self, x: float, y: float) -> None:
        self._ensure_open()
        self._drag_anchor = (x - self.viewport.pan_x, y - self.viewport.pan_y)
        self.state = SessionState.DRAGGING

    def drag_to(self, x: float, y: float) -> None:
        if self.state is not SessionState.DRAGGING or self._drag_anchor is None:
            return
        ax, ay = self._drag_anchor
        self.viewport = replace(self.viewport, pan_x=x - ax, pan_y=y - ay)

    def end_drag(self) -> None:
        if self.state is SessionState.DRAGGING:
            self.state = SessionState.IDLE
        self._drag_anchor = None

    def pan_by(self, dx: float, dy: float) -> None:
        self._ensure_open()
        self.viewport = replace(self.viewport, pan_x=self.viewport.pan_x + dx, pan_y=self.viewport.pan_y + dy)

    def set_zoom(self, zoom: float) -> float:
        self._ensure_open()
        self.viewport = replace(self.viewport, zoom=clamp_zoom(zoom, self.config))
        return self.viewport.zoom

    def set_rotation(self, rotation_deg: float) -> None:
        self._ensure_open()
        if not math.isfinite(rotation_deg):
            rotation_deg = 0.0
        self.viewport = replace(self.viewport, rotation_deg=rotation_deg)

    def rotate_by(self, delta_deg: float) -> None:
        self.set_rotation(self.viewport.rotation_deg + delta_deg)

    def set_rotation_text(self, text: str) -> float:
        self.set_rotation(parse_rotation(text))
        return self.viewport.rotation_deg

    def set_container(self, container: Size) -> None:
        self.container = container

    def crop_region(self) -> CropRegion:
        return compute_crop_region(self.natural_size, self.viewport, self.box, self.container)

    def commit(self) -> CropRegion:
        self._ensure_open()
        region = self.crop_region()
        self._drag_anchor = None
        self.state = SessionState.COMMITTED
        return region

    def cancel(self) -> None:
        self._drag_anchor = None
        self.state = SessionState.CANCELLED
