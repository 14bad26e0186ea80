from __future__ import annotations

import io
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageOps

MM_PER_INCH = 25.4


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def inches_to_pixels(inches: float, pixels_per_inch: int) -> int:
    return _round_half_up(inches * pixels_per_inch)


def mm_to_pixels(mm: float, pixels_per_inch: int) -> int:
    return _round_half_up(mm / MM_PER_INCH * pixels_per_inch)


@dataclass(frozen=True)
class SheetSpec:
    """Physical sheet description; one ``pixels_per_inch`` scales both sheet and photo.

    The default 6x4 in sheet is landscape (1800x1200 at 300 ppi) because eight
    upright 35x45 mm photos only fit four across two rows.
    """

    pixels_per_inch: int = 300
    sheet_width_in: float = 6.0
    sheet_height_in: float = 4.0
    photo_width_mm: float = 35.0
    photo_height_mm: float = 45.0
    copies: int = 8
    background: Tuple[int, int, int] = (255, 255, 255)

    @property
    def sheet_size(self) -> Tuple[int, int]:
        return (
            inches_to_pixels(self.sheet_width_in, self.pixels_per_inch),
            inches_to_pixels(self.sheet_height_in, self.pixels_per_inch),
        )

    @property
    def photo_size(self) -> Tuple[int, int]:
        return (
            mm_to_pixels(self.photo_width_mm, self.pixels_per_inch),
            mm_to_pixels(self.photo_height_mm, self.pixels_per_inch),
        )


@dataclass(frozen=True)
class SheetLayout:
    sheet_size: Tuple[int, int]
    photo_size: Tuple[int, int]
    columns: int
    rows: int
    positions: Tuple[Tuple[int, int], ...]


def compute_layout(spec: SheetSpec = SheetSpec()) -> SheetLayout:
    """Grid placement with equal gaps between photos and at the sheet edges.

    Among the grids that fit, the one with the fewest empty cells wins,
    then the one with the widest smallest gap.
    """
    if spec.copies <= 0:
        raise ValueError("Copy count must be positive.")
    sheet_w, sheet_h = spec.sheet_size
    photo_w, photo_h = spec.photo_size

    best = None
    for columns in range(1, spec.copies + 1):
        rows = math.ceil(spec.copies / columns)
        if columns * photo_w > sheet_w or rows * photo_h > sheet_h:
            continue
        gap_x = (sheet_w - columns * photo_w) / (columns + 1)
        gap_y = (sheet_h - rows * photo_h) / (rows + 1)
        key = (columns * rows - spec.copies, -min(gap_x, gap_y))
        if best is None or key < best[0]:
            best = (key, columns, rows, gap_x, gap_y)
    if best is None:
        raise ValueError(
            f"{spec.copies} photos of {photo_w}x{photo_h}px do not fit on a {sheet_w}x{sheet_h}px sheet."
        )

    _, columns, rows, gap_x, gap_y = best
    positions = []
    for index in range(spec.copies):
        row, column = divmod(index, columns)
        x = _round_half_up(gap_x * (column + 1) + photo_w * column)
        y = _round_half_up(gap_y * (row + 1) + photo_h * row)
        positions.append((x, y))
    return SheetLayout(
        sheet_size=(sheet_w, sheet_h),
        photo_size=(photo_w, photo_h),
        columns=columns,
        rows=rows,
        positions=tuple(positions),
    )


def _flatten(photo: Image.Image, background: Tuple[int, int, int]) -> Image.Image:
    if photo.mode in ("RGBA", "LA") or (photo.mode == "P" and "transparency" in photo.info):
        rgba = photo.convert("RGBA")
        base = Image.new("RGB", rgba.size, background)
        base.paste(rgba, (0, 0), rgba)
        return base
    if photo.mode != "RGB":
        return photo.convert("RGB")
    return photo


def compose_sheet(
    photo: Image.Image,
    spec: SheetSpec = SheetSpec(),
    resample: int = Image.LANCZOS,
) -> Image.Image:
    """Lay ``spec.copies`` copies of ``photo`` out on a print sheet at true size."""
    if photo.width == 0 or photo.height == 0:
        raise ValueError("Photo is empty.")
    layout = compute_layout(spec)
    tile = ImageOps.fit(_flatten(photo, spec.background), layout.photo_size, method=resample)
    sheet = Image.new("RGB", layout.sheet_size, spec.background)
    for position in layout.positions:
        sheet.paste(tile, position)
    sheet.info["dpi"] = (spec.pixels_per_inch, spec.pixels_per_inch)
    return sheet


def sheet_filename(timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"passport-photo-sheet-{timestamp_ms}.png"


def encode_sheet(sheet: Image.Image, spec: SheetSpec = SheetSpec()) -> bytes:
    buffer = io.BytesIO()
    sheet.save(buffer, format="PNG", dpi=(spec.pixels_per_inch, spec.pixels_per_inch))
    return buffer.getvalue()


def save_sheet(
    sheet: Image.Image,
    directory: str,
    spec: SheetSpec = SheetSpec(),
    timestamp_ms: Optional[int] = None,
) -> Path:
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / sheet_filename(timestamp_ms)
    path.write_bytes(encode_sheet(sheet, spec))
    return path
