from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from .sheet import SheetSpec


@dataclass(frozen=True)
class CropConfig:
    aspect: float = 35.0 / 45.0
    box_height: float = 420.0
    container_width: float = 640.0
    container_height: float = 520.0
    width_fill: float = 2.8
    height_fill: float = 1.5
    upward_bias: float = 0.18
    zoom_min: float = 0.1
    zoom_max: float = 4.0


@dataclass(frozen=True)
class PreviewConfig:
    debounce_ms: int = 50
    max_dim: int = 1024
    interpolation: str = "linear"


@dataclass(frozen=True)
class CompositorConfig:
    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash-image"
    timeout: float = 120.0
    max_retries: int = 3
    initial_delay: float = 2.0


@dataclass(frozen=True)
class StudioConfig:
    crop: CropConfig = field(default_factory=CropConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)
    compositor: CompositorConfig = field(default_factory=CompositorConfig)
    sheet: SheetSpec = field(default_factory=SheetSpec)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StudioConfig":
        env = os.environ if environ is None else environ
        config = cls()

        api_key = env.get("GEMINI_API_KEY") or env.get("API_KEY") or None
        model = env.get("PASSPORT_STUDIO_MODEL") or config.compositor.model
        compositor = replace(config.compositor, api_key=api_key, model=model)

        sheet = config.sheet
        ppi = env.get("PASSPORT_STUDIO_PPI")
        if ppi:
            sheet = replace(sheet, pixels_per_inch=_positive_int("PASSPORT_STUDIO_PPI", ppi))

        preview = config.preview
        interpolation = env.get("PASSPORT_STUDIO_INTERPOLATION")
        if interpolation:
            if interpolation not in ("linear", "monotone"):
                raise ValueError(f"PASSPORT_STUDIO_INTERPOLATION must be linear or monotone, got {interpolation!r}")
            preview = replace(preview, interpolation=interpolation)

        return replace(config, compositor=compositor, sheet=sheet, preview=preview)


def _positive_int(name: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {parsed}")
    return parsed
