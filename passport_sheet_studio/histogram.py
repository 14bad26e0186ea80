from __future__ import annotations

import hashlib
from typing import Dict, Hashable, List, Optional

from PIL import Image

BINS = 256


def compute_histogram(image: Image.Image) -> List[float]:
    """Luminance histogram with 256 bins, scaled so the tallest bin is 1.0."""
    if image.width == 0 or image.height == 0:
        return [0.0] * BINS
    if image.mode != "L":
        image = image.convert("RGB").convert("L")
    counts = image.histogram()[:BINS]
    peak = max(counts)
    if peak == 0:
        return [0.0] * BINS
    return [count / float(peak) for count in counts]


def image_identity(image: Image.Image) -> str:
    digest = hashlib.sha1(image.tobytes()).hexdigest()
    return f"{image.mode}:{image.width}x{image.height}:{digest}"


class HistogramCache:
    """Histograms keyed by image identity; editing curves never invalidates them."""

    def __init__(self) -> None:
        self._entries: Dict[Hashable, List[float]] = {}

    def get(self, key: Hashable) -> Optional[List[float]]:
        return self._entries.get(key)

    def get_or_compute(self, image: Image.Image, key: Optional[Hashable] = None) -> List[float]:
        if key is None:
            key = image_identity(image)
        cached = self._entries.get(key)
        if cached is None:
            cached = compute_histogram(image)
            self._entries[key] = cached
        return cached

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
