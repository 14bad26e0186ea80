from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from PIL import Image, ImageOps

from .compositor import BackgroundColor, ClothingOption, Schedule, needs_compositing
from .curves import CurveSettings, apply_curves
from .geometry import CropRegion, extract_crop
from .sheet import SheetSpec, compose_sheet

logger = logging.getLogger(__name__)


class Compositor(Protocol):
    def composite(self, image: Image.Image, background: BackgroundColor, clothing: ClothingOption) -> Image.Image: ...


class PipelineError(RuntimeError):
    pass


class PipelineBusyError(PipelineError):
    pass


@dataclass(frozen=True)
class PipelineResult:
    sheet: Image.Image
    photo: Image.Image
    graded: Image.Image
    ai_applied: bool = False
    warning: Optional[str] = None


def load_image(source: Union[str, Path, bytes]) -> Image.Image:
    """Decode ``source`` upright (EXIF orientation applied) as RGB."""
    if isinstance(source, bytes):
        image = Image.open(io.BytesIO(source))
    else:
        image = Image.open(source)
    with image:
        upright = ImageOps.exif_transpose(image)
        return upright.convert("RGB")


def create_preview_image(image: Image.Image, max_dim: int = 1024) -> Image.Image:
    preview = image.copy()
    if max(preview.size) > max_dim:
        preview.thumbnail((max_dim, max_dim), Image.LANCZOS)
    return preview


def crop_source(image: Image.Image, region: CropRegion) -> Image.Image:
    return extract_crop(image, region)


class PassportPipeline:
    """Grade, optionally composite, and lay out one cropped photo.

    Only one run may be in progress at a time; starting another while one is
    running raises ``PipelineBusyError``. ``generate`` blocks until the sheet
    is ready. ``generate_async`` reports through ``done(result, error)`` and
    hands rate-limit waits to ``schedule``, so an event loop keeps running.
    """

    def __init__(
        self,
        compositor: Optional[Compositor] = None,
        sheet_spec: SheetSpec = SheetSpec(),
        interpolation: str = "linear",
    ) -> None:
        self.compositor = compositor
        self.sheet_spec = sheet_spec
        self.interpolation = interpolation
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def grade(self, cropped: Image.Image, settings: CurveSettings) -> Image.Image:
        return apply_curves(cropped, settings, self.interpolation)

    def generate(
        self,
        cropped: Image.Image,
        settings: CurveSettings,
        background: BackgroundColor = BackgroundColor.WHITE,
        clothing: ClothingOption = ClothingOption.NONE,
    ) -> PipelineResult:
        self._claim()
        try:
            try:
                graded = self.grade(cropped, settings)
                if not needs_compositing(background, clothing):
                    return self._layout(graded, graded, False)
                photo = self._compositor().composite(graded, background, clothing)
                return self._layout(graded, photo, True)
            except Exception as exc:
                return self._fallback(cropped, settings, exc)
        finally:
            self._busy = False

    def generate_async(
        self,
        cropped: Image.Image,
        settings: CurveSettings,
        background: BackgroundColor,
        clothing: ClothingOption,
        schedule: Schedule,
        done: Callable[[Optional[PipelineResult], Optional[BaseException]], None],
    ) -> None:
        self._claim()
        settled = []

        def finish(result: Optional[PipelineResult], error: Optional[BaseException]) -> None:
            if settled:
                return
            settled.append(True)
            self._busy = False
            done(result, error)

        def degrade(exc: BaseException) -> None:
            try:
                result = self._fallback(cropped, settings, exc)
            except PipelineError as fatal:
                finish(None, fatal)
                return
            finish(result, None)

        def composited(photo: Optional[Image.Image], error: Optional[BaseException]) -> None:
            if error is not None or photo is None:
                degrade(error or PipelineError("the AI returned no image"))
                return
            try:
                result = self._layout(graded, photo, True)
            except Exception as exc:
                degrade(exc)
                return
            finish(result, None)

        try:
            graded = self.grade(cropped, settings)
            plain = None if needs_compositing(background, clothing) else self._layout(graded, graded, False)
            compositor = self._compositor() if plain is None else None
        except Exception as exc:
            degrade(exc)
            return
        if plain is not None:
            finish(plain, None)
            return

        composite_async = getattr(compositor, "composite_async", None)
        try:
            if composite_async is not None:
                composite_async(graded, background, clothing, schedule, composited)
                return
            photo = compositor.composite(graded, background, clothing)
        except Exception as exc:
            if settled:
                raise
            composited(None, exc)
            return
        composited(photo, None)

    def _claim(self) -> None:
        if self._busy:
            raise PipelineBusyError("A sheet is already being generated.")
        self._busy = True

    def _compositor(self) -> Compositor:
        if self.compositor is None:
            raise PipelineError("no AI compositor is configured")
        return self.compositor

    def _layout(self, graded: Image.Image, photo: Image.Image, ai_applied: bool) -> PipelineResult:
        sheet = compose_sheet(photo, self.sheet_spec)
        return PipelineResult(sheet=sheet, photo=photo, graded=graded, ai_applied=ai_applied)

    def _fallback(self, cropped: Image.Image, settings: CurveSettings, exc: BaseException) -> PipelineResult:
        reason = str(exc) or "Unknown error"
        logger.warning("Sheet generation degraded: %s", reason)
        try:
            graded = self.grade(cropped, settings)
            sheet = compose_sheet(graded, self.sheet_spec)
        except Exception as inner:
            logger.exception("Fallback sheet generation failed")
            raise PipelineError(f"Total failure: {reason}") from inner
        return PipelineResult(
            sheet=sheet,
            photo=graded,
            graded=graded,
            ai_applied=False,
            warning=f"AI enhancement failed: {reason}. Plain photo used.",
        )
