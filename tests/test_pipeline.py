import io

import pytest
from PIL import Image

from passport_sheet_studio import pipeline as pipeline_mod
from passport_sheet_studio.compositor import BackgroundColor, ClothingOption, CompositorError
from passport_sheet_studio.curves import CurveSettings
from passport_sheet_studio.geometry import CropRegion
from passport_sheet_studio.pipeline import (
    PassportPipeline,
    PipelineBusyError,
    PipelineError,
    create_preview_image,
    crop_source,
    load_image,
)

DARKEN = CurveSettings(all=((0, 0), (255, 128)))


class RecordingCompositor:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def composite(self, image, background, clothing):
        self.calls.append((image.copy(), background, clothing))
        if self.error is not None:
            raise self.error
        return self.result


def test_ai_result_is_laid_out():
    compositor = RecordingCompositor(result=Image.new("RGB", (40, 50), (0, 0, 200)))
    pipeline = PassportPipeline(compositor)
    result = pipeline.generate(Image.new("RGB", (35, 45), (200, 200, 200)), DARKEN, BackgroundColor.BLUE)
    assert result.ai_applied
    assert result.warning is None
    assert result.sheet.size == (1800, 1200)
    sent, background, clothing = compositor.calls[0]
    assert sent.getpixel((0, 0)) == (100, 100, 100)
    assert (background, clothing) == (BackgroundColor.BLUE, ClothingOption.NONE)
    assert result.photo.getpixel((0, 0)) == (0, 0, 200)


def test_ai_failure_falls_back_to_graded_photo():
    compositor = RecordingCompositor(error=CompositorError("Rate limited after 3 retries: 429"))
    pipeline = PassportPipeline(compositor)
    result = pipeline.generate(Image.new("RGB", (35, 45), (200, 200, 200)), DARKEN)
    assert not result.ai_applied
    assert result.warning == "AI enhancement failed: Rate limited after 3 retries: 429. Plain photo used."
    assert result.sheet.size == (1800, 1200)
    assert result.photo.getpixel((0, 0)) == (100, 100, 100)
    assert not pipeline.busy


def test_missing_compositor_falls_back():
    result = PassportPipeline(None).generate(Image.new("RGB", (35, 45)), CurveSettings(), BackgroundColor.WHITE)
    assert result.warning.startswith("AI enhancement failed: no AI compositor is configured")


def test_unchanged_options_skip_the_compositor():
    compositor = RecordingCompositor(error=AssertionError("must not be called"))
    result = PassportPipeline(compositor).generate(
        Image.new("RGB", (35, 45)), CurveSettings(), BackgroundColor.UNCHANGED, ClothingOption.NONE
    )
    assert compositor.calls == []
    assert result.warning is None
    assert not result.ai_applied


def test_total_failure_when_fallback_breaks(monkeypatch):
    def broken(photo, spec):
        raise ValueError("disk on fire")

    monkeypatch.setattr(pipeline_mod, "compose_sheet", broken)
    compositor = RecordingCompositor(error=CompositorError("quota"))
    pipeline = PassportPipeline(compositor)
    with pytest.raises(PipelineError, match="Total failure: quota"):
        pipeline.generate(Image.new("RGB", (35, 45)), CurveSettings())
    assert not pipeline.busy


def test_generate_refuses_reentry():
    seen = []

    class Reentrant:
        def composite(self, image, background, clothing):
            try:
                pipeline.generate(image, CurveSettings())
            except PipelineBusyError as exc:
                seen.append(exc)
            return image

    pipeline = PassportPipeline(Reentrant())
    assert not pipeline.busy
    result = pipeline.generate(Image.new("RGB", (35, 45)), CurveSettings())
    assert result.ai_applied
    assert len(seen) == 1
    assert not pipeline.busy


def test_load_image_applies_exif_orientation():
    img = Image.new("RGB", (30, 10), (10, 20, 30))
    exif = Image.Exif()
    exif[0x0112] = 6
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", exif=exif)
    loaded = load_image(buffer.getvalue())
    assert loaded.size == (10, 30)
    assert loaded.mode == "RGB"


def test_load_image_from_path(tmp_path):
    path = tmp_path / "face.png"
    Image.new("RGBA", (6, 4), (1, 2, 3, 255)).save(path)
    loaded = load_image(path)
    assert loaded.mode == "RGB"
    assert loaded.getpixel((0, 0)) == (1, 2, 3)


def test_preview_copy_is_bounded():
    big = Image.new("RGB", (4000, 3000))
    preview = create_preview_image(big, 1024)
    assert max(preview.size) == 1024
    assert big.size == (4000, 3000)
    small = Image.new("RGB", (300, 200))
    assert create_preview_image(small).size == (300, 200)


def test_crop_source_uses_full_resolution():
    img = Image.new("RGB", (100, 100), (0, 0, 0))
    img.putpixel((60, 70), (255, 255, 255))
    out = crop_source(img, CropRegion(60, 70, 10, 10))
    assert out.size == (10, 10)
    assert out.getpixel((0, 0)) == (255, 255, 255)


class WaitingCompositor:
    """Completes only after one scheduled wait, like a rate-limited request."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def composite_async(self, image, background, clothing, schedule, done):
        schedule(2.0, lambda: done(self.result, self.error))


class Waits:
    def __init__(self):
        self.scheduled = []

    def __call__(self, seconds, func):
        self.scheduled.append((seconds, func))

    def run(self):
        while self.scheduled:
            self.scheduled.pop(0)[1]()


def test_generate_async_stays_busy_until_the_wait_completes():
    pipeline = PassportPipeline(WaitingCompositor(result=Image.new("RGB", (40, 50), (0, 0, 200))))
    waits = Waits()
    outcomes = []
    pipeline.generate_async(
        Image.new("RGB", (35, 45)),
        CurveSettings(),
        BackgroundColor.BLUE,
        ClothingOption.NONE,
        waits,
        lambda result, error: outcomes.append((result, error)),
    )
    assert outcomes == []
    assert pipeline.busy
    assert [seconds for seconds, _ in waits.scheduled] == [2.0]
    with pytest.raises(PipelineBusyError):
        pipeline.generate(Image.new("RGB", (35, 45)), CurveSettings())

    waits.run()
    result, error = outcomes[0]
    assert error is None
    assert result.ai_applied
    assert result.sheet.size == (1800, 1200)
    assert not pipeline.busy


def test_generate_async_falls_back_after_compositor_error():
    pipeline = PassportPipeline(WaitingCompositor(error=CompositorError("quota")))
    waits = Waits()
    outcomes = []
    pipeline.generate_async(
        Image.new("RGB", (35, 45), (200, 200, 200)),
        DARKEN,
        BackgroundColor.WHITE,
        ClothingOption.NONE,
        waits,
        lambda result, error: outcomes.append((result, error)),
    )
    waits.run()
    result, error = outcomes[0]
    assert error is None
    assert result.warning == "AI enhancement failed: quota. Plain photo used."
    assert result.photo.getpixel((0, 0)) == (100, 100, 100)
    assert not pipeline.busy


def test_generate_async_reports_total_failure(monkeypatch):
    def broken(photo, spec):
        raise ValueError("disk on fire")

    monkeypatch.setattr(pipeline_mod, "compose_sheet", broken)
    pipeline = PassportPipeline(WaitingCompositor(error=CompositorError("quota")))
    waits = Waits()
    outcomes = []
    pipeline.generate_async(
        Image.new("RGB", (35, 45)),
        CurveSettings(),
        BackgroundColor.WHITE,
        ClothingOption.NONE,
        waits,
        lambda result, error: outcomes.append((result, error)),
    )
    waits.run()
    result, error = outcomes[0]
    assert result is None
    assert isinstance(error, PipelineError)
    assert "Total failure: quota" in str(error)
    assert not pipeline.busy


def test_generate_async_without_ai_finishes_at_once():
    pipeline = PassportPipeline(RecordingCompositor(error=AssertionError("must not be called")))
    waits = Waits()
    outcomes = []
    pipeline.generate_async(
        Image.new("RGB", (35, 45)),
        CurveSettings(),
        BackgroundColor.UNCHANGED,
        ClothingOption.NONE,
        waits,
        lambda result, error: outcomes.append((result, error)),
    )
    assert waits.scheduled == []
    assert not outcomes[0][0].ai_applied
    assert not pipeline.busy


def test_generate_async_accepts_blocking_compositor():
    compositor = RecordingCompositor(result=Image.new("RGB", (40, 50), (0, 0, 200)))
    pipeline = PassportPipeline(compositor)
    outcomes = []
    pipeline.generate_async(
        Image.new("RGB", (35, 45)),
        CurveSettings(),
        BackgroundColor.BLUE,
        ClothingOption.NONE,
        Waits(),
        lambda result, error: outcomes.append((result, error)),
    )
    assert len(compositor.calls) == 1
    assert outcomes[0][0].ai_applied
