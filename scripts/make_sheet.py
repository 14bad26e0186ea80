from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from passport_sheet_studio.compositor import BackgroundColor, ClothingOption, GeminiCompositor
from passport_sheet_studio.config import StudioConfig
from passport_sheet_studio.curves import CurveSettings
from passport_sheet_studio.geometry import CroppingSession
from passport_sheet_studio.pipeline import PassportPipeline, PipelineError, crop_source, load_image
from passport_sheet_studio.sheet import save_sheet


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build a printable passport photo sheet without the GUI.")
    parser.add_argument("image", help="Source photo.")
    parser.add_argument("--out-dir", default=".", help="Directory for the sheet PNG.")
    parser.add_argument("--zoom", type=float, help="Override the auto-framed zoom.")
    parser.add_argument("--pan", type=float, nargs=2, metavar=("X", "Y"), help="Override the auto-framed pan.")
    parser.add_argument("--rotation", default="0", help="Rotation in degrees (clockwise).")
    parser.add_argument("--curves", help="JSON file with all/red/green/blue control points.")
    parser.add_argument(
        "--background",
        choices=[c.value for c in BackgroundColor],
        default=BackgroundColor.UNCHANGED.value,
        help="Background replacement (needs GEMINI_API_KEY).",
    )
    parser.add_argument(
        "--clothing",
        choices=[c.value for c in ClothingOption],
        default=ClothingOption.NONE.value,
        help="Clothing replacement (needs GEMINI_API_KEY).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    config = StudioConfig.from_env()

    try:
        source = load_image(args.image)
    except OSError as exc:
        print(f"Cannot open {args.image}: {exc}", file=sys.stderr)
        return 1

    session = CroppingSession(source.size, config.crop)
    if args.zoom is not None:
        session.set_zoom(args.zoom)
    if args.pan is not None:
        session.pan_by(args.pan[0] - session.viewport.pan_x, args.pan[1] - session.viewport.pan_y)
    session.set_rotation_text(args.rotation)
    region = session.commit()
    cropped = crop_source(source, region)

    settings = CurveSettings()
    if args.curves:
        settings = CurveSettings.from_dict(json.loads(Path(args.curves).read_text()))

    compositor = None
    if config.compositor.api_key:
        compositor = GeminiCompositor.from_config(config.compositor)
    pipeline = PassportPipeline(compositor, config.sheet, config.preview.interpolation)

    try:
        result = pipeline.generate(
            cropped,
            settings,
            background=BackgroundColor(args.background),
            clothing=ClothingOption(args.clothing),
        )
    except PipelineError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    if result.warning:
        print(result.warning, file=sys.stderr)
    path = save_sheet(result.sheet, args.out_dir, config.sheet)
    print(path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
