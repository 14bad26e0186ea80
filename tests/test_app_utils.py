import pytest

from passport_sheet_studio.app import (
    CURVE_SIZE,
    _parse_args,
    canvas_to_curve,
    compute_fit_scale,
    curve_to_canvas,
    parse_drop_files,
)


def test_parse_drop_files_braced():
    data = "{/tmp/my photo.jpg} /tmp/other.png"
    paths = parse_drop_files(data)
    assert paths[0] == "/tmp/my photo.jpg"
    assert paths[1] == "/tmp/other.png"


def test_parse_drop_files_uri():
    assert parse_drop_files("file:///tmp/a%20b.png") == ["/tmp/a b.png"]


def test_parse_drop_files_empty():
    assert parse_drop_files("") == []


def test_compute_fit_scale():
    assert compute_fit_scale((100, 100), (200, 200)) == 1.0
    assert compute_fit_scale((400, 200), (200, 200)) == 0.5
    assert compute_fit_scale((0, 10), (200, 200)) == 1.0


def test_curve_canvas_mapping_corners():
    assert canvas_to_curve(0, CURVE_SIZE - 1) == (0.0, 0.0)
    assert canvas_to_curve(CURVE_SIZE - 1, 0) == (255.0, 255.0)
    assert curve_to_canvas(0, 0) == (0.0, float(CURVE_SIZE - 1))


def test_canvas_to_curve_clamps_outside_points():
    assert canvas_to_curve(-40, 900) == (0.0, 0.0)
    assert canvas_to_curve(900, -40) == (255.0, 255.0)


def test_curve_canvas_round_trip():
    for x, y in [(12.0, 200.0), (128.0, 64.0), (255.0, 0.0)]:
        cx, cy = curve_to_canvas(x, y)
        back = canvas_to_curve(cx, cy)
        assert back == pytest.approx((x, y))


def test_parse_args_defaults():
    args = _parse_args([])
    assert args.path is None
    assert not args.verbose
    args = _parse_args(["face.jpg", "--verbose"])
    assert args.path == "face.jpg"
    assert args.verbose
