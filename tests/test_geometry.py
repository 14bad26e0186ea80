import pytest
from PIL import Image

from passport_sheet_studio.config import CropConfig
from passport_sheet_studio.geometry import (
    CropBox,
    CropRegion,
    CroppingSession,
    SessionState,
    ViewportState,
    auto_frame,
    compute_crop_region,
    crop_rect,
    extract_crop,
    parse_rotation,
    rotated_size,
    slider_rotation,
    view_to_source_matrix,
    wrap_rotation,
)

BOX = CropBox(350, 450)
CONTAINER = (640.0, 520.0)


def test_crop_round_trip_for_box_sized_image():
    region = compute_crop_region((350, 450), ViewportState(), BOX, CONTAINER)
    assert region == CropRegion(0, 0, 350, 450, 0.0)


def test_crop_round_trip_through_session():
    config = CropConfig(box_height=450.0)
    session = CroppingSession((350, 450), config, frame=False)
    assert session.commit().box == (0, 0, 350, 450)
    assert session.state is SessionState.COMMITTED


def test_crop_follows_pan_and_zoom():
    region = compute_crop_region((1000, 1000), ViewportState(), BOX, CONTAINER)
    assert region.box == (325, 275, 675, 725)

    region = compute_crop_region((1000, 1000), ViewportState(pan_x=10, pan_y=-20), BOX, CONTAINER)
    assert (region.x, region.y) == (315, 295)

    region = compute_crop_region((1000, 1000), ViewportState(zoom=2.0), BOX, CONTAINER)
    assert (region.x, region.y, region.width, region.height) == (413, 388, 175, 225)


def test_crop_clamps_instead_of_failing():
    region = compute_crop_region((1000, 1000), ViewportState(pan_x=900, pan_y=900), BOX, CONTAINER)
    assert region.x == 0 and region.y == 0
    assert region.width >= 1 and region.height >= 1

    region = compute_crop_region((100, 100), ViewportState(pan_x=-5000, pan_y=-5000), BOX, CONTAINER)
    assert region.box[2] <= 100 and region.box[3] <= 100
    assert region.width >= 1 and region.height >= 1

    region = compute_crop_region((100, 100), ViewportState(zoom=0.1), BOX, CONTAINER)
    assert region.box == (0, 0, 100, 100)


@pytest.mark.parametrize("size", [(100, 60), (101, 57), (640, 480)])
@pytest.mark.parametrize("angle", [30.0, -12.5, 90.0, 180.0, 270.0, 45.0])
def test_rotated_size_matches_pillow(size, angle):
    expected = Image.new("L", size).rotate(-angle, expand=True).size
    assert rotated_size(size, angle) == expected


def test_rotation_uses_rotated_bounding_box():
    region = compute_crop_region((1000, 600), ViewportState(rotation_deg=90.0), BOX, CONTAINER)
    assert region.rotation_deg == 90.0
    assert region.box[2] <= 600 and region.box[3] <= 1000
    unrotated = crop_rect((600, 1000), ViewportState(), BOX, CONTAINER)
    assert (region.x, region.y) == (round(unrotated[0]), round(unrotated[1]))


def test_extract_crop_rotates_clockwise():
    img = Image.new("RGB", (4, 2), (0, 0, 0))
    img.putpixel((0, 0), (255, 0, 0))
    out = extract_crop(img, CropRegion(0, 0, 2, 4, 90.0))
    assert out.size == (2, 4)
    assert out.getpixel((1, 0)) == (255, 0, 0)


def test_extract_crop_reads_full_resolution_pixels():
    img = Image.new("RGB", (20, 20), (0, 0, 0))
    img.putpixel((5, 7), (9, 9, 9))
    out = extract_crop(img, CropRegion(5, 7, 3, 4))
    assert out.size == (3, 4)
    assert out.getpixel((0, 0)) == (9, 9, 9)
    out = extract_crop(img, CropRegion(18, 18, 10, 10))
    assert out.size == (2, 2)


def test_auto_frame_fills_box_and_biases_upwards():
    config = CropConfig()
    box = CropBox.from_config(config)
    state = auto_frame((1000, 1500), box, config)
    expected_zoom = max(box.width / 1000 * 2.8, box.height / 1500 * 1.5)
    assert state.zoom == pytest.approx(expected_zoom)
    assert state.pan_x == 0
    assert state.pan_y == pytest.approx(-1500 * expected_zoom * 0.18)


def test_auto_frame_caps_zoom():
    config = CropConfig()
    state = auto_frame((50, 60), CropBox.from_config(config), config)
    assert state.zoom == 4.0


def test_parse_rotation_falls_back_to_zero():
    assert parse_rotation("12.5") == 12.5
    assert parse_rotation(" -45 ") == -45.0
    assert parse_rotation("") == 0.0
    assert parse_rotation("-") == 0.0
    assert parse_rotation("abc") == 0.0
    assert parse_rotation("nan") == 0.0
    assert parse_rotation("inf") == 0.0


def test_rotation_display_wrapping():
    assert wrap_rotation(270) == -90
    assert wrap_rotation(180) == 180
    assert wrap_rotation(-180) == 180
    assert wrap_rotation(725) == 5
    assert slider_rotation(100) == -80
    assert slider_rotation(0) == 0


def test_session_drag_updates_pan_relative_to_start():
    session = CroppingSession((1000, 1000), frame=False)
    session.drag_to(500, 500)
    assert session.viewport.pan_x == 0

    session.begin_drag(100, 100)
    assert session.state is SessionState.DRAGGING
    session.drag_to(130, 90)
    assert (session.viewport.pan_x, session.viewport.pan_y) == (30, -10)
    session.drag_to(140, 95)
    assert (session.viewport.pan_x, session.viewport.pan_y) == (40, -5)
    session.end_drag()
    assert session.state is SessionState.IDLE

    session.begin_drag(0, 0)
    session.drag_to(10, 10)
    assert (session.viewport.pan_x, session.viewport.pan_y) == (50, 5)


def test_session_zoom_and_rotation_controls():
    session = CroppingSession((1000, 1000), frame=False)
    assert session.set_zoom(10) == 4.0
    assert session.set_zoom(0.01) == 0.1
    session.rotate_by(90)
    session.rotate_by(90)
    assert session.viewport.rotation_deg == 180
    session.rotate_by(-270)
    assert session.viewport.rotation_deg == -90
    assert session.set_rotation_text("oops") == 0.0
    assert session.set_rotation_text("7.5") == 7.5


def test_session_is_closed_after_commit_or_cancel():
    session = CroppingSession((800, 800))
    session.commit()
    with pytest.raises(RuntimeError):
        session.set_zoom(1.0)
    with pytest.raises(RuntimeError):
        session.commit()

    other = CroppingSession((800, 800))
    other.cancel()
    assert other.state is SessionState.CANCELLED
    with pytest.raises(RuntimeError):
        other.commit()


def test_view_matrix_agrees_with_crop_arithmetic():
    viewport = ViewportState(zoom=2.0, pan_x=10, pan_y=-20)
    a0, a1, a2, b0, b1, b2 = view_to_source_matrix((1000, 1000), viewport, CONTAINER)
    left, top = BOX.origin(CONTAINER)
    x, y, _, _ = crop_rect((1000, 1000), viewport, BOX, CONTAINER)
    assert a0 * left + a1 * top + a2 == pytest.approx(x)
    assert b0 * left + b1 * top + b2 == pytest.approx(y)

    scaled = view_to_source_matrix((1000, 1000), viewport, CONTAINER, source_scale=0.5)
    assert scaled[0] * left + scaled[1] * top + scaled[2] == pytest.approx(x * 0.5)


def test_view_matrix_rotates_about_image_center():
    viewport = ViewportState(rotation_deg=90.0)
    a0, a1, a2, b0, b1, b2 = view_to_source_matrix((400, 200), viewport, CONTAINER)
    cx, cy = CONTAINER[0] / 2, CONTAINER[1] / 2
    assert a0 * cx + a1 * cy + a2 == pytest.approx(200)
    assert b0 * cx + b1 * cy + b2 == pytest.approx(100)
    # one pixel right on screen is one pixel up the source after a clockwise turn
    assert a0 * (cx + 1) + a1 * cy + a2 == pytest.approx(200)
    assert b0 * (cx + 1) + b1 * cy + b2 == pytest.approx(99)
