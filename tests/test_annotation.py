from __future__ import annotations

import json

import pytest

from drawcheck.core.annotation import (
    UNKNOWN_EN,
    UNKNOWN_VN,
    extract_raw_defects,
    parse_box,
    parse_detector_response,
    strip_code_fence,
    to_pixel_rect,
)
from drawcheck.core.models import NormalizedBox, PixelRect


SAMPLE = (
    '{"errors":[{"id":1,"description_en":"Missing DN tag","description_vn":"Thiếu tag DN",'
    '"type":"warning","box_2d":[450,200,480,250]}]}'
)


def test_reference_response_yields_one_defect():
    defects = parse_detector_response(SAMPLE)

    assert len(defects) == 1
    d = defects[0]
    assert d.id == 1
    assert d.description_en == "Missing DN tag"
    assert d.description_vn == "Thiếu tag DN"
    assert d.severity == "warning"
    assert d.box == NormalizedBox(y_min=450, x_min=200, y_max=480, x_max=250)


def test_markdown_fence_is_stripped():
    fenced = f"```json\n{SAMPLE}\n```"
    assert strip_code_fence(fenced) == SAMPLE
    assert len(parse_detector_response(fenced)) == 1
    assert len(parse_detector_response(f"```\n{SAMPLE}```")) == 1


@pytest.mark.parametrize(
    "text",
    ["", "not json", "[1, 2]", '{"findings": []}', '{"errors": {"id": 1}}', '{"errors": null}'],
)
def test_unusable_response_means_no_defects(text):
    assert extract_raw_defects(text) == []
    assert parse_detector_response(text) == []


@pytest.mark.parametrize(
    "box",
    [None, [1, 2, 3], [1, 2, 3, 4, 5], ["1", 2, 3, 4], [True, 0, 10, 10], "450,200,480,250", [1, 2, float("nan"), 4]],
)
def test_bad_box_shapes_become_absent(box):
    assert parse_box(box) is None


def test_box_of_three_numbers_keeps_the_defect():
    text = json.dumps({"errors": [{"id": 4, "description_en": "x", "description_vn": "y", "box_2d": [1, 2, 3]}]})
    defects = parse_detector_response(text)
    assert len(defects) == 1
    assert defects[0].id == 4
    assert defects[0].box is None


def test_missing_fields_get_defaults_and_positional_ids():
    raw = [{"description_en": "first"}, "junk", {"id": "7", "type": "CRITICAL"}, {"id": 2.0, "type": "fatal"}]
    defects = parse_detector_response(json.dumps({"errors": raw}))

    # Non-object entries are dropped but still occupy their position.
    assert [d.id for d in defects] == [1, 7, 2]
    assert defects[0].description_vn == UNKNOWN_VN
    assert defects[1].description_en == UNKNOWN_EN
    assert [d.severity for d in defects] == ["warning", "critical", "warning"]


def test_detector_order_is_preserved():
    raw = [{"id": i, "box_2d": [0, 0, 10, 10]} for i in (3, 1, 2)]
    assert [d.id for d in parse_detector_response(json.dumps({"errors": raw}))] == [3, 1, 2]


@pytest.mark.parametrize("size", [(800, 600), (1, 1), (4961, 3508)])
def test_full_frame_box_covers_whole_target(size):
    w, h = size
    rect = to_pixel_rect(NormalizedBox(0, 0, 1000, 1000), w, h)
    assert rect == PixelRect(x=0, y=0, w=w, h=h)


def test_box_maps_proportionally():
    rect = to_pixel_rect(NormalizedBox(y_min=450, x_min=200, y_max=480, x_max=250), 2000, 1000)
    assert rect.x == pytest.approx(400)
    assert rect.y == pytest.approx(450)
    assert rect.w == pytest.approx(100)
    assert rect.h == pytest.approx(30)


@pytest.mark.parametrize(
    "box",
    [
        NormalizedBox(y_min=500, x_min=100, y_max=400, x_max=200),  # inverted y
        NormalizedBox(y_min=100, x_min=300, y_max=200, x_max=100),  # inverted x
        NormalizedBox(y_min=-5, x_min=0, y_max=100, x_max=100),
        NormalizedBox(y_min=0, x_min=0, y_max=1200, x_max=100),
    ],
)
def test_malformed_boxes_render_degenerate(box):
    assert not box.is_well_formed
    rect = to_pixel_rect(box, 640, 480)
    assert rect.w == 0 and rect.h == 0
    assert 0 <= rect.x <= 640 and 0 <= rect.y <= 480


def test_ids_stay_unique_within_a_page():
    raw = [{"id": 2, "description_en": "a"}, {"description_en": "b"}, {"id": 2}, {"id": 3}]
    defects = parse_detector_response(json.dumps({"errors": raw}))

    ids = [d.id for d in defects]
    assert ids == [2, 3, 4, 5]
    assert len(set(ids)) == len(ids)
    assert [d.description_en for d in defects[:2]] == ["a", "b"]
