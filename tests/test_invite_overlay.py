import io
from pathlib import Path

import pytest
import reportlab
from pypdf import PdfReader
from reportlab.pdfbase import pdfmetrics

from conftest import make_template
from invite_overlay import (
    BUNDLED_FONT_NAME,
    PageOutOfRangeError,
    PlacedText,
    build_cli_job,
    draw_page_overlay,
    draw_tight_text,
    iter_stamped,
    job_in_pdf_space,
    parse_args,
    parse_css_color,
    parse_position,
    register_bundled_font,
    resolve_color,
    stamp_one,
    to_canvas_space,
    to_pdf_space,
    two_field_elements,
)
from schemas import ElementListJob, Position, TextElement, TwoFieldJob


class RecordingCanvas:
    def __init__(self) -> None:
        self.font: tuple[str, float] | None = None
        self.fill = None
        self.strings: list[tuple[float, float, str]] = []

    def setFont(self, name: str, size: float) -> None:
        self.font = (name, size)

    def setFillColor(self, color) -> None:
        self.fill = color

    def drawString(self, x: float, y: float, text: str) -> None:
        self.strings.append((x, y, text))


def text_origins(pdf_bytes: bytes) -> list[dict[int, list[tuple[str, float, float]]]]:
    """Per page, map each drawn word to its absolute origin."""
    pages = []
    for page in PdfReader(io.BytesIO(pdf_bytes)).pages:
        found: list[tuple[str, float, float]] = []

        def visitor(text, cm, tm, font_dict, font_size, found=found):
            if not text.strip():
                return
            x = tm[4] * cm[0] + tm[5] * cm[2] + cm[4]
            y = tm[4] * cm[1] + tm[5] * cm[3] + cm[5]
            found.append((text.strip(), round(x, 2), round(y, 2)))

        page.extract_text(visitor_text=visitor)
        pages.append(found)
    return pages


# ── coordinates ──


@pytest.mark.parametrize(
    "x, y, canvas_height, scale",
    [(0, 0, 950.4, 1.2), (120, 300, 950.4, 1.2), (733.5, 12.25, 1010.0, 1.5), (50, 900, 900, 1.0)],
)
def test_canvas_round_trip(x, y, canvas_height, scale):
    original = Position(x=x, y=y, page=2)
    back = to_canvas_space(to_pdf_space(original, canvas_height, scale), canvas_height, scale)
    assert back.x == pytest.approx(x)
    assert back.y == pytest.approx(y)
    assert back.page == 2


def test_to_pdf_space_flips_and_unscales():
    pdf = to_pdf_space(Position(x=120, y=150, page=1), canvas_height=950.4, render_scale=1.2)
    assert pdf.x == pytest.approx(100)
    assert pdf.y == pytest.approx(667)


def test_canvas_job_is_converted_once():
    job = TwoFieldJob.model_validate(
        {
            "nameColumn": "name",
            "typeColumn": "type",
            "namePosition": {"x": 120, "y": 150, "page": 1},
            "typePosition": {"x": 240, "y": 300, "page": 2},
            "coordinateSpace": "canvas",
            "canvasHeight": 950.4,
        }
    )
    converted = job_in_pdf_space(job, 1.2)
    assert converted.coordinate_space == "pdf"
    assert converted.name_position.x == pytest.approx(100)
    assert converted.name_position.y == pytest.approx(667)
    assert converted.type_position.page == 2
    assert job_in_pdf_space(converted, 1.2) is converted


def test_element_list_canvas_job_uses_its_own_scale():
    job = ElementListJob.model_validate(
        {
            "textElements": [{"id": "a", "text": "Hi", "x": 150, "y": 100, "page": 1}],
            "coordinateSpace": "canvas",
            "canvasHeight": 1000,
            "renderScale": 1.5,
        }
    )
    element = job_in_pdf_space(job, 1.2).text_elements[0]
    assert element.x == pytest.approx(100)
    assert element.y == pytest.approx(600)


# ── tight-space text ──


def test_second_word_starts_after_gap_not_space_glyph():
    c = RecordingCanvas()
    size = 18
    draw_tight_text(c, "A B", 100, 500, "Helvetica", size)

    width_a = pdfmetrics.stringWidth("A", "Helvetica", size)
    space = pdfmetrics.stringWidth(" ", "Helvetica", size)
    (x1, y1, w1), (x2, y2, w2) = c.strings
    assert (w1, w2) == ("A", "B")
    assert x1 == 100
    assert x2 == pytest.approx(100 + width_a + size * 0.2)
    assert x2 != pytest.approx(100 + width_a + space)
    assert y1 == y2 == pytest.approx(500 - size / 2)


def test_custom_gap_and_offset():
    c = RecordingCanvas()
    end = draw_tight_text(c, "ab cd", 10, 100, "Helvetica", 10, gap=7, y_offset=1.5)
    width_ab = pdfmetrics.stringWidth("ab", "Helvetica", 10)
    width_cd = pdfmetrics.stringWidth("cd", "Helvetica", 10)
    assert c.strings[1][0] == pytest.approx(10 + width_ab + 7)
    assert c.strings[0][1] == pytest.approx(96.5)
    assert end == pytest.approx(10 + width_ab + 7 + width_cd)


def test_single_word_has_no_gap():
    c = RecordingCanvas()
    end = draw_tight_text(c, "Alice", 50, 50, "Helvetica", 12)
    assert c.strings == [(50, 44, "Alice")]
    assert end == pytest.approx(50 + pdfmetrics.stringWidth("Alice", "Helvetica", 12))


def test_consecutive_spaces_each_consume_a_gap():
    c = RecordingCanvas()
    draw_tight_text(c, "A  B", 0, 0, "Helvetica", 10)
    width_a = pdfmetrics.stringWidth("A", "Helvetica", 10)
    assert [s[2] for s in c.strings] == ["A", "B"]
    assert c.strings[1][0] == pytest.approx(width_a + 2 * 2.0)


def test_leading_space_shifts_first_word():
    c = RecordingCanvas()
    draw_tight_text(c, " A", 0, 0, "Helvetica", 10)
    assert c.strings == [(pytest.approx(2.0), -5.0, "A")]


def test_font_and_default_color_are_applied():
    c = RecordingCanvas()
    draw_tight_text(c, "x", 0, 0, "Helvetica", 14)
    assert c.font == ("Helvetica", 14)
    assert (c.fill.red, c.fill.green, c.fill.blue) == (0, 0, 0)


# ── colors ──


def test_color_parsing():
    assert parse_css_color("#ff0000", (0, 0, 0)) == (1.0, 0.0, 0.0)
    assert parse_css_color("#0f0", (0, 0, 0)) == (0.0, 1.0, 0.0)
    assert parse_css_color("rgb(0, 0, 255)", (0, 0, 0)) == (0.0, 0.0, 1.0)
    assert parse_css_color("not-a-color", (0.1, 0.2, 0.3)) == (0.1, 0.2, 0.3)
    assert resolve_color(None) == (0.0, 0.0, 0.0)
    assert resolve_color((2.0, -1.0, 0.5)) == (1.0, 0.0, 0.5)
    assert resolve_color(" #336699 ") == (0.2, 0.4, 0.6)
    assert resolve_color("grey") == (0.0, 0.0, 0.0)


# ── stamping ──


def test_elements_land_only_on_their_pages(two_page_template):
    elements = [
        TextElement(id="first", text="Welcome", x=100, y=500, page=1, font_size=18),
        TextElement(id="second", column="name", x=72, y=300, page=2, font_size=20),
    ]
    stamped = stamp_one(two_page_template, {"name": "Alice"}, elements, "Helvetica")

    page1, page2 = text_origins(stamped)
    assert page1 == [("Welcome", 100.0, 491.0)]
    assert page2 == [("Alice", 72.0, 290.0)]


def test_out_of_range_page_is_fatal(two_page_template):
    elements = [TextElement(id="late", text="x", x=0, y=0, page=3)]
    with pytest.raises(PageOutOfRangeError) as excinfo:
        stamp_one(two_page_template, {}, elements)
    assert excinfo.value.page == 3
    assert excinfo.value.page_count == 2

    with pytest.raises(PageOutOfRangeError):
        stamp_one(two_page_template, {}, [TextElement(id="zero", text="x", x=0, y=0, page=0)])


def test_each_record_gets_a_fresh_template(template_pdf):
    elements = [TextElement(id="n", column="name", x=100, y=400, page=1)]
    alice = stamp_one(template_pdf, {"name": "Alice"}, elements)
    bob = stamp_one(template_pdf, {"name": "Bob"}, elements)

    assert [w for w, _, _ in text_origins(alice)[0]] == ["Alice"]
    assert [w for w, _, _ in text_origins(bob)[0]] == ["Bob"]


def test_stamping_is_repeatable(template_pdf):
    elements = [TextElement(id="n", column="name", x=100, y=400, page=1)]
    first = stamp_one(template_pdf, {"name": "Alice"}, elements)
    second = stamp_one(template_pdf, {"name": "Alice"}, elements)
    assert text_origins(first) == text_origins(second)

    placed = [PlacedText("n", "Alice", 100, 400, 1, 18, (0.0, 0.0, 0.0))]
    assert draw_page_overlay(612, 792, placed, "Helvetica") == draw_page_overlay(612, 792, placed, "Helvetica")


def test_default_size_applies_when_element_has_none(template_pdf):
    elements = [TextElement(id="n", text="Hi", x=10, y=100, page=1)]
    stamped = stamp_one(template_pdf, {}, elements, default_size=30)
    assert text_origins(stamped)[0] == [("Hi", 10.0, 85.0)]


def test_bundled_font_is_subset_embedded(template_pdf):
    vera = Path(reportlab.__file__).parent / "fonts" / "Vera.ttf"
    font_name = register_bundled_font(vera)
    assert font_name == BUNDLED_FONT_NAME

    stamped = stamp_one(template_pdf, {}, [TextElement(id="n", text="Alice", x=10, y=100, page=1)], font_name)
    assert b"/FontFile2" in stamped


def test_missing_font_falls_back_to_helvetica(tmp_path, monkeypatch):
    monkeypatch.setattr("invite_overlay._font_is_available", lambda name: False)
    assert register_bundled_font(tmp_path / "nope.ttf") == "Helvetica"


# ── batch iteration ──


def _two_field_job(**overrides) -> TwoFieldJob:
    payload = {
        "nameColumn": "name",
        "typeColumn": "type",
        "namePosition": {"x": 100, "y": 500, "page": 1},
        "typePosition": {"x": 100, "y": 450, "page": 1},
    }
    payload.update(overrides)
    return TwoFieldJob.model_validate(payload)


def test_two_field_mode_skips_blank_rows(template_pdf):
    records = [
        {"name": "Alice", "type": "VIP"},
        {"name": "", "type": "Guest"},
        {"name": "Carol", "type": "  "},
        {"name": "Dan", "type": "Family"},
    ]
    stamped = list(iter_stamped(template_pdf, records, _two_field_job(), "Helvetica"))
    assert [name for name, _ in stamped] == ["Alice", "Dan"]


def test_two_field_font_settings_feed_elements():
    job = _two_field_job(fontSettings={"nameFontSize": 24, "typeColor": "#ff0000", "nameFont": "Arial"})
    name_el, type_el = two_field_elements(job)
    assert (name_el.column, name_el.font_size, name_el.font_family) == ("name", 24, "Arial")
    assert (type_el.column, type_el.color, type_el.font_size) == ("type", "#ff0000", None)


def test_element_list_mode_stamps_every_record(template_pdf):
    job = ElementListJob.model_validate(
        {"textElements": [{"id": "guest", "column": "guest", "x": 50, "y": 50, "page": 1}]}
    )
    records = [{"guest": "Alice"}, {"guest": ""}, {"guest": "Bob"}]
    names = [name for name, _ in iter_stamped(template_pdf, records, job, "Helvetica")]
    assert names == ["Alice", "record_0002", "Bob"]


def test_element_list_prefers_name_column(template_pdf):
    job = ElementListJob.model_validate(
        {
            "textElements": [{"id": "title", "text": "Dear guest", "x": 50, "y": 50, "page": 1}],
            "nameColumn": "guest",
        }
    )
    names = [name for name, _ in iter_stamped(template_pdf, [{"guest": "Alice"}, {"guest": ""}], job, "Helvetica")]
    assert names == ["Alice", "Dear guest"]


def test_parse_position():
    assert parse_position("10,20") == Position(x=10, y=20, page=1)
    assert parse_position("10.5, 20, 2") == Position(x=10.5, y=20, page=2)


def test_make_template_helper_page_count():
    assert len(PdfReader(io.BytesIO(make_template(pages=3))).pages) == 3


def test_cli_requires_elements_or_both_fields(capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--template", "t.pdf", "--csv", "g.csv", "--output", "o.zip", "--name-column", "Name"])
    assert excinfo.value.code == 2
    err = capsys.readouterr().err
    assert "--type-column" in err
    assert "--name-pos" in err
    assert "Traceback" not in err


def test_cli_two_field_job():
    args = parse_args(
        [
            "--template", "t.pdf", "--csv", "g.csv", "--output", "o.zip",
            "--name-column", "Name", "--type-column", "Type",
            "--name-pos", "100,500", "--type-pos", "100,450,2",
        ]
    )
    job = build_cli_job(args)
    assert isinstance(job, TwoFieldJob)
    assert job.type_position.page == 2
