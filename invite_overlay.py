import argparse
import io
import json
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import Color
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

import config
from guest_csv import GuestRecord, load_guest_csv
from invite_archive import InviteArchive
from logger import get_logger, setup_logging
from schemas import (
    ElementListJob,
    Position,
    TextElement,
    TwoFieldJob,
    generation_request_adapter,
)

logger = get_logger(__name__)

BUNDLED_FONT_NAME = "InviteFont"
TIGHT_GAP_RATIO = 0.2
DEFAULT_COLOR: tuple[float, float, float] = (0.0, 0.0, 0.0)

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}


class PageOutOfRangeError(IndexError):
    def __init__(self, element_id: str, page: int, page_count: int) -> None:
        super().__init__(
            f"Text element '{element_id}' targets page {page} but the template has {page_count} page(s)."
        )
        self.element_id = element_id
        self.page = page
        self.page_count = page_count


# ── Fonts ─────────────────────────────────────────────────────────────────────


def _font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def register_bundled_font(font_path: Path, fallback_font: str = "Helvetica") -> str:
    """Register the bundled TrueType font and return the name to draw with.

    reportlab subsets TrueType fonts per document, so every stamped PDF only
    carries the glyphs it uses.
    """
    if _font_is_available(BUNDLED_FONT_NAME):
        return BUNDLED_FONT_NAME
    if not font_path.exists():
        logger.warning("bundled_font_missing", font_path=str(font_path), fallback=fallback_font)
        return fallback_font
    pdfmetrics.registerFont(TTFont(BUNDLED_FONT_NAME, str(font_path)))
    logger.info("bundled_font_registered", font_path=str(font_path))
    return BUNDLED_FONT_NAME


# ── Colors ────────────────────────────────────────────────────────────────────

_HEX_COLOR = re.compile(r"#([0-9a-f]{3}|[0-9a-f]{6})")
_RGB_COLOR = re.compile(r"rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)")


def parse_css_color(value: str, fallback: tuple[float, float, float]) -> tuple[float, float, float]:
    """Read the color picker's ``#rrggbb`` value; ``#rgb`` and ``rgb(r, g, b)`` are accepted too."""
    s = value.strip().lower()
    hex_match = _HEX_COLOR.fullmatch(s)
    if hex_match:
        digits = hex_match.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return tuple(int(digits[i : i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]
    rgb_match = _RGB_COLOR.fullmatch(s)
    if rgb_match:
        return tuple(min(255, int(part)) / 255.0 for part in rgb_match.groups())  # type: ignore[return-value]
    logger.warning("color_unrecognized", value=value)
    return fallback


def resolve_color(value: str | tuple | list | None) -> tuple[float, float, float]:
    if value is None:
        return DEFAULT_COLOR
    if isinstance(value, str):
        return parse_css_color(value, DEFAULT_COLOR)
    # RGB triples are clamped into [0, 1]
    return tuple(max(0.0, min(1.0, float(channel))) for channel in value)  # type: ignore[return-value]


# ── Coordinates ───────────────────────────────────────────────────────────────


def to_pdf_space(position: Position, canvas_height: float, render_scale: float) -> Position:
    """Convert a preview-canvas position (top-left origin, zoomed) to PDF points."""
    return Position(
        x=position.x / render_scale,
        y=(canvas_height - position.y) / render_scale,
        page=position.page,
    )


def to_canvas_space(position: Position, canvas_height: float, render_scale: float) -> Position:
    return Position(
        x=position.x * render_scale,
        y=canvas_height - position.y * render_scale,
        page=position.page,
    )


def _element_to_pdf_space(element: TextElement, canvas_height: float, render_scale: float) -> TextElement:
    converted = to_pdf_space(Position(x=element.x, y=element.y, page=element.page), canvas_height, render_scale)
    return element.model_copy(update={"x": converted.x, "y": converted.y})


def job_in_pdf_space(job: TwoFieldJob | ElementListJob, default_scale: float) -> TwoFieldJob | ElementListJob:
    """Return the job with every position in PDF space.

    Canvas-space jobs are converted exactly once here; PDF-space jobs are
    returned unchanged.
    """
    if job.coordinate_space == "pdf":
        return job
    scale = job.render_scale or default_scale
    height = float(job.canvas_height)
    pdf_space = {"coordinate_space": "pdf", "canvas_height": None, "render_scale": None}
    if isinstance(job, TwoFieldJob):
        return job.model_copy(
            update={
                "name_position": to_pdf_space(job.name_position, height, scale),
                "type_position": to_pdf_space(job.type_position, height, scale),
                **pdf_space,
            }
        )
    return job.model_copy(
        update={
            "text_elements": [_element_to_pdf_space(el, height, scale) for el in job.text_elements],
            **pdf_space,
        }
    )


# ── Tight-space text ──────────────────────────────────────────────────────────


def draw_tight_text(
    c: canvas.Canvas,
    text: str,
    x: float,
    y: float,
    font_name: str,
    size: float,
    color: tuple[float, float, float] | None = None,
    gap: float | None = None,
    y_offset: float = 0.0,
) -> float:
    """Draw text word by word with a fixed gap instead of the font's space glyph.

    The text is split on every single space, so runs of spaces yield empty
    words that still advance the cursor by one gap each. Returns the cursor
    position after the last word.
    """
    if gap is None:
        gap = size * TIGHT_GAP_RATIO
    words = text.split(" ")
    baseline = y - (size / 2) + y_offset
    cursor_x = x

    c.setFont(font_name, size)
    c.setFillColor(Color(*(color or DEFAULT_COLOR)))
    for idx, word in enumerate(words):
        if word:
            c.drawString(cursor_x, baseline, word)
            cursor_x += pdfmetrics.stringWidth(word, font_name, size)
        if idx < len(words) - 1:
            cursor_x += gap
    return cursor_x


# ── Stamping ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlacedText:
    element_id: str
    text: str
    x: float
    y: float
    page: int
    size: float
    color: tuple[float, float, float]


def two_field_elements(job: TwoFieldJob) -> list[TextElement]:
    fonts = job.font_settings
    return [
        TextElement(
            id="name",
            column=job.name_column,
            x=job.name_position.x,
            y=job.name_position.y,
            page=job.name_position.page,
            font_family=fonts.name_font,
            font_size=fonts.name_font_size,
            color=fonts.name_color,
        ),
        TextElement(
            id="type",
            column=job.type_column,
            x=job.type_position.x,
            y=job.type_position.y,
            page=job.type_position.page,
            font_family=fonts.type_font,
            font_size=fonts.type_font_size,
            color=fonts.type_color,
        ),
    ]


def resolve_text(element: TextElement, record: GuestRecord) -> str:
    if element.column:
        return (record.get(element.column) or "").strip()
    return element.text or ""


def check_pages(elements: list[TextElement], page_count: int) -> None:
    for element in elements:
        if element.page < 1 or element.page > page_count:
            raise PageOutOfRangeError(element.id, element.page, page_count)


def place_elements(
    elements: list[TextElement],
    record: GuestRecord,
    page_count: int,
    default_size: float,
) -> list[PlacedText]:
    check_pages(elements, page_count)
    return [
        PlacedText(
            element_id=element.id,
            text=resolve_text(element, record),
            x=element.x,
            y=element.y,
            page=element.page,
            size=element.font_size or default_size,
            color=resolve_color(element.color),
        )
        for element in elements
    ]


def draw_page_overlay(page_w: float, page_h: float, placements: list[PlacedText], font_name: str) -> bytes:
    packet = io.BytesIO()
    # invariant=1 keeps reportlab from embedding timestamps and random IDs.
    c = canvas.Canvas(packet, pagesize=(page_w, page_h), invariant=1)
    for placed in placements:
        draw_tight_text(c, placed.text, placed.x, placed.y, font_name, placed.size, placed.color)
    c.showPage()
    c.save()
    return packet.getvalue()


def stamp_one(
    template_bytes: bytes,
    record: GuestRecord,
    elements: list[TextElement],
    font_name: str = "Helvetica",
    default_size: float = config.DEFAULT_FONT_SIZE,
) -> bytes:
    """Stamp one guest's text elements onto a fresh copy of the template."""
    reader = PdfReader(io.BytesIO(template_bytes))
    placements = place_elements(elements, record, len(reader.pages), default_size)

    by_page: dict[int, list[PlacedText]] = {}
    for placed in placements:
        by_page.setdefault(placed.page, []).append(placed)

    writer = PdfWriter()
    for page_number, page in enumerate(reader.pages, start=1):
        page_placements = by_page.get(page_number)
        if page_placements:
            overlay_bytes = draw_page_overlay(
                float(page.mediabox.width),
                float(page.mediabox.height),
                page_placements,
                font_name,
            )
            page.merge_page(PdfReader(io.BytesIO(overlay_bytes)).pages[0])
        writer.add_page(page)

    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def _log_ignored_fonts(elements: list[TextElement], font_name: str) -> None:
    requested = sorted({el.font_family for el in elements if el.font_family and el.font_family != font_name})
    if requested:
        logger.info("font_family_not_embedded", requested=requested, stamped_with=font_name)


def iter_stamped(
    template_bytes: bytes,
    records: list[GuestRecord],
    job: TwoFieldJob | ElementListJob,
    font_name: str,
    default_size: float = config.DEFAULT_FONT_SIZE,
) -> Iterator[tuple[str, bytes]]:
    """Yield (guest name, stamped PDF bytes) per record, in CSV order.

    Two-field jobs skip records whose name or type value is blank; element
    list jobs stamp every record. A page reference outside the template
    raises PageOutOfRangeError and ends the batch.
    """
    if isinstance(job, TwoFieldJob):
        elements = two_field_elements(job)
    else:
        elements = list(job.text_elements)
    _log_ignored_fonts(elements, font_name)

    for idx, record in enumerate(records, start=1):
        if isinstance(job, TwoFieldJob):
            name = (record.get(job.name_column) or "").strip()
            guest_type = (record.get(job.type_column) or "").strip()
            if not name or not guest_type:
                logger.debug("record_skipped", row=idx)
                continue
        else:
            name = _element_list_name(job, elements, record, idx)
        yield name, stamp_one(template_bytes, record, elements, font_name, default_size)


def _element_list_name(job: ElementListJob, elements: list[TextElement], record: GuestRecord, idx: int) -> str:
    if job.name_column:
        name = (record.get(job.name_column) or "").strip()
        if name:
            return name
    first_text = resolve_text(elements[0], record).strip()
    return first_text or f"record_{idx:04d}"


def generate_archive(
    template_bytes: bytes,
    records: list[GuestRecord],
    job: TwoFieldJob | ElementListJob,
    zip_path: Path,
    font_name: str,
    default_size: float = config.DEFAULT_FONT_SIZE,
) -> int:
    """Stamp every record into a zip at zip_path and return the entry count."""
    with InviteArchive(zip_path) as archive:
        for name, pdf_bytes in iter_stamped(template_bytes, records, job, font_name, default_size):
            entry = archive.add(name, pdf_bytes)
            logger.debug("invite_stamped", entry=entry)
    return len(archive)


def archive_name() -> str:
    return f"invites_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}.zip"


# ── CLI ───────────────────────────────────────────────────────────────────────


def parse_position(value: str) -> Position:
    parts = [p.strip() for p in value.split(",")]
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError("Position must be 'x,y' or 'x,y,page'.")
    try:
        x, y = float(parts[0]), float(parts[1])
        page = int(parts[2]) if len(parts) == 3 else 1
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid position '{value}': {exc}") from exc
    return Position(x=x, y=y, page=page)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Stamp guest names from a CSV onto a PDF template and bundle the results into a zip."
    )
    parser.add_argument("--template", required=True, help="Path to the template PDF.")
    parser.add_argument("--csv", dest="csv_path", required=True, help="Path to the guest CSV.")
    parser.add_argument("--output", required=True, help="Path of the zip archive to write.")
    parser.add_argument("--name-column", help="CSV column holding the guest name.")
    parser.add_argument("--type-column", help="CSV column holding the guest type.")
    parser.add_argument("--name-pos", type=parse_position, help="Name position in PDF points: x,y[,page].")
    parser.add_argument("--type-pos", type=parse_position, help="Type position in PDF points: x,y[,page].")
    parser.add_argument("--size", type=float, default=config.DEFAULT_FONT_SIZE, help="Font size in points.")
    parser.add_argument(
        "--elements",
        help="JSON file with a list of text elements (replaces the name/type options).",
    )
    parser.add_argument(
        "--font-path",
        default=str(config.FONT_PATH),
        help="TrueType font used for every stamped element.",
    )
    args = parser.parse_args(argv)
    if not args.elements:
        missing = [
            flag
            for flag, value in (
                ("--name-column", args.name_column),
                ("--type-column", args.type_column),
                ("--name-pos", args.name_pos),
                ("--type-pos", args.type_pos),
            )
            if not value
        ]
        if missing:
            parser.error(f"provide --elements or all of: {', '.join(missing)}")
    return args


def build_cli_job(args: argparse.Namespace) -> TwoFieldJob | ElementListJob:
    if args.elements:
        elements = json.loads(Path(args.elements).read_text(encoding="utf-8"))
        payload = {"mode": "element_list", "textElements": elements, "nameColumn": args.name_column}
    else:
        payload = {
            "mode": "two_field",
            "nameColumn": args.name_column,
            "typeColumn": args.type_column,
            "namePosition": args.name_pos.model_dump(),
            "typePosition": args.type_pos.model_dump(),
        }
    return generation_request_adapter.validate_python(payload)


def main(argv: list[str] | None = None) -> None:
    setup_logging(config.LOG_LEVEL, config.LOG_JSON)
    args = parse_args(argv)
    job = build_cli_job(args)
    template_bytes = Path(args.template).read_bytes()
    records = load_guest_csv(Path(args.csv_path))
    font_name = register_bundled_font(Path(args.font_path))

    count = generate_archive(template_bytes, records, job, Path(args.output), font_name, args.size)
    logger.info("batch_complete", records=len(records), stamped=count, output=args.output)


if __name__ == "__main__":
    main()
