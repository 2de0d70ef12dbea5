import argparse
from dataclasses import dataclass
from pathlib import Path

import fitz

import config


@dataclass(frozen=True)
class PagePreview:
    png: bytes
    page_count: int
    canvas_width: int
    canvas_height: int
    page_width: float
    page_height: float


def render_page_preview(pdf_bytes: bytes, page: int = 1, scale: float = config.RENDER_SCALE) -> PagePreview:
    """Render a 1-based template page at the preview zoom.

    canvas_height is the pixel height canvas-space positions are measured
    against when converting them back to PDF points.
    """
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        if page < 1 or page > len(doc):
            raise IndexError(f"Page {page} out of range. PDF has {len(doc)} page(s).")
        pdf_page = doc[page - 1]
        pix = pdf_page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        return PagePreview(
            png=pix.tobytes("png"),
            page_count=len(doc),
            canvas_width=pix.width,
            canvas_height=pix.height,
            page_width=float(pdf_page.rect.width),
            page_height=float(pdf_page.rect.height),
        )
    finally:
        doc.close()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render a template page the way the positioning canvas shows it."
    )
    parser.add_argument("--template", required=True, help="Path to template PDF.")
    parser.add_argument("--page", type=int, default=1, help="1-based page number.")
    parser.add_argument("--scale", type=float, default=config.RENDER_SCALE, help="Render zoom factor.")
    parser.add_argument("--output", required=True, help="PNG output path.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    preview = render_page_preview(Path(args.template).read_bytes(), args.page, args.scale)
    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(preview.png)
    print(f"Template: {args.template}")
    print(f"Page: {args.page}/{preview.page_count}  Size: {preview.page_width:.2f} x {preview.page_height:.2f} points")
    print(f"Canvas: {preview.canvas_width} x {preview.canvas_height} px at scale {args.scale}")
    print(f"Wrote PNG: {output_path}")


if __name__ == "__main__":
    main()
