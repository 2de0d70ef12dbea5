import io
import json
import time
import uuid
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

import config
from guest_csv import csv_headers, parse_guest_csv
from invite_archive import safe_name
from invite_overlay import (
    PageOutOfRangeError,
    archive_name,
    check_pages,
    generate_archive,
    job_in_pdf_space,
    register_bundled_font,
    stamp_one,
    two_field_elements,
)
from logger import LoggingMiddleware, get_logger, setup_logging
from schemas import DeleteRequest, ElementListJob, TwoFieldJob, generation_request_adapter
from template_preview import render_page_preview

setup_logging(config.LOG_LEVEL, config.LOG_JSON)
logger = get_logger(__name__)

config.ensure_folders()
FONT_NAME = register_bundled_font(config.FONT_PATH)

app = FastAPI(title="Invitation Stamper API")

# ── MIDDLEWARE ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

app.mount(config.PUBLIC_PATH, StaticFiles(directory=config.OUTPUT_FOLDER), name="invitations")


class InvalidInputError(ValueError):
    pass


def _failure(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    logger.info("invalid_input", path=request.url.path, reason=str(exc))
    return _failure(400, str(exc))


@app.exception_handler(PageOutOfRangeError)
async def page_out_of_range_handler(request: Request, exc: PageOutOfRangeError) -> JSONResponse:
    logger.warning("page_out_of_range", element=exc.element_id, page=exc.page, page_count=exc.page_count)
    return _failure(400, str(exc))


@app.exception_handler(OSError)
async def io_failure_handler(request: Request, exc: OSError) -> JSONResponse:
    logger.error("io_failure", path=request.url.path, error=str(exc), exc_info=exc)
    return _failure(500, "Internal server error")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _failure(422, "Request validation failed.", detail=jsonable_errors(exc.errors()))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
    return _failure(500, "Internal server error")


def jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", "")), "type": err.get("type")}
        for err in errors
    ]


# ── HELPERS ───────────────────────────────────────────────────────────────────


def write_upload(upload: UploadFile, default_suffix: str) -> Path:
    config.UPLOAD_FOLDER.mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename or "").suffix or default_suffix
    target = config.UPLOAD_FOLDER / f"uploaded_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}{suffix}"
    target.write_bytes(upload.file.read())
    return target


def read_pdf_upload(upload: UploadFile | None) -> tuple[bytes, int]:
    """Return the uploaded template's bytes and page count."""
    if upload is None:
        raise InvalidInputError("Missing PDF upload.")
    filename = upload.filename or ""
    if not filename.lower().endswith(".pdf") and upload.content_type != "application/pdf":
        raise InvalidInputError(f"Template must be a PDF file. Got: {filename or upload.content_type}")

    stored = write_upload(upload, ".pdf")
    try:
        pdf_bytes = stored.read_bytes()
    finally:
        stored.unlink(missing_ok=True)

    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        page_count = len(reader.pages)
        # every page needs a usable page box to size its overlay
        for page in reader.pages:
            _ = page.mediabox
    except (PdfReadError, ValueError) as exc:
        raise InvalidInputError(f"Could not read PDF: {exc}") from exc
    if page_count == 0:
        raise InvalidInputError("Template PDF has no pages.")
    return pdf_bytes, page_count


def read_csv_upload(upload: UploadFile | None) -> bytes:
    if upload is None:
        raise InvalidInputError("Missing CSV upload.")
    stored = write_upload(upload, ".csv")
    try:
        raw = stored.read_bytes()
    finally:
        stored.unlink(missing_ok=True)
    try:
        raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise InvalidInputError("CSV must be UTF-8 encoded.") from exc
    return raw


def parse_json_field(name: str, raw: str | None) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"Malformed JSON in '{name}': {exc.msg}") from exc


def validate_job(payload: dict[str, Any]) -> TwoFieldJob | ElementListJob:
    try:
        return generation_request_adapter.validate_python(
            {key: value for key, value in payload.items() if value is not None}
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise InvalidInputError(f"Invalid generation request: {problems}") from exc


def check_columns(job: TwoFieldJob | ElementListJob, headers: list[str]) -> None:
    if isinstance(job, TwoFieldJob):
        columns = [job.name_column, job.type_column]
    else:
        columns = [el.column for el in job.text_elements if el.column]
        if job.name_column:
            columns.append(job.name_column)
    missing = [column for column in columns if column not in headers]
    if missing:
        raise InvalidInputError(f"CSV is missing column(s): {', '.join(missing)}")


def public_url(request: Request, filename: str) -> str:
    base = config.CURRENT_URL or str(request.base_url).rstrip("/")
    return f"{base}{config.PUBLIC_PATH}/{filename}"


def single_invite_filename(name: str, guest_type: str) -> str:
    return Path(f"Invite_{safe_name(name)}({safe_name(guest_type)}).pdf").name


# ── ROUTES ────────────────────────────────────────────────────────────────────


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/generate-csv")
def generate_csv(
    request: Request,
    pdf: UploadFile | None = File(None),
    csv: UploadFile | None = File(None),
    name_column: str | None = Form(None, alias="nameColumn"),
    type_column: str | None = Form(None, alias="typeColumn"),
    name_position: str | None = Form(None, alias="namePosition"),
    type_position: str | None = Form(None, alias="typePosition"),
    font_settings: str | None = Form(None, alias="fontSettings"),
    text_elements: str | None = Form(None, alias="textElements"),
    coordinate_space: str | None = Form(None, alias="coordinateSpace"),
    canvas_height: float | None = Form(None, alias="canvasHeight"),
    render_scale: float | None = Form(None, alias="renderScale"),
) -> dict[str, Any]:
    elements = parse_json_field("textElements", text_elements)
    common = {
        "nameColumn": name_column,
        "coordinateSpace": coordinate_space,
        "canvasHeight": canvas_height,
        "renderScale": render_scale,
    }
    if elements is not None:
        payload = {"mode": "element_list", "textElements": elements, **common}
    else:
        payload = {
            "mode": "two_field",
            "typeColumn": type_column,
            "namePosition": parse_json_field("namePosition", name_position),
            "typePosition": parse_json_field("typePosition", type_position),
            "fontSettings": parse_json_field("fontSettings", font_settings),
            **common,
        }
    job = job_in_pdf_space(validate_job(payload), config.RENDER_SCALE)

    template_bytes, page_count = read_pdf_upload(pdf)
    csv_raw = read_csv_upload(csv)
    check_columns(job, csv_headers(csv_raw))
    records = parse_guest_csv(csv_raw)

    job_elements = two_field_elements(job) if isinstance(job, TwoFieldJob) else job.text_elements
    check_pages(job_elements, page_count)

    filename = archive_name()
    count = generate_archive(template_bytes, records, job, config.OUTPUT_FOLDER / filename, FONT_NAME)
    logger.info("invitations_generated", mode=job.mode, records=len(records), stamped=count, archive=filename)
    return {"success": True, "url": public_url(request, filename), "count": count}


@app.post("/generate")
def generate_single(
    request: Request,
    pdf: UploadFile | None = File(None),
    name: str | None = Form(None),
    guest_type: str | None = Form(None, alias="type"),
    name_position: str | None = Form(None, alias="namePosition"),
    type_position: str | None = Form(None, alias="typePosition"),
    font_settings: str | None = Form(None, alias="fontSettings"),
) -> dict[str, Any]:
    if not name or not name.strip() or not guest_type or not guest_type.strip():
        raise InvalidInputError("Missing file or required fields")
    job = validate_job(
        {
            "mode": "two_field",
            "nameColumn": "name",
            "typeColumn": "type",
            "namePosition": parse_json_field("namePosition", name_position),
            "typePosition": parse_json_field("typePosition", type_position),
            "fontSettings": parse_json_field("fontSettings", font_settings),
        }
    )
    template_bytes, _ = read_pdf_upload(pdf)

    record = {"name": name.strip(), "type": guest_type.strip()}
    pdf_bytes = stamp_one(template_bytes, record, two_field_elements(job), FONT_NAME)
    filename = single_invite_filename(record["name"], record["type"])
    (config.OUTPUT_FOLDER / filename).write_bytes(pdf_bytes)
    logger.info("invitation_saved", filename=filename)
    return {"success": True, "message": "PDF generated", "url": public_url(request, filename)}


@app.post("/delete")
def delete_single(payload: DeleteRequest) -> JSONResponse:
    filename = single_invite_filename(payload.name, payload.type)
    target = config.OUTPUT_FOLDER / filename
    if not target.exists():
        return _failure(404, "PDF not found")
    target.unlink()
    logger.info("invitation_deleted", filename=filename)
    return JSONResponse({"success": True, "message": "PDF deleted"})


@app.post("/preview")
def preview_page(pdf: UploadFile | None = File(None), page: int = Form(1)) -> Response:
    """Render a template page at the canvas zoom used for positioning."""
    template_bytes, page_count = read_pdf_upload(pdf)
    if page < 1 or page > page_count:
        raise InvalidInputError(f"Page {page} out of range. PDF has {page_count} page(s).")
    preview = render_page_preview(template_bytes, page, config.RENDER_SCALE)
    return Response(
        content=preview.png,
        media_type="image/png",
        headers={
            "X-Page-Count": str(preview.page_count),
            "X-Canvas-Width": str(preview.canvas_width),
            "X-Canvas-Height": str(preview.canvas_height),
            "X-Render-Scale": str(config.RENDER_SCALE),
        },
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
