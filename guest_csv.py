from pathlib import Path

GuestRecord = dict[str, str]


def _decode(raw: bytes | str) -> str:
    return raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw.lstrip("\ufeff")


def _clean_cell(value: str) -> str:
    return value.strip().replace('"', "")


def parse_guest_csv(raw: bytes | str) -> list[GuestRecord]:
    """Parse guest CSV text into one record per non-blank data row.

    The first non-blank line is the header. Fields are split on every comma
    with surrounding whitespace and double quotes removed; quoted commas and
    embedded newlines are not supported. Rows shorter than the header are
    padded with empty strings, longer rows are truncated.
    """
    lines = [line for line in _decode(raw).split("\n") if line.strip()]
    if not lines:
        return []

    headers = [_clean_cell(h) for h in lines[0].split(",")]
    records: list[GuestRecord] = []
    for line in lines[1:]:
        values = [_clean_cell(v) for v in line.split(",")]
        records.append(
            {header: values[idx] if idx < len(values) else "" for idx, header in enumerate(headers)}
        )
    return records


def load_guest_csv(path: Path) -> list[GuestRecord]:
    return parse_guest_csv(path.read_bytes())


def csv_headers(raw: bytes | str) -> list[str]:
    for line in _decode(raw).split("\n"):
        if line.strip():
            return [_clean_cell(h) for h in line.split(",")]
    return []
