import re
import zipfile
from pathlib import Path

from logger import get_logger

logger = get_logger(__name__)


def safe_name(value: str) -> str:
    return re.sub(r"\s+", "_", value.strip().lower())


class InviteArchive:
    """Zip archive that receives one stamped PDF per guest.

    Entries are written as soon as they are added. The archive is complete,
    and safe to serve, only once close() has returned; a failed batch removes
    the partial file.
    """

    def __init__(self, zip_path: Path, prefix: str = "Invite_") -> None:
        self.zip_path = zip_path
        self.prefix = prefix
        self.names: list[str] = []
        self._zip: zipfile.ZipFile | None = None

    def __enter__(self) -> "InviteArchive":
        self.zip_path.parent.mkdir(parents=True, exist_ok=True)
        self._zip = zipfile.ZipFile(self.zip_path, "w", zipfile.ZIP_DEFLATED)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
        if exc_type is not None:
            self.zip_path.unlink(missing_ok=True)
            logger.warning("archive_discarded", path=str(self.zip_path), error=str(exc))

    def entry_name(self, guest_name: str) -> str:
        base = f"{self.prefix}{safe_name(guest_name)}"
        name = f"{base}.pdf"
        counter = 2
        while name in self.names:
            name = f"{base}_{counter}.pdf"
            counter += 1
        return name

    def add(self, guest_name: str, pdf_bytes: bytes) -> str:
        if self._zip is None:
            raise RuntimeError("Archive is not open.")
        name = self.entry_name(guest_name)
        self._zip.writestr(name, pdf_bytes)
        self.names.append(name)
        return name

    def close(self) -> None:
        if self._zip is None:
            return
        self._zip.close()
        self._zip = None
        logger.info("archive_finalized", path=str(self.zip_path), entries=len(self.names))

    def __len__(self) -> int:
        return len(self.names)
