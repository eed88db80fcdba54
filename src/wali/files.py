"""File-system helpers for uploading documents from disk."""

import asyncio
from pathlib import Path

from pydantic import BaseModel

from wali.exceptions import NotFoundError, ValidationError


class FileInfo(BaseModel):
    name: str
    file_type: str
    size: int


def file_type_of(path: Path) -> str:
    """Lower-case extension without the dot, or ``unknown``."""
    return path.suffix[1:].lower() if path.suffix else "unknown"


def _read_file(file_path: str) -> str:
    """Read file content based on file type."""
    path = Path(file_path)
    if not path.is_file():
        raise NotFoundError("file", file_path)

    if file_type_of(path) == "pdf":
        import pypdf
        from pypdf.errors import PyPdfError

        try:
            reader = pypdf.PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PyPdfError as e:
            raise ValidationError(
                f"Failed to parse PDF {path.name}: {e}. It may be scanned or encrypted"
            ) from e
        return "\n".join(pages)

    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(f"{path.name} is not a UTF-8 text file") from e


def _file_info(file_path: str) -> FileInfo:
    path = Path(file_path)
    if not path.is_file():
        raise NotFoundError("file", file_path)
    return FileInfo(name=path.name, file_type=file_type_of(path), size=path.stat().st_size)


async def read_file_content(file_path: str) -> str:
    """
    Read the text of a file: PDFs through pypdf, anything else as UTF-8.

    Raises:
        NotFoundError: If the file does not exist
        ValidationError: If the file cannot be decoded or parsed
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _read_file, file_path)


async def get_file_info(file_path: str) -> FileInfo:
    """Name, type and size in bytes of a file on disk."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _file_info, file_path)
