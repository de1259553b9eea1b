"""Turn uploaded files into extraction requests.

Every accepted extension maps to exactly one path: images are sent inline,
PDFs have their first page rendered and go down the image path, Word
documents are reduced to text, and archives are expanded into a flat list of
files for the caller to process one by one.
"""

from __future__ import annotations

import base64
import contextlib
import logging
import os
import shutil
import subprocess
import tempfile
import zipfile
from pathlib import Path
from typing import Iterator, List

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from .errors import DocumentConversionError
from .schema import ExtractionRequest

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
PDF_EXTENSIONS = {".pdf"}
WORD_EXTENSIONS = {".docx", ".doc"}
ARCHIVE_EXTENSIONS = {".zip", ".rar"}

PDF_RENDER_SCALE = 2.0


def file_kind(path: Path) -> str:
    ext = path.suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in PDF_EXTENSIONS:
        return "pdf"
    if ext in WORD_EXTENSIONS:
        return "word"
    if ext in ARCHIVE_EXTENSIONS:
        return "archive"
    return "unsupported"


def is_archive(path: Path) -> bool:
    return file_kind(path) == "archive"


def image_mime_type(path: Path) -> str:
    ext = path.suffix.lower()
    if ext == ".png":
        return "image/png"
    if ext == ".webp":
        return "image/webp"
    return "image/jpeg"


@contextlib.contextmanager
def scoped_temp_file(suffix: str) -> Iterator[Path]:
    """Yield a temporary path that is removed on exit, whatever happens inside."""
    fd, name = tempfile.mkstemp(suffix=suffix, prefix="intake_")
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logging.warning("Could not remove temporary file %s: %s", path, exc)


def image_request(path: Path, source_name: str | None = None) -> ExtractionRequest:
    data = path.read_bytes()
    if not data:
        raise DocumentConversionError(f"Image {path.name} is empty")
    return ExtractionRequest(
        source_name=source_name or path.name,
        image_base64=base64.b64encode(data).decode("ascii"),
        mime_type=image_mime_type(path),
    )


def pdf_request(path: Path) -> ExtractionRequest:
    """Render the first page at a fixed scale and send it as a PNG."""
    with scoped_temp_file(".png") as raster:
        doc = fitz.open(str(path))
        try:
            if doc.page_count == 0:
                raise DocumentConversionError(f"PDF {path.name} has no pages")
            page = doc.load_page(0)
            pix = page.get_pixmap(matrix=fitz.Matrix(PDF_RENDER_SCALE, PDF_RENDER_SCALE), alpha=False)
            pix.save(str(raster))
        finally:
            doc.close()
        logging.debug("Rendered first page of %s to %s", path.name, raster)
        return image_request(raster, source_name=path.name)


def _docx_text(path: Path) -> str:
    document = DocxDocument(str(path))
    parts: List[str] = []
    for paragraph in document.paragraphs:
        if paragraph.text.strip():
            parts.append(paragraph.text)
    for table in document.tables:
        for row in table.rows:
            parts.append("\t".join(cell.text.strip() for cell in row.cells))
    return "\n".join(parts)


def _legacy_doc_text(path: Path) -> str:
    antiword = shutil.which("antiword")
    if antiword is None:
        raise DocumentConversionError(
            f"Legacy .doc format is not supported for {path.name}: antiword is not installed"
        )
    completed = subprocess.run(
        [antiword, str(path)],
        check=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        timeout=60,
    )
    return completed.stdout.decode("utf-8", errors="replace")


def word_request(path: Path) -> ExtractionRequest:
    try:
        text = _docx_text(path)
    except Exception:
        if path.suffix.lower() != ".doc":
            raise
        text = _legacy_doc_text(path)

    if not text.strip():
        raise DocumentConversionError(f"No text found in {path.name}")
    return ExtractionRequest(source_name=path.name, text=text)


def build_request(path: Path) -> ExtractionRequest:
    """Convert a single (non-archive) file into an extraction request.

    Any failure is raised as DocumentConversionError.
    """
    kind = file_kind(path)
    try:
        if kind == "image":
            return image_request(path)
        if kind == "pdf":
            return pdf_request(path)
        if kind == "word":
            return word_request(path)
    except DocumentConversionError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise DocumentConversionError(f"Failed to convert {path.name}: {exc}") from exc

    if kind == "archive":
        raise DocumentConversionError(f"{path.name} is an archive; expand it first")
    raise DocumentConversionError(f"Unsupported file format: {path.name}")


def _collect_files(root: Path) -> List[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file())


def expand_archive(path: Path, output_dir: Path) -> List[Path]:
    """Extract an archive and return the contained files as a flat list.

    RAR archives need a system ``unrar``; without it they are skipped.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    ext = path.suffix.lower()

    try:
        if ext == ".zip":
            with zipfile.ZipFile(path) as archive:
                archive.extractall(output_dir)
            return _collect_files(output_dir)

        if ext == ".rar":
            unrar = shutil.which("unrar")
            if unrar is None:
                logging.warning("unrar not available on system; skipping %s", path.name)
                return []
            subprocess.run(
                [unrar, "e", "-y", str(path), f"{output_dir}{os.sep}"],
                check=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=300,
            )
            return _collect_files(output_dir)
    except (zipfile.BadZipFile, subprocess.SubprocessError, OSError) as exc:
        raise DocumentConversionError(f"Failed to extract {path.name}: {exc}") from exc

    raise DocumentConversionError(f"Unsupported archive format: {path.name}")
