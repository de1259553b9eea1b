"""Download repair orders shared as public Google Drive links.

Folders are listed by reading the ids and file names embedded in the public
folder page, so no API key is needed; the folder must be shared as
"Anyone with the link".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import unquote

import requests

from . import normalizer
from .errors import RemoteFetchError

FOLDER_URL = "https://drive.google.com/drive/folders/{}"
DOWNLOAD_URL = "https://drive.usercontent.google.com/download?id={}&export=download&authuser=0&confirm=t"
FALLBACK_URL = "https://drive.google.com/uc?export=download&id={}&confirm=t"

# Large files answer with a virus-scan confirmation page first.
MAX_CONFIRM_PAGES = 3

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120",
    "Accept-Language": "ru-RU,ru;q=0.9,en;q=0.8",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}
DOWNLOAD_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "*/*",
    "Cookie": "download_warning=t",
}

_FOLDER_RE = re.compile(r"/folders/([a-zA-Z0-9_-]{10,})")
_FILE_RES = (
    re.compile(r"/file/d/([a-zA-Z0-9_-]{10,})"),
    re.compile(r"/d/([a-zA-Z0-9_-]{10,})/"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]{10,})"),
)
_ID_THEN_NAME_RE = re.compile(r"""["']([a-zA-Z0-9_-]{25,})['"]\s*,\s*["']([^"'\\]{2,150}\.[a-zA-Z]{2,5})['"]""")
_NAME_THEN_ID_RE = re.compile(r"""["']([^"'\\]{2,150}\.[a-zA-Z]{2,5})['"]\s*,\s*["']([a-zA-Z0-9_-]{25,})['"]""")
_CONFIRM_HREF_RE = re.compile(r'href="(/uc\?[^"]*confirm=[^"]+)"', re.IGNORECASE)
_CONFIRM_ACTION_RE = re.compile(r'action="(https://drive\.usercontent[^"]+)"', re.IGNORECASE)
_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._\-а-яёА-ЯЁ]")
_DISPOSITION_UTF8_RE = re.compile(r"filename\*=UTF-8''([^;]+)", re.IGNORECASE)
_DISPOSITION_RE = re.compile(r'filename="([^"]+)"', re.IGNORECASE)


@dataclass(frozen=True)
class DriveLink:
    kind: str  # "file" or "folder"
    id: str


@dataclass(frozen=True)
class DriveItem:
    id: str
    name: str


def parse_drive_url(url: str) -> Optional[DriveLink]:
    """Pull the file or folder id out of any Drive share URL."""
    match = _FOLDER_RE.search(url)
    if match:
        return DriveLink("folder", match.group(1))
    for pattern in _FILE_RES:
        match = pattern.search(url)
        if match:
            return DriveLink("file", match.group(1))
    return None


def safe_file_name(name: str) -> str:
    return _UNSAFE_NAME_RE.sub("_", name.strip()) or "document"


def find_folder_items(html: str) -> List[DriveItem]:
    """Scan a folder page for ``"<id>", "<name.ext>"`` pairs in either order."""
    items: List[DriveItem] = []
    seen = set()

    def add(file_id: str, name: str) -> None:
        if file_id not in seen:
            seen.add(file_id)
            items.append(DriveItem(file_id, name))

    for match in _ID_THEN_NAME_RE.finditer(html):
        add(match.group(1), match.group(2))
    for match in _NAME_THEN_ID_RE.finditer(html):
        add(match.group(2), match.group(1))
    return items


def find_confirm_url(html: str, file_id: str) -> str:
    match = _CONFIRM_HREF_RE.search(html)
    if match:
        return ("https://drive.google.com" + match.group(1)).replace("&amp;", "&")
    match = _CONFIRM_ACTION_RE.search(html)
    if match:
        return match.group(1).replace("&amp;", "&")
    return FALLBACK_URL.format(file_id)


def _disposition_name(response) -> Optional[str]:
    header = response.headers.get("Content-Disposition", "")
    match = _DISPOSITION_UTF8_RE.search(header)
    if match:
        return unquote(match.group(1).strip('"'))
    match = _DISPOSITION_RE.search(header)
    return match.group(1) if match else None


class DriveClient:
    def __init__(self, timeout: float = 60, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, url: str, headers: dict):
        logging.debug("Requesting %s", url)
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteFetchError(f"Google Drive request failed: {exc}") from exc
        return response

    def list_folder(self, folder_id: str) -> List[DriveItem]:
        response = self._get(FOLDER_URL.format(folder_id), BROWSER_HEADERS)
        items = find_folder_items(response.text)
        logging.info("Found %d file(s) in Drive folder %s", len(items), folder_id)
        return items

    def download_file(self, file_id: str, dest_dir: Path, name: Optional[str] = None) -> Path:
        """Save one file into ``dest_dir``, stepping through confirmation pages."""
        url = DOWNLOAD_URL.format(file_id)
        for _ in range(MAX_CONFIRM_PAGES + 1):
            response = self._get(url, DOWNLOAD_HEADERS)
            if "text/html" not in response.headers.get("Content-Type", ""):
                break
            url = find_confirm_url(response.text, file_id)
            logging.debug("Drive returned a confirmation page for %s", file_id)
        else:
            raise RemoteFetchError(f"Google Drive did not release file {file_id}")

        file_name = safe_file_name(name or _disposition_name(response) or file_id)
        target = Path(dest_dir) / file_name
        if target.exists():
            target = target.with_name(f"{file_id}_{file_name}")
        target.write_bytes(response.content)
        logging.info("Downloaded Drive file %s to %s (%d bytes)", file_id, target.name, len(response.content))
        return target

    def fetch(self, url: str, dest_dir: Path) -> List[Path]:
        """Download a shared file, or every supported file of a shared folder."""
        link = parse_drive_url(url)
        if link is None:
            raise RemoteFetchError(f"Not a Google Drive link: {url}")
        if link.kind == "file":
            return [self.download_file(link.id, dest_dir)]

        paths: List[Path] = []
        for item in self.list_folder(link.id):
            if normalizer.file_kind(Path(item.name)) == "unsupported":
                logging.info("Skipping unsupported Drive file %s", item.name)
                continue
            paths.append(self.download_file(item.id, dest_dir, item.name))
        return paths
