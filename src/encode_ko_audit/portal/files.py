"""
ENCODE cart file lists and download planning.

The portal's cart export (``files.txt``) holds the metadata URL on its first
line followed by one download URL per file. This module reads that list,
works out which result files are still missing from the local data
directory, and writes them to ``download_files.txt`` for::

    xargs -L 1 curl -O -J -L < download_files.txt
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

PORTAL_URL = "https://www.encodeproject.org"

_FILES_SEGMENT = re.compile(r"/files/([A-Z0-9]+)/")
_ACCESSION = re.compile(r"^ENC[A-Z]{2}\d{3}[A-Z]{3}$|^TST[A-Z]{2}\d{3}[A-Z]{3}$")


@dataclass
class FilesList:
    """Parsed contents of a cart ``files.txt``."""

    metadata_url: Optional[str] = None
    file_urls: List[str] = field(default_factory=list)

    def accessions(self) -> List[str]:
        found = []
        for url in self.file_urls:
            try:
                found.append(accession_from_url(url))
            except ValueError:
                continue
        return found


def read_files_list(path: Union[str, Path]) -> FilesList:
    """
    Read a cart ``files.txt``.

    Args:
        path: Path to files.txt

    Returns:
        FilesList with the metadata URL (if the first line is one) and file URLs
    """
    files_path = Path(path)
    if not files_path.exists():
        raise FileNotFoundError(f"Files list not found: {files_path}")

    lines = [
        line.strip()
        for line in files_path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]

    result = FilesList()
    if lines and "/metadata/" in lines[0]:
        result.metadata_url = lines[0]
        lines = lines[1:]
    result.file_urls = lines

    logger.debug(f"Read {len(result.file_urls)} file URLs from {files_path}")
    return result


def accession_from_url(url: str) -> str:
    """
    Extract the file accession from a portal download URL.

    Examples:
        ".../files/ENCFF001ABC/@@download/ENCFF001ABC.tsv" -> "ENCFF001ABC"
        ".../ENCFF001ABC.tsv" -> "ENCFF001ABC"
    """
    url_path = urlparse(url.strip()).path
    match = _FILES_SEGMENT.search(url_path)
    if match:
        return match.group(1)

    stem = Path(url_path).name.split(".")[0]
    if _ACCESSION.match(stem):
        return stem
    raise ValueError(f"No file accession found in URL: {url!r}")


def local_result_path(
    data_dir: Union[str, Path], accession: str, file_format: str = "tsv"
) -> Path:
    """Location of a downloaded result file inside the data directory."""
    return Path(data_dir) / f"{accession}.{file_format}"


def needs_download(path: Union[str, Path]) -> bool:
    """True when a local file is absent or empty."""
    local_path = Path(path)
    return not local_path.exists() or local_path.stat().st_size == 0


def plan_downloads(
    files_list: FilesList,
    wanted_accessions: Iterable[str],
    data_dir: Union[str, Path],
    file_format: str = "tsv",
) -> List[str]:
    """
    Select the URLs that still need downloading.

    A URL is kept when its accession is wanted and the local file is absent
    or empty. Order follows ``files.txt``; duplicates are dropped.
    """
    wanted = set(wanted_accessions)
    urls: List[str] = []
    seen = set()

    for url in files_list.file_urls:
        try:
            accession = accession_from_url(url)
        except ValueError:
            logger.warning(f"Skipping URL without accession: {url}")
            continue
        if accession not in wanted or accession in seen:
            continue
        seen.add(accession)

        if needs_download(local_result_path(data_dir, accession, file_format)):
            urls.append(url)

    return urls


def write_download_list(urls: List[str], path: Union[str, Path]) -> Path:
    """Write one URL per line. An empty list produces an empty file."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    content = "".join(f"{url}\n" for url in urls)
    out_path.write_text(content, encoding="utf-8")
    logger.info(f"Wrote {len(urls)} URLs to {out_path}")
    return out_path


def read_download_list(path: Union[str, Path]) -> List[str]:
    list_path = Path(path)
    if not list_path.exists():
        raise FileNotFoundError(f"Download list not found: {list_path}")
    return [
        line.strip()
        for line in list_path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
