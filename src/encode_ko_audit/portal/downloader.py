"""
Portal downloader - fetches cart metadata and result files over HTTPS.

The report itself only reads files already on disk. This downloader is an
alternative to running curl over ``download_files.txt``: it skips files that
are already present and writes through a ``.part`` file so an interrupted
transfer never leaves a truncated result behind.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union
from urllib.parse import urlparse

import requests

from encode_ko_audit.http_utils import create_session
from encode_ko_audit.portal.files import accession_from_url, needs_download

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DEFAULT_TIMEOUT = 120


@dataclass
class DownloadSummary:
    """Outcome of a batch download."""

    downloaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class PortalDownloader:
    """Downloads portal files into a local data directory."""

    def __init__(
        self,
        data_dir: Union[str, Path],
        session: Optional[requests.Session] = None,
        dry_run: bool = False,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.data_dir = Path(data_dir)
        self.session = session or create_session()
        self.dry_run = dry_run
        self.timeout = timeout
        self.failed: List[str] = []

    def fetch_metadata(self, url: str, path: Union[str, Path]) -> Path:
        """Download the cart metadata table to ``path``."""
        out_path = Path(path)
        logger.info(f"Fetching metadata from {url}")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(response.content)
        logger.info(f"Saved metadata to {out_path}")
        return out_path

    def target_path(self, url: str) -> Path:
        accession = accession_from_url(url)
        suffix = "".join(Path(urlparse(url).path).suffixes) or ".tsv"
        return self.data_dir / f"{accession}{suffix}"

    def download_file(self, url: str) -> bool:
        """Stream one file to the data directory. Returns ``False`` on failure."""
        local_path = self.target_path(url)
        if not needs_download(local_path):
            logger.debug(f"Already present: {local_path.name}")
            return True

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would download: {url} -> {local_path}")
            return True

        self.data_dir.mkdir(parents=True, exist_ok=True)
        part_path = local_path.with_name(local_path.name + ".part")
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(part_path, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
            part_path.replace(local_path)
            logger.info(f"Downloaded: {local_path.name}")
            return True
        except requests.RequestException as e:
            logger.error(f"Error downloading {url}: {e}")
            self.failed.append(url)
            if part_path.exists():
                part_path.unlink()
            return False

    def run(self, urls: Iterable[str]) -> DownloadSummary:
        """Download every URL, continuing past failures."""
        summary = DownloadSummary()
        urls = list(urls)

        for i, url in enumerate(urls, 1):
            logger.info(f"[{i}/{len(urls)}] {url}")
            try:
                local_path = self.target_path(url)
            except ValueError as e:
                logger.warning(f"Skipping {url}: {e}")
                summary.failed.append(url)
                continue
            if not needs_download(local_path):
                summary.skipped.append(url)
                continue
            if self.download_file(url):
                summary.downloaded.append(url)
            else:
                summary.failed.append(url)

        logger.info(
            f"Downloads: {len(summary.downloaded)} done, "
            f"{len(summary.skipped)} skipped, {len(summary.failed)} failed"
        )
        return summary
