#!/usr/bin/env python3
"""
Catalog Fetcher

Downloads the offline-scan catalog cabinet (wsusscn2.cab) with requests,
streaming it to a .part file with a tqdm progress bar and renaming it into
place once complete.
"""

import os
from pathlib import Path
from time import sleep
from typing import Optional

import requests
from tqdm import tqdm

from ..core.errors import CatalogFetchError
from ..logging.workflow_logger import get_logger

logger = get_logger()


def _download_once(url: str, destination: Path, headers: dict, timeout: int, chunk_size: int,
                   show_progress: bool) -> int:
    partial = destination.with_name(destination.name + ".part")
    written = 0
    try:
        with requests.get(url, headers=headers, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            total = int(response.headers.get('Content-Length', 0)) or None

            with open(partial, 'wb') as f, tqdm(total=total, unit='B', unit_scale=True,
                                                desc=destination.name, disable=not show_progress) as bar:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
                        bar.update(len(chunk))

        if total is not None and written != total:
            raise CatalogFetchError(f"Incomplete download: received {written} of {total} bytes")
        if written == 0:
            raise CatalogFetchError(f"Empty response body from {url}")

        os.replace(partial, destination)
        return written
    finally:
        if partial.exists():
            partial.unlink()


def fetch_catalog(url: str, destination, timeout: int = 300, max_attempts: int = 3,
                  retry_delay: float = 10, chunk_size: int = 1024 * 1024,
                  user_agent: Optional[str] = None, show_progress: bool = True) -> Path:
    """
    Download the catalog cabinet to destination.

    Args:
        url: Catalog URL
        destination: Local file path for the cabinet
        timeout: Per-request timeout in seconds
        max_attempts: Download attempts before giving up
        retry_delay: Seconds to wait between attempts
        chunk_size: Streaming chunk size in bytes
        user_agent: Optional User-Agent header value
        show_progress: Show a tqdm byte progress bar

    Returns:
        Path of the downloaded cabinet

    Raises:
        CatalogFetchError: If every attempt fails
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    headers = {"User-Agent": user_agent} if user_agent else {}

    last_error = None
    for attempt in range(max_attempts):
        logger.info(f"Downloading {url} (Attempt {attempt + 1}/{max_attempts})", group="FETCH")
        try:
            size = _download_once(url, destination, headers, timeout, chunk_size, show_progress)
            logger.file_operation("downloaded", str(destination), f"{size:,} bytes", group="FETCH")
            return destination
        except (requests.exceptions.RequestException, CatalogFetchError, OSError) as e:
            last_error = e
            logger.error(f"Catalog download failed (Attempt {attempt + 1}/{max_attempts}) - {e}", group="FETCH")

        if attempt < max_attempts - 1:
            logger.warning(f"Waiting {retry_delay} seconds before retry...", group="FETCH")
            sleep(retry_delay)

    raise CatalogFetchError(f"Maximum retry attempts ({max_attempts}) reached for {url}: {last_error}")
