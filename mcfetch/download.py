from __future__ import annotations

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import aiofiles
import httpx

from .batch import BatchResult, run_bounded
from .config import FetchConfig
from .errors import DownloadError, IntegrityError, ValidationError
from .hashindex import sha1_of

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PROXIED_HOSTS = {"github.com", "raw.githubusercontent.com"}


def _normalized_proxy(prefix: Optional[str]) -> Optional[str]:
    if not prefix:
        return None
    parsed = urlparse(prefix)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return prefix[:-1] if prefix.endswith("/") else prefix


def apply_github_proxy(url: str, enabled: bool, prefix: Optional[str]) -> str:
    """Route GitHub downloads through a mirror prefix.

    Only ``github.com`` and ``raw.githubusercontent.com`` are rewritten, and a
    URL already carrying the prefix is returned unchanged.
    """

    if not enabled:
        return url
    proxy = _normalized_proxy(prefix)
    if proxy is None:
        return url
    if urlparse(url).hostname not in PROXIED_HOSTS:
        return url
    if url.startswith(f"{proxy}/"):
        return url
    return f"{proxy}/{url}"


def _temp_path(destination: Path) -> Path:
    return destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.part")


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


async def download(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    expected_sha1: Optional[str] = None,
    cfg: Optional[FetchConfig] = None,
) -> Path:
    """Fetch ``url`` into ``destination``, verifying its SHA-1 when one is given.

    An existing destination that already matches (or any existing destination
    when no hash is given) short-circuits without touching the network. Bytes
    land in a temporary file beside the destination and are only moved into
    place once the status and hash check out, so a failed download never
    leaves a partial file at ``destination``.
    """

    destination = Path(destination)
    expected = expected_sha1.lower() if expected_sha1 else None

    if destination.exists():
        if expected is None:
            logger.debug("%s already present", destination.name)
            return destination
        if sha1_of(destination) == expected:
            logger.debug("%s already present with matching hash", destination.name)
            return destination
        logger.info("%s exists but its hash differs; downloading again", destination.name)

    if cfg is not None:
        url = apply_github_proxy(url, cfg.github_proxy_enabled, cfg.github_proxy_url)

    destination.parent.mkdir(parents=True, exist_ok=True)
    temp = _temp_path(destination)
    sha = hashlib.sha1()
    try:
        try:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise DownloadError(f"HTTP {response.status_code} downloading {url}")
                async with aiofiles.open(temp, mode="wb") as handle:
                    async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
                        sha.update(chunk)
                        await handle.write(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download {url}: {exc}") from exc

        actual = sha.hexdigest()
        if expected is not None and actual != expected:
            raise IntegrityError(
                f"Hash mismatch for {destination.name}: expected {expected}, got {actual}",
                expected=expected,
                actual=actual,
            )
        os.replace(temp, destination)
    finally:
        _discard(temp)

    logger.info("Downloaded %s", destination.name)
    return destination


@dataclass(frozen=True)
class DownloadJob:
    url: str
    destination: Path
    expected_sha1: Optional[str] = None


async def download_all(
    client: httpx.AsyncClient,
    jobs: Sequence[DownloadJob],
    limit: int,
    cfg: Optional[FetchConfig] = None,
) -> List[BatchResult[DownloadJob, Path]]:
    seen = set()
    for job in jobs:
        key = Path(job.destination).resolve()
        if key in seen:
            raise ValidationError(f"Duplicate download destination {job.destination}")
        seen.add(key)

    async def _run(job: DownloadJob) -> Path:
        return await download(client, job.url, job.destination, job.expected_sha1, cfg)

    return await run_bounded(jobs, limit, _run, label="download")
