"""wh40k_etl.remote_source

HTTP retrieval of the Wahapedia CSV exports and of the remote freshness
marker.

  - Polite: exactly one in-flight request; a fixed delay after every
    successful download in a batch.
  - Bounded retry: each request is attempted up to max_retries times with
    a fixed delay in between; the final error propagates.
  - Validated: a response whose Content-Type is not text/csv counts as a
    failed attempt, same as a timeout or a non-2xx status.

The base location is supplied base64-encoded (WH40K_REMOTE) and decoded
once at construction.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

import requests

from wh40k_etl.csv_loader import DELIMITER
from wh40k_etl.normalize import parse_marker
from wh40k_etl.shared import (
    ConfigurationError,
    DownloadBatchError,
    DownloadError,
    DownloadResult,
)
from wh40k_etl.tables import MARKER_FILE

log = logging.getLogger(__name__)

REMOTE_ENV_VAR = "WH40K_REMOTE"
CSV_CONTENT_TYPE = "text/csv"

ResponseValidator = Callable[[requests.Response], bool]


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

@dataclass
class DownloadOptions:
    """Retry and pacing knobs. All durations are in seconds."""

    max_retries: int = 3
    retry_delay: float = 1.0
    rate_limit: float = 0.2
    timeout: float = 5.0


# ---------------------------------------------------------------------------
# Retry helper
# ---------------------------------------------------------------------------

def is_csv_response(resp: requests.Response) -> bool:
    content_type = resp.headers.get("Content-Type") or ""
    return CSV_CONTENT_TYPE in content_type.lower()


def download_with_retry(
    session: requests.Session,
    url: str,
    options: DownloadOptions,
    validate: ResponseValidator | None = None,
) -> str:
    """GET url, retrying on transport errors, non-2xx and validation failures.

    Returns the response body as text. On the final attempt the original
    error propagates to the caller.
    """
    attempts = max(1, options.max_retries)
    for attempt in range(1, attempts + 1):
        try:
            resp = session.get(url, timeout=options.timeout)
            resp.raise_for_status()
            if validate is not None and not validate(resp):
                raise DownloadError(
                    f"validation failed for {url} "
                    f"(content-type={resp.headers.get('Content-Type')!r})"
                )
            if "charset" not in (resp.headers.get("Content-Type") or "").lower():
                resp.encoding = "utf-8"
            return resp.text
        except (requests.RequestException, DownloadError) as exc:
            if attempt >= attempts:
                raise
            log.warning(
                "Attempt %d/%d for %s failed (%s); retrying in %.1fs",
                attempt, attempts, url, exc, options.retry_delay,
            )
            time.sleep(options.retry_delay)
    raise AssertionError("unreachable")  # pragma: no cover


def parse_marker_csv(raw: str) -> datetime:
    """Extract the timestamp from the marker file body.

    The first line is a header; the timestamp is the first non-empty field
    of the second non-empty line. Raises ValueError if it is missing or
    cannot be parsed.
    """
    lines = []
    for line in raw.replace("\r", "").split("\n"):
        cells = [c.strip() for c in line.split(DELIMITER) if c.strip()]
        if cells:
            lines.append(cells)
    if len(lines) < 2:
        raise ValueError("marker file has no timestamp line")
    marker = parse_marker(lines[1][0])
    if marker is None:
        raise ValueError(f"unparseable marker timestamp {lines[1][0]!r}")
    return marker


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

def decode_base_url(encoded: str | None) -> str:
    if not encoded or not encoded.strip():
        raise ConfigurationError(f"{REMOTE_ENV_VAR} is not set")
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"{REMOTE_ENV_VAR} is not valid base64: {exc}") from exc
    if not decoded:
        raise ConfigurationError(f"{REMOTE_ENV_VAR} decodes to an empty location")
    return decoded


class RemoteSource:
    """Client for the remote directory holding the CSV exports."""

    def __init__(
        self,
        encoded_base: str | None,
        options: DownloadOptions | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = decode_base_url(encoded_base)
        self.options = options or DownloadOptions()
        self.session = session or requests.Session()

    @classmethod
    def from_env(
        cls,
        env_var: str = REMOTE_ENV_VAR,
        options: DownloadOptions | None = None,
    ) -> RemoteSource:
        return cls(os.environ.get(env_var), options=options)

    def url_for(self, file_name: str) -> str:
        return f"{self.base_url.rstrip('/')}/{file_name}"

    def fetch_remote_marker(self) -> datetime | None:
        """Return the remote dataset timestamp, or None if it cannot be determined."""
        url = self.url_for(MARKER_FILE)
        log.info("Fetching remote update marker from %s", url)
        try:
            raw = download_with_retry(self.session, url, self.options, is_csv_response)
            marker = parse_marker_csv(raw)
        except (requests.RequestException, DownloadError, ValueError) as exc:
            log.error("Failed to fetch remote update marker: %s", exc)
            return None
        log.info("Remote update marker: %s", marker.isoformat())
        return marker

    def fetch_all(self, files: list[str] | tuple[str, ...], dest_dir: Path) -> list[DownloadResult]:
        """Download every file in order into dest_dir.

        Each file is attempted independently; if any of them still fails
        after retries, DownloadBatchError is raised listing all failures.
        """
        if not files:
            raise ValueError("no files provided for download")
        dest_dir.mkdir(parents=True, exist_ok=True)
        results: list[DownloadResult] = []

        for file_name in files:
            url = self.url_for(file_name)
            path = dest_dir / file_name
            log.info("Downloading %s", file_name)
            try:
                body = download_with_retry(self.session, url, self.options, is_csv_response)
                path.write_text(body, encoding="utf-8")
            except (requests.RequestException, DownloadError, OSError) as exc:
                status = getattr(getattr(exc, "response", None), "status_code", None)
                message = f"HTTP {status} - {exc}" if status else str(exc)
                log.error("Failed to download %s: %s", file_name, message)
                results.append(DownloadResult(file_name, url, success=False, error=message))
                continue
            results.append(DownloadResult(file_name, url, success=True, path=path))
            time.sleep(self.options.rate_limit)

        failures = [r for r in results if not r.success]
        log.info(
            "Download summary: %d/%d files downloaded", len(results) - len(failures), len(files)
        )
        if failures:
            raise DownloadBatchError(failures, total=len(files))
        return results
