"""
SIMPAS Remote Fetch-with-Fallback

Reads a published sheet export over HTTP and degrades to the last good
cached copy when the network or the sheet's sharing settings fail.

FAILURE PROTOCOL
----------------
- NetworkFailure       transport error or non-2xx status   -> cache fallback
- AccessDeniedFailure  HTML body (Google login wall)       -> cache fallback
- CacheCorruption      cached JSON unreadable              -> empty dataset
- NoDataAvailable      fetch failed and no cache entry     -> raised to caller

Only NoDataAvailable escapes fetch_with_fallback().
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import requests

from csv_decoder import Schema, decode
from kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: float = 15.0

NO_CACHE_HEADERS: dict[str, str] = {
    "Pragma": "no-cache",
    "Cache-Control": "no-cache, no-store, must-revalidate",
}

HTML_MARKERS: tuple[str, ...] = ("<!doctype", "<html")


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


@dataclass
class SyncError(Exception):
    """Structured sync failure, printable as an operator notice."""
    reason: str
    source: str
    operator_fix_steps: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [
            "═" * 60,
            f"SIMPAS SYNC: {type(self).__name__}",
            "═" * 60,
            f"Reason : {self.reason}",
            f"Source : {self.source}",
        ]
        if self.operator_fix_steps:
            lines.append("Fix Steps:")
            for i, step in enumerate(self.operator_fix_steps, 1):
                lines.append(f"  {i}. {step}")
        lines.append("═" * 60)
        return "\n".join(lines)


@dataclass
class NetworkFailure(SyncError):
    status_code: Optional[int] = None


@dataclass
class AccessDeniedFailure(SyncError):
    pass


@dataclass
class CacheCorruption(SyncError):
    pass


@dataclass
class NoDataAvailable(SyncError):
    pass


@dataclass
class FetchResult:
    records: list
    served_from_cache: bool


# ---------------------------------------------------------------------------
# Internal utilities
# ---------------------------------------------------------------------------


def _looks_like_html(text: str) -> bool:
    head = text.lstrip()[:32].lower()
    return head.startswith(HTML_MARKERS)


def _fetch_text(
    url: str,
    session: requests.Session,
    timeout: float,
) -> str:
    """GET the export. Raises NetworkFailure or AccessDeniedFailure."""
    params = {"nocache": str(int(time.time() * 1000))}
    try:
        response = session.get(url, params=params, headers=NO_CACHE_HEADERS, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkFailure(
            reason=f"Request failed: {e}",
            source=url,
            operator_fix_steps=["Check the internet connection and try again."],
        ) from e

    if not response.ok:
        raise NetworkFailure(
            reason=f"HTTP error, status {response.status_code}",
            source=url,
            operator_fix_steps=["Verify the sheet is still published to the web as CSV."],
            status_code=response.status_code,
        )

    # Sheet exports are UTF-8 but sent without a charset, where requests
    # would guess ISO-8859-1
    text = response.content.decode("utf-8-sig", errors="replace")
    if _looks_like_html(text):
        raise AccessDeniedFailure(
            reason="Sheet returned an HTML page instead of CSV data",
            source=url,
            operator_fix_steps=[
                "Open the sheet's sharing settings.",
                "Publish the sheet to the web in CSV format (anyone with the link).",
            ],
        )
    return text


def _read_cache(store: KeyValueStore, cache_key: str, schema: Schema) -> Optional[list]:
    """
    Returns cached records, or None when no entry exists.

    Raises CacheCorruption when the entry cannot be deserialized.
    """
    raw = store.get(cache_key)
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
        if not isinstance(payload, list):
            raise ValueError("cache payload is not a list")
        return [schema.from_dict(item) for item in payload]
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise CacheCorruption(
            reason=f"Cached {schema.name} unreadable: {e}",
            source=cache_key,
            operator_fix_steps=["Refresh once the connection is back to rebuild the cache."],
        ) from e


def _write_cache(store: KeyValueStore, cache_key: str, records: list) -> None:
    try:
        store.set(cache_key, json.dumps([r.to_dict() for r in records], ensure_ascii=False))
    except OSError as e:
        logger.error("Could not write cache %s: %s", cache_key, e)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def fetch_with_fallback(
    source_url: str,
    cache_key: str,
    schema: Schema,
    store: KeyValueStore,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> FetchResult:
    """
    Fetch and decode one sheet export, falling back to the cache.

    Parameters
    ----------
    source_url : str
        Published CSV URL. A `nocache` query parameter is appended per call.
    cache_key : str
        Store key holding the last successful decode as a JSON array.
    schema : Schema
        STUDENT_SCHEMA or VIOLATION_SCHEMA.
    store : KeyValueStore
        Injected cache storage.
    session : requests.Session, optional
        HTTP session; a fresh one is used when omitted.

    Returns
    -------
    FetchResult
        Records plus whether they were served from the cache.

    Raises
    ------
    NoDataAvailable
        The fetch failed and no cache entry exists.
    """
    http = session or requests.Session()
    try:
        text = _fetch_text(source_url, http, timeout)
    except (NetworkFailure, AccessDeniedFailure) as failure:
        logger.warning("Fetch failed for %s, attempting cache fallback: %s", cache_key, failure.reason)
        try:
            cached = _read_cache(store, cache_key, schema)
        except CacheCorruption as corruption:
            logger.error("Cache corrupted for %s: %s", cache_key, corruption.reason)
            return FetchResult(records=[], served_from_cache=True)
        if cached is None:
            raise NoDataAvailable(
                reason=failure.reason,
                source=source_url,
                operator_fix_steps=failure.operator_fix_steps,
            ) from failure
        return FetchResult(records=cached, served_from_cache=True)
    finally:
        if session is None:
            http.close()

    records = decode(text, schema)
    _write_cache(store, cache_key, records)
    logger.info("Fetched %d %s rows", len(records), schema.name)
    return FetchResult(records=records, served_from_cache=False)
