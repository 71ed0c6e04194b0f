# app/core/etl/ingest.py
"""
INGEST MODULE - Get a raw report result from the reporting engine

Purpose:
    1. Run the report on the upstream reporting engine (HTTP)
    2. Recognise the "not found" answer
    3. Parse the JSON payload into a RawResult (no reshaping yet - that's transform.py's job)

Data Flow:
    report name → fetch_report_payload() → is_not_found()? → parse_report_result() → RawResult
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from app.core.config import settings
from app.core.schemas import RawResult

logger = logging.getLogger(__name__)


class MalformedReportError(ValueError):
    """The payload can't be parsed or lacks the nodes a transformation needs."""


# ============================================================================
# STEP 1: FETCH FROM THE REPORTING ENGINE
# ============================================================================


def build_headers() -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if settings.REPORTS_API_TOKEN:
        headers["Authorization"] = f"Bearer {settings.REPORTS_API_TOKEN}"
    return headers


async def fetch_report_payload(
    report_name: str, client: Optional[httpx.AsyncClient] = None
) -> str:
    """
    Run a report upstream and return the raw response body.

    The engine answers either with the report JSON or with the plain
    not-found sentinel. A 404 is reported as that sentinel too, so callers
    only have one not-found case to check.

    Args:
        report_name: Developer name of the report
        client: Optional client to reuse (tests pass one with a mock transport)

    Returns:
        Response text, unparsed

    Raises:
        httpx.HTTPError: transport failures and non-404 error statuses
    """
    url = f"{settings.REPORTS_API_URL.rstrip('/')}/{quote(report_name, safe='')}"
    logger.info(f"Fetching report from: {url}")

    if client is None:
        async with httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT_SECONDS) as own_client:
            return await _get_payload(own_client, url)
    return await _get_payload(client, url)


async def _get_payload(client: httpx.AsyncClient, url: str) -> str:
    response = await client.get(url, headers=build_headers())

    if response.status_code == httpx.codes.NOT_FOUND:
        logger.info(f"Reporting engine returned 404 for {url}")
        return settings.REPORT_NOT_FOUND_SENTINEL

    response.raise_for_status()
    return response.text


# ============================================================================
# STEP 2: NOT FOUND CHECK
# ============================================================================


def is_not_found(payload: Any) -> bool:
    """
    True when the engine answered with the not-found sentinel.

    Accepts the sentinel bare ("Report not found") or JSON quoted
    ("\\"Report not found\\""), since some engines encode every body as JSON.
    """
    if not isinstance(payload, str):
        return False

    text = payload.strip()
    if text == settings.REPORT_NOT_FOUND_SENTINEL:
        return True

    if text.startswith('"'):
        try:
            return json.loads(text) == settings.REPORT_NOT_FOUND_SENTINEL
        except ValueError:
            return False

    return False


# ============================================================================
# STEP 3: PARSE
# ============================================================================


def parse_report_result(payload: Any) -> RawResult:
    """
    Parse the engine's payload into a RawResult.

    Handles:
        - JSON text of the result object
        - JSON text of a string that itself holds the result (double encoded)
        - An already decoded dict

    Raises:
        MalformedReportError: not JSON, not an object, or missing
            reportMetadata.id / reportExtendedMetadata
    """
    data = payload
    # Unwrap at most two layers: raw text, then a JSON string holding the object
    for _ in range(2):
        if not isinstance(data, str):
            break
        try:
            data = json.loads(data)
        except ValueError as e:
            raise MalformedReportError(f"Report payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedReportError(f"Unexpected report payload: {type(data).__name__}")

    try:
        return RawResult.model_validate(data)
    except ValidationError as e:
        raise MalformedReportError(f"Report payload is missing required nodes: {e}") from e
