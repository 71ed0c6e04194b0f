import json

import httpx
import pytest

from app.core.config import settings
from app.core.etl import ingest, pipeline, transform
from app.core.etl.pipeline import PipelineStatus


# =========================
# INGEST
# =========================
def test_not_found_sentinel_bare_and_quoted():
    assert ingest.is_not_found("Report not found")
    assert ingest.is_not_found('  "Report not found"\n')
    assert not ingest.is_not_found('{"reportMetadata": {}}')
    assert not ingest.is_not_found('"something else"')
    assert not ingest.is_not_found(None)


def test_parse_double_encoded_payload(flat_payload):
    payload = json.dumps(json.dumps(flat_payload))

    result = ingest.parse_report_result(payload)

    assert result.report_metadata.id == "00O000000000001"
    assert result.report_metadata.detail_columns == ["ACCOUNT.NAME", "AMOUNT"]
    assert len(result.fact_map["T!T"].rows) == 2


@pytest.mark.parametrize(
    "payload",
    [
        "not json at all",
        "[1, 2, 3]",
        json.dumps({"reportMetadata": {"id": "x"}}),
        json.dumps({"reportExtendedMetadata": {}}),
    ],
)
def test_parse_malformed_payload(payload):
    with pytest.raises(ingest.MalformedReportError):
        ingest.parse_report_result(payload)


@pytest.mark.asyncio
async def test_fetch_report_payload(flat_payload):
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        return httpx.Response(200, text=json.dumps(flat_payload))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        body = await ingest.fetch_report_payload("Pipeline_Report", client=client)

    assert seen["url"].endswith("/Pipeline_Report")
    assert json.loads(body) == flat_payload


@pytest.mark.asyncio
async def test_fetch_404_reports_sentinel():
    transport = httpx.MockTransport(lambda request: httpx.Response(404))

    async with httpx.AsyncClient(transport=transport) as client:
        body = await ingest.fetch_report_payload("Missing", client=client)

    assert body == settings.REPORT_NOT_FOUND_SENTINEL


# =========================
# PIPELINE
# =========================
@pytest.mark.asyncio
async def test_pipeline_completes(fake_fetch, flat_payload):
    calls = fake_fetch(flat_payload)

    run = await pipeline.run_report_pipeline(
        "Accounts", aggregate_field_names="Sum of Amount, Unknown", lookups=""
    )

    assert calls == ["Accounts"]
    assert run["status"] == PipelineStatus.COMPLETED
    view = run["result"]
    assert len(view.rows) == 2
    assert [a.field_name for a in view.aggregates] == ["Sum of Amount"]
    assert [log["step"] for log in run["logs"]] == ["fetch", "parse", "transform"]


@pytest.mark.asyncio
async def test_pipeline_not_found_skips_transform(fake_fetch, monkeypatch):
    fake_fetch(settings.REPORT_NOT_FOUND_SENTINEL)

    def explode(*args, **kwargs):
        raise AssertionError("transform must not run for a missing report")

    monkeypatch.setattr(transform, "build_columns", explode)
    monkeypatch.setattr(transform, "map_row", explode)

    run = await pipeline.run_report_pipeline("Missing")

    assert run["status"] == PipelineStatus.NOT_FOUND
    assert run["error"] == "Report not found"
    assert "result" not in run


@pytest.mark.asyncio
async def test_pipeline_malformed_payload_fails(fake_fetch):
    fake_fetch("{broken")

    run = await pipeline.run_report_pipeline("Broken")

    assert run["status"] == PipelineStatus.FAILED
    assert "not valid JSON" in run["error"]
    assert run["logs"][-1]["level"] == "error"


@pytest.mark.asyncio
async def test_pipeline_transport_error_fails(monkeypatch):
    async def fetch(report_name, client=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(ingest, "fetch_report_payload", fetch)

    run = await pipeline.run_report_pipeline("Anything")

    assert run["status"] == PipelineStatus.FAILED
    assert run["logs"][-1]["step"] == "fetch"


@pytest.mark.asyncio
async def test_fetch_escapes_report_name():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.raw_path.decode()
        seen["query"] = request.url.query
        return httpx.Response(200, text="{}")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await ingest.fetch_report_payload("Q1 report?x=1#top", client=client)

    assert seen["path"].endswith("/Q1%20report%3Fx%3D1%23top")
    assert seen["query"] == b""


@pytest.mark.asyncio
async def test_pipeline_unexpected_error_fails(fake_fetch, flat_payload, monkeypatch):
    fake_fetch(flat_payload)

    def broken(*args, **kwargs):
        raise RuntimeError("column builder exploded")

    monkeypatch.setattr(transform, "build_columns", broken)

    run = await pipeline.run_report_pipeline("Accounts")

    assert run["status"] == PipelineStatus.FAILED
    assert run["error"] == "column builder exploded"
    assert run["logs"][-1]["level"] == "error"
