import json
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.core.etl import ingest


def cell(label: Optional[str], value: Any = None) -> Dict[str, Any]:
    return {"label": label, "value": value}


def make_result(
    detail_column_info: Dict[str, Dict[str, str]],
    rows: Optional[List[List[Any]]] = None,
    detail_columns: Optional[List[str]] = None,
    groupings: Optional[List[Dict[str, str]]] = None,
    group_rows: Optional[Dict[str, List[List[Any]]]] = None,
    grouping_column_info: Optional[Dict[str, Dict[str, str]]] = None,
    aggregate_column_info: Optional[Dict[str, Dict[str, str]]] = None,
    aggregates: Optional[List[Any]] = None,
    report_id: str = "00O000000000001",
) -> Dict[str, Any]:
    """Build a reporting engine payload the way the engine sends it (camelCase)."""
    fact_map = {
        "T!T": {
            "aggregates": aggregates or [],
            "rows": [{"dataCells": cells} for cells in rows or []],
        }
    }
    for key, cells_list in (group_rows or {}).items():
        fact_map[f"{key}!T"] = {
            "aggregates": [],
            "rows": [{"dataCells": cells} for cells in cells_list],
        }

    report_metadata = {"id": report_id, "name": "Test Report"}
    if detail_columns is not None:
        report_metadata["detailColumns"] = detail_columns

    return {
        "reportMetadata": report_metadata,
        "reportExtendedMetadata": {
            "detailColumnInfo": detail_column_info,
            "groupingColumnInfo": grouping_column_info or {},
            "aggregateColumnInfo": aggregate_column_info or {},
        },
        "groupingsDown": {"groupings": groupings or []},
        "factMap": fact_map,
    }


@pytest.fixture
def flat_payload():
    """Two columns, two rows, one aggregate."""
    return make_result(
        detail_column_info={
            "ACCOUNT.NAME": {"label": "Name", "name": "Name"},
            "AMOUNT": {"label": "Amount", "name": "Amount"},
        },
        detail_columns=["ACCOUNT.NAME", "AMOUNT"],
        rows=[
            [cell("Acme"), cell("$100.00", 100)],
            [cell("Globex"), cell("$250.00", 250)],
        ],
        aggregate_column_info={"s!AMOUNT": {"label": "Sum of Amount"}},
        aggregates=[cell("$350.00", 350)],
    )


@pytest.fixture
def grouped_payload():
    """Two groupings with 3 and 5 rows."""
    return make_result(
        detail_column_info={
            "OPPORTUNITY_NAME": {"label": "Opportunity Name", "name": "Name"},
            "AMOUNT": {"label": "Amount", "name": "Amount"},
        },
        detail_columns=["OPPORTUNITY_NAME", "AMOUNT"],
        groupings=[{"key": "g1", "label": "Prospecting"}, {"key": "g2", "label": "Closed Won"}],
        group_rows={
            "g1": [[cell(f"Deal {i}"), cell(f"${i}")] for i in range(3)],
            "g2": [[cell(f"Deal {i}"), cell(f"${i}")] for i in range(5)],
        },
        grouping_column_info={"STAGE_NAME": {"label": "STAGE name"}},
    )


@pytest.fixture
def fake_fetch(monkeypatch):
    """Replace the upstream call with a canned payload; records the calls."""
    calls = []

    def install(payload):
        body = payload if isinstance(payload, str) else json.dumps(payload)

        async def fetch(report_name, client=None):
            calls.append(report_name)
            return body

        monkeypatch.setattr(ingest, "fetch_report_payload", fetch)
        return calls

    return install


# Client
@pytest_asyncio.fixture(scope="function")
async def client():
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
