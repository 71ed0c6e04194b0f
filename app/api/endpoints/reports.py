from typing import Optional

from fastapi import APIRouter, HTTPException, status

from app.core import schemas
from app.core.etl import pipeline

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/{report_name}", response_model=schemas.ReportView)
async def get_report(
    report_name: str,
    lookups: Optional[str] = None,
    aggregate_field_names: Optional[str] = None,
    title: Optional[str] = None,
):
    """
    Run a report and return it as a table: columns, aggregates and rows
    (or a group tree when the report is grouped).

    `lookups` and `aggregate_field_names` are comma separated lists.
    """
    run = await pipeline.run_report_pipeline(
        report_name,
        aggregate_field_names=aggregate_field_names,
        lookups=lookups,
        title=title,
    )

    if run["status"] == pipeline.PipelineStatus.NOT_FOUND:
        raise HTTPException(status.HTTP_404_NOT_FOUND, run["error"])
    if run["status"] == pipeline.PipelineStatus.FAILED:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, run["error"])

    return run["result"]
