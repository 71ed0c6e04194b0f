from typing import Dict, Any, List, Iterable, Optional
from datetime import datetime
from enum import Enum
import logging

import httpx

from app.core.config import settings
from app.core.schemas import RawResult, ReportView
from app.core.etl import ingest, transform


# -----------------------------------------------------------------------------
# PIPELINE MODULE - Orchestration
# Purpose: fetch one report, short-circuit on "not found", parse, then run the
# transform steps in order and report a status the API can act on
# -----------------------------------------------------------------------------


class PipelineStatus(Enum):
    """Outcome of one report run."""

    COMPLETED = "completed"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class PipelineStep(Enum):
    FETCH = "fetch"
    PARSE = "parse"
    TRANSFORM = "transform"


logger = logging.getLogger(__name__)


class PipelineLogger:
    """Collects the log lines of one report run."""

    def __init__(self, report_name: str):
        self.report_name = report_name
        self.start_time = datetime.now()
        self.logs = []

    def log(self, step: PipelineStep, message: str, level: str = "info"):
        """
        Record a message and mirror it to the module logger.
        """
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "step": step.value,
            "message": message,
            "level": level,
            "elapsed_seconds": (datetime.now() - self.start_time).total_seconds(),
        }
        self.logs.append(log_entry)

        if level == "error":
            logger.error(f"[Report {self.report_name}] {step.value}: {message}")
        elif level == "warning":
            logger.warning(f"[Report {self.report_name}] {step.value}: {message}")
        else:
            logger.info(f"[Report {self.report_name}] {step.value}: {message}")

    def get_logs(self) -> List[Dict[str, Any]]:
        return self.logs


def transform_report(
    result: RawResult,
    aggregate_field_names: Iterable[str] = (),
    lookups: Iterable[str] = (),
    title: Optional[str] = None,
) -> ReportView:
    """
    Turn one raw report result into the table view.

    Grouped mode is on when the report declares at least one grouping; the
    rows then come back as a group tree instead of a flat list. The column
    list is built once here and used for every row.

    Args:
        result: Parsed report result
        aggregate_field_names: Aggregate labels to extract, in output order
        lookups: Detail column keys to render as links
        title: Display title passed through to the view

    Returns:
        ReportView with columns, aggregates and rows (or groups)
    """
    metadata = result.report_metadata
    extended = result.report_extended_metadata
    groupings = result.groupings
    grouped = len(groupings) > 0

    columns = transform.build_columns(
        extended.detail_column_info,
        detail_columns=metadata.detail_columns,
        lookups=lookups,
        grouping_column_info=extended.grouping_column_info,
        grouped=grouped,
    )
    aggregates = transform.extract_aggregates(
        aggregate_field_names,
        extended.aggregate_column_info,
        result.fact_map.get(transform.ROOT_SCOPE),
    )
    positions = transform.build_cell_positions(columns)

    view = ReportView(
        report_link=f"/{metadata.id}",
        title=title,
        grouped=grouped,
        columns=columns,
        aggregates=aggregates,
    )
    if grouped:
        view.groups = transform.build_group_tree(groupings, result.fact_map, positions)
    else:
        view.rows = transform.map_rows(result.fact_map.get(transform.ROOT_SCOPE), positions)

    return view


async def run_report_pipeline(
    report_name: str,
    aggregate_field_names: Optional[str] = None,
    lookups: Optional[str] = None,
    title: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    Run the complete report pipeline: fetch -> not found check -> parse -> transform.

    "Not found" stops the run before anything is parsed or transformed and is
    returned as its own status, separate from failures.

    Args:
        report_name: Developer name of the report
        aggregate_field_names: Comma separated aggregate labels
        lookups: Comma separated detail column keys rendered as links
        title: Display title passed through to the view
        client: Optional HTTP client for the fetch

    Returns:
        {"status": PipelineStatus, "result"/"error": ..., "logs": [...]}
    """
    pipeline_logger = PipelineLogger(report_name)

    try:
        pipeline_logger.log(PipelineStep.FETCH, "Running report upstream...")
        payload = await ingest.fetch_report_payload(report_name, client=client)

        if ingest.is_not_found(payload):
            pipeline_logger.log(PipelineStep.FETCH, "Report not found", "warning")
            return {
                "status": PipelineStatus.NOT_FOUND,
                "error": settings.REPORT_NOT_FOUND_SENTINEL,
                "logs": pipeline_logger.get_logs(),
            }

        raw_result = ingest.parse_report_result(payload)
        pipeline_logger.log(
            PipelineStep.PARSE, f"Parsed report {raw_result.report_metadata.id}"
        )

        view = transform_report(
            raw_result,
            aggregate_field_names=transform.parse_name_list(aggregate_field_names),
            lookups=transform.parse_name_list(lookups),
            title=title,
        )
        row_count = (
            sum(len(group.children) for group in view.groups)
            if view.grouped
            else len(view.rows)
        )
        pipeline_logger.log(
            PipelineStep.TRANSFORM,
            f"Transformation completed: {len(view.columns)} columns, {row_count} rows",
        )

        return {
            "status": PipelineStatus.COMPLETED,
            "result": view,
            "logs": pipeline_logger.get_logs(),
        }

    except (httpx.HTTPError, ingest.MalformedReportError) as e:
        step = PipelineStep.FETCH if isinstance(e, httpx.HTTPError) else PipelineStep.PARSE
        pipeline_logger.log(step, f"Report run failed: {str(e)}", "error")
        return {
            "status": PipelineStatus.FAILED,
            "error": str(e),
            "logs": pipeline_logger.get_logs(),
        }

    except Exception as e:
        pipeline_logger.log(
            PipelineStep.TRANSFORM, f"Report run failed unexpectedly: {str(e)}", "error"
        )
        return {
            "status": PipelineStatus.FAILED,
            "error": str(e),
            "logs": pipeline_logger.get_logs(),
        }
