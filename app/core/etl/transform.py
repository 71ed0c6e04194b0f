# app/core/etl/transform.py
"""
TRANSFORM MODULE - Turn a raw report result into a UI-ready table

Purpose:
    1. Build the ordered column list from report metadata
    2. Pick the requested aggregate (summary) values by label
    3. Map each row's positional data cells onto the columns
    4. Build the two-level group tree for grouped reports

Data Flow:
    RawResult (from ingest.py) → build_columns() → extract_aggregates()
                                       ↓
                         build_cell_positions() (once per column list)
                                       ↓
                      map_row() per row  /  build_group_tree() per grouping

Everything here is pure and synchronous: nothing is cached or shared between
calls, so two reports transformed at the same time never see each other's state.
"""

import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from app.core.config import settings
from app.core.schemas import (
    AggregateEntry,
    Cell,
    ColumnInfo,
    ColumnKind,
    ColumnSpec,
    DetailColumnInfo,
    FactTable,
    Grouping,
    GroupNode,
    RowRecord,
)

logger = logging.getLogger(__name__)

GROUP_LABEL_FIELD = "groupLabel"
LINK_SUFFIX = "Link"
ROOT_SCOPE = "T!T"


def group_scope(group_key: str) -> str:
    """Fact map key for one grouping, e.g. "0!T"."""
    return f"{group_key}!T"


def parse_name_list(raw: Optional[str]) -> List[str]:
    """
    Split a comma separated list of names coming from the caller.

    Examples:
        "Amount, Count ,," → ["Amount", "Count"]
        None → []
    """
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]


# ============================================================================
# STEP 1: COLUMNS
# ============================================================================


def title_case(label: str) -> str:
    """
    Capitalize the first letter of every whitespace separated word and
    lower-case the rest ("ACCOUNT OWNER" → "Account Owner").
    """
    return re.sub(
        r"\S+", lambda match: match.group(0)[:1].upper() + match.group(0)[1:].lower(), label
    )


def resolve_group_label(grouping_column_info: Mapping[str, Optional[ColumnInfo]]) -> str:
    """Label for the synthetic group column, from the first grouping column."""
    first = next(iter(grouping_column_info.values()), None)
    label = first.label if first is not None and first.label else settings.DEFAULT_GROUP_LABEL
    return title_case(label)


def build_columns(
    detail_column_info: Mapping[str, Optional[DetailColumnInfo]],
    detail_columns: Optional[Sequence[str]] = None,
    lookups: Iterable[str] = (),
    grouping_column_info: Optional[Mapping[str, Optional[ColumnInfo]]] = None,
    grouped: bool = False,
) -> List[ColumnSpec]:
    """
    Build the ordered column list for the table.

    Order follows `detail_columns` (the report's display order) when given,
    otherwise the order of the metadata mapping. Keys without metadata are
    dropped quietly.

    Lookup columns become links: the row keeps the display text under the
    column's stable name and the URL under "<name>Link". Every other column
    is keyed by the raw column key, dots included ("ACCOUNT.NAME").

    Args:
        detail_column_info: column key → {label, name}
        detail_columns: declared display order, may be None
        lookups: column keys to render as links
        grouping_column_info: grouping column key → {label}
        grouped: prepend the synthetic "groupLabel" column

    Returns:
        Ordered list of ColumnSpec
    """
    lookup_keys: Set[str] = set(lookups)
    order = detail_columns if detail_columns is not None else list(detail_column_info)

    columns: List[ColumnSpec] = []
    for key in order:
        info = detail_column_info.get(key)
        if info is None:
            logger.debug(f"Column {key!r} has no metadata, skipping")
            continue

        label = info.label or ""
        if key in lookup_keys:
            # Stable name missing: fall back to the column key
            name = info.name or key
            columns.append(
                ColumnSpec(
                    label=label,
                    field_name=name + LINK_SUFFIX,
                    kind=ColumnKind.LINK,
                    link_display_field=name,
                )
            )
        else:
            columns.append(ColumnSpec(label=label, field_name=key))

    if grouped:
        group_column = ColumnSpec(
            label=resolve_group_label(grouping_column_info or {}),
            field_name=GROUP_LABEL_FIELD,
        )
        columns.insert(0, group_column)

    return columns


# ============================================================================
# STEP 2: AGGREGATES
# ============================================================================


def index_aggregate_labels(
    aggregate_column_info: Mapping[str, Optional[ColumnInfo]],
) -> Dict[str, int]:
    """
    Map each aggregate column label to its position.

    When two columns share a label the later one wins. That is the behavior
    callers rely on, so it is kept, but it is logged so it can be spotted.
    """
    positions: Dict[str, int] = {}
    for idx, info in enumerate(aggregate_column_info.values()):
        # Unlabelled columns still take up a position
        if info is None or info.label is None:
            continue
        if info.label in positions:
            logger.warning(
                f"Aggregate label {info.label!r} is declared more than once, "
                f"using position {idx} instead of {positions[info.label]}"
            )
        positions[info.label] = idx
    return positions


def extract_aggregates(
    requested: Iterable[str],
    aggregate_column_info: Mapping[str, Optional[ColumnInfo]],
    root_fact: Optional[FactTable],
) -> List[AggregateEntry]:
    """
    Pick the requested aggregate values out of the root fact table.

    Names are matched against aggregate column *labels*. Names that match
    nothing are left out; names that match a position with no value come back
    with value None.

    Example:
        requested = ["Sum of Amount", "Nope"]
        aggregateColumnInfo = {"s!AMOUNT": {"label": "Sum of Amount"}}
        factMap["T!T"].aggregates = [{"label": "$1,500.00", "value": 1500}]
        → [AggregateEntry(field_name="Sum of Amount", value="$1,500.00")]
    """
    positions = index_aggregate_labels(aggregate_column_info)
    values = root_fact.aggregates if root_fact is not None else []

    entries: List[AggregateEntry] = []
    for name in requested:
        idx = positions.get(name)
        if idx is None:
            logger.debug(f"Aggregate {name!r} does not match any aggregate column")
            continue

        cell = values[idx] if idx < len(values) else None
        entries.append(
            AggregateEntry(field_name=name, value=cell.label if cell is not None else None)
        )

    return entries


# ============================================================================
# STEP 3: ROWS
# ============================================================================


def build_cell_positions(columns: Sequence[ColumnSpec]) -> List[Tuple[ColumnSpec, int]]:
    """
    Pair every real column with the data cell it reads.

    Data cells follow the report's detail column order, so the n-th real
    column reads the n-th cell. The synthetic group column has no cell.
    """
    real_columns = [col for col in columns if col.field_name != GROUP_LABEL_FIELD]
    return [(col, cell_idx) for cell_idx, col in enumerate(real_columns)]


def map_row(
    cells: Sequence[Optional[Cell]],
    positions: Sequence[Tuple[ColumnSpec, int]],
    row_id: str,
) -> RowRecord:
    """
    Map one row's data cells to a field-keyed record.

    Missing or short cells give None. Link columns also get "<name>Link" =
    "/<value>" when the cell carries a value.
    """
    values: Dict[str, Optional[str]] = {}

    for col, cell_idx in positions:
        cell = cells[cell_idx] if cell_idx < len(cells) else None
        key = col.record_key

        values[key] = cell.label if cell is not None else None

        if col.kind == ColumnKind.LINK and cell is not None and cell.value:
            values[key + LINK_SUFFIX] = f"/{cell.value}"

    return RowRecord(id=row_id, values=values)


def map_rows(
    fact: Optional[FactTable],
    positions: Sequence[Tuple[ColumnSpec, int]],
    id_prefix: str = "row",
) -> List[RowRecord]:
    """Map every row of a fact table, ids are "<id_prefix>-<index>"."""
    rows = fact.rows if fact is not None else []
    return [
        map_row(row.data_cells, positions, f"{id_prefix}-{idx}")
        for idx, row in enumerate(rows)
    ]


# ============================================================================
# STEP 4: GROUPS
# ============================================================================


def build_group_tree(
    groupings: Sequence[Grouping],
    fact_map: Mapping[str, FactTable],
    positions: Sequence[Tuple[ColumnSpec, int]],
) -> List[GroupNode]:
    """
    One node per grouping, in declared order, each holding its own rows.

    A grouping whose fact table is missing just gets no children.
    """
    nodes: List[GroupNode] = []

    for group in groupings:
        fact = fact_map.get(group_scope(group.key))
        if fact is None:
            logger.debug(f"No fact table for grouping {group.key!r}")

        children = map_rows(fact, positions, id_prefix=f"row-{group.key}")
        nodes.append(
            GroupNode(id=f"group-{group.key}", group_label=group.label, children=children)
        )

    return nodes
