from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator
from pydantic.alias_generators import to_camel


# =========================
# RAW REPORT RESULT (input)
# =========================
class RawModel(BaseModel):
    """Base for the reporting engine payload: camelCase on the wire."""

    # Engines send numeric grouping keys and labels, e.g. {"key": 0}
    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", coerce_numbers_to_str=True
    )


class Cell(RawModel):
    label: Optional[str] = None
    # Only meaningful for lookup columns: the id the link is built from
    value: Any = None


class DataRow(RawModel):
    data_cells: List[Optional[Cell]] = Field(default_factory=list, alias="dataCells")


class FactTable(RawModel):
    aggregates: List[Optional[Cell]] = Field(default_factory=list)
    rows: List[DataRow] = Field(default_factory=list)


class DetailColumnInfo(RawModel):
    label: Optional[str] = None
    name: Optional[str] = None


class ColumnInfo(RawModel):
    label: Optional[str] = None


class Grouping(RawModel):
    key: str
    label: Optional[str] = None


class GroupingsDown(RawModel):
    groupings: List[Grouping] = Field(default_factory=list)


class ReportMetadata(RawModel):
    id: str
    name: Optional[str] = None
    detail_columns: Optional[List[str]] = Field(default=None, alias="detailColumns")


class ReportExtendedMetadata(RawModel):
    # A null entry counts as missing metadata, not as a broken payload
    detail_column_info: Dict[str, Optional[DetailColumnInfo]] = Field(
        default_factory=dict, alias="detailColumnInfo"
    )
    grouping_column_info: Dict[str, Optional[ColumnInfo]] = Field(
        default_factory=dict, alias="groupingColumnInfo"
    )
    aggregate_column_info: Dict[str, Optional[ColumnInfo]] = Field(
        default_factory=dict, alias="aggregateColumnInfo"
    )


class RawResult(RawModel):
    report_metadata: ReportMetadata = Field(alias="reportMetadata")
    report_extended_metadata: ReportExtendedMetadata = Field(
        alias="reportExtendedMetadata"
    )
    groupings_down: Optional[GroupingsDown] = Field(default=None, alias="groupingsDown")
    fact_map: Dict[str, FactTable] = Field(default_factory=dict, alias="factMap")

    @property
    def groupings(self) -> List[Grouping]:
        if self.groupings_down is None:
            return []
        return self.groupings_down.groupings


# =========================
# TABLE VIEW (output)
# =========================
class ViewModel(BaseModel):
    """Base for the table view: camelCase in responses, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ColumnKind(str, Enum):
    TEXT = "text"
    LINK = "url"


class ColumnSpec(ViewModel):
    label: str
    field_name: str
    kind: ColumnKind = ColumnKind.TEXT
    # Set for LINK columns: the record key holding the link's display text
    link_display_field: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def record_key(self) -> str:
        """Key under which a row stores this column's display value."""
        return self.link_display_field or self.field_name


class AggregateEntry(ViewModel):
    field_name: str
    value: Optional[str] = None


class RowRecord(ViewModel):
    """
    One table row. Serialized flat, the field keys sit beside the id:
        {"id": "row-0", "Owner": "Alice", "OwnerLink": "/005xx"}
    """

    id: str
    values: Dict[str, Optional[str]] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def collect_flat_values(cls, data: Any) -> Any:
        if isinstance(data, dict) and "values" not in data:
            values = {key: value for key, value in data.items() if key != "id"}
            return {"id": data.get("id"), "values": values}
        return data

    @model_serializer(mode="plain")
    def serialize_flat(self) -> Dict[str, Any]:
        return {"id": self.id, **self.values}


class GroupNode(ViewModel):
    id: str
    group_label: Optional[str] = None
    children: List[RowRecord] = Field(default_factory=list)


class ReportView(ViewModel):
    report_link: str
    title: Optional[str] = None
    grouped: bool = False
    columns: List[ColumnSpec] = Field(default_factory=list)
    aggregates: List[AggregateEntry] = Field(default_factory=list)
    # Exactly one of these is populated, depending on `grouped`
    rows: List[RowRecord] = Field(default_factory=list)
    groups: List[GroupNode] = Field(default_factory=list)
