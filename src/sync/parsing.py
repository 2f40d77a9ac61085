"""Turn raw spreadsheet rows into typed import records.

A column mapping ties sheet headers (exact, case-sensitive) to the field names
below. Unknown headers are ignored, so operators can leave unrelated columns in
their sheets.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

ColumnMapping = Dict[str, str]

# Mapping field name -> import record attribute.
TASK_FIELD_ATTRIBUTES = {
    "title": "title",
    "description": "description",
    "scheduledDate": "scheduled_date",
    "moveInDate": "move_in_date",
    "assignedUserEmail": "assigned_user_email",
    "status": "status",
}
PROPERTY_FIELD_ATTRIBUTES = {
    "address": "address",
    "postcode": "postcode",
    "propertyType": "property_type",
    "unitCount": "unit_count",
    "notes": "notes",
}
TASK_FIELDS = tuple(TASK_FIELD_ATTRIBUTES)
PROPERTY_FIELDS = tuple(PROPERTY_FIELD_ATTRIBUTES)

UNIQUE_MARKER_TEMPLATE = "[UNIQUE:{value}]"


@dataclass
class TaskImportRow:
    title: str
    description: Optional[str] = None
    scheduled_date: Optional[str] = None
    move_in_date: Optional[str] = None
    assigned_user_email: Optional[str] = None
    status: Optional[str] = None
    unique_value: Optional[str] = None
    row_number: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        """Sheet-field view of the row, used in error reports."""

        return _payload(self, TASK_FIELD_ATTRIBUTES)


@dataclass
class PropertyImportRow:
    address: str
    postcode: Optional[str] = None
    property_type: Optional[str] = None
    unit_count: Optional[str] = None
    notes: Optional[str] = None
    unique_value: Optional[str] = None
    row_number: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return _payload(self, PROPERTY_FIELD_ATTRIBUTES)


def _payload(row, field_to_attribute: Mapping[str, str]) -> Dict[str, Any]:
    values = asdict(row)
    payload = {
        field_name: values[attribute]
        for field_name, attribute in field_to_attribute.items()
        if values[attribute] is not None
    }
    if row.unique_value is not None:
        payload["uniqueValue"] = row.unique_value
    if row.row_number is not None:
        payload["rowNumber"] = row.row_number
    return payload


def parse_task_rows(
    rows: Sequence[Sequence[Any]],
    column_mapping: Mapping[str, str],
    header_row: Sequence[Any],
    unique_column: Optional[str] = None,
) -> List[TaskImportRow]:
    """Map data rows to :class:`TaskImportRow`, dropping rows without a title."""

    records = _map_rows(rows, column_mapping, header_row, TASK_FIELD_ATTRIBUTES, "title", unique_column)
    return [TaskImportRow(**record) for record in records]


def parse_property_rows(
    rows: Sequence[Sequence[Any]],
    column_mapping: Mapping[str, str],
    header_row: Sequence[Any],
    unique_column: Optional[str] = None,
) -> List[PropertyImportRow]:
    """Map data rows to :class:`PropertyImportRow`, dropping rows without an address."""

    records = _map_rows(rows, column_mapping, header_row, PROPERTY_FIELD_ATTRIBUTES, "address", unique_column)
    return [PropertyImportRow(**record) for record in records]


def _map_rows(
    rows: Sequence[Sequence[Any]],
    column_mapping: Mapping[str, str],
    header_row: Sequence[Any],
    field_to_attribute: Mapping[str, str],
    required_attribute: str,
    unique_column: Optional[str],
) -> List[Dict[str, Any]]:
    if len(rows) <= 1:
        return []

    headers = [_cell_text(cell) or "" for cell in header_row]
    attribute_to_index = build_field_index(column_mapping, headers, field_to_attribute)
    unique_index = find_unique_column_index(headers, unique_column)

    records: List[Dict[str, Any]] = []
    for row_offset, row in enumerate(rows[1:], start=2):
        if not row:
            continue

        record: Dict[str, Any] = {}
        for attribute, column_index in attribute_to_index.items():
            value = _cell_at(row, column_index)
            if value is not None:
                record[attribute] = value

        if not record.get(required_attribute):
            continue

        if unique_index is not None:
            record["unique_value"] = _cell_at(row, unique_index)
        record["row_number"] = row_offset
        records.append(record)

    return records


def build_field_index(
    column_mapping: Mapping[str, str],
    headers: Sequence[str],
    field_to_attribute: Mapping[str, str],
) -> Dict[str, int]:
    """Resolve ``sheet column -> field`` pairs to ``attribute -> column index``.

    Mapped columns missing from the header row are skipped. When several
    columns map to one field the last entry wins.
    """

    index: Dict[str, int] = {}
    for sheet_column, field_name in column_mapping.items():
        attribute = field_to_attribute.get(field_name)
        if attribute is None:
            continue
        try:
            index[attribute] = list(headers).index(sheet_column)
        except ValueError:
            continue
    return index


def find_unique_column_index(headers: Sequence[str], unique_column: Optional[str]) -> Optional[int]:
    if not unique_column:
        return None
    try:
        return list(headers).index(unique_column)
    except ValueError:
        logger.warning(
            "Unique column not found in sheet headers",
            extra={"unique_column": unique_column},
        )
        return None


def _cell_at(row: Sequence[Any], index: int) -> Optional[str]:
    if index >= len(row):
        return None
    return _cell_text(row[index])


def _cell_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def load_column_mapping(raw: Optional[str]) -> ColumnMapping:
    """Deserialize a mapping persisted alongside a property or company."""

    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("Stored column mapping is not valid JSON") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Stored column mapping must be a JSON object")
    return {str(key): str(value) for key, value in parsed.items()}


def dump_column_mapping(mapping: Mapping[str, str]) -> str:
    return json.dumps(dict(mapping))


def unique_marker(value: str) -> str:
    return UNIQUE_MARKER_TEMPLATE.format(value=value)


def embed_unique_marker(unique_value: Optional[str], text: Optional[str]) -> Optional[str]:
    """Prefix ``text`` with the row's unique marker.

    The result is always rebuilt from the sheet text, never appended to what
    is already stored, so repeated syncs do not stack markers.
    """

    if not unique_value:
        return text or None
    marker = unique_marker(unique_value)
    return f"{marker} {text}" if text else marker
