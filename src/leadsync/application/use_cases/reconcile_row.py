"""Find, append or update the contact row of a destination table."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger

from leadsync.application.ports.destination import DestinationTable, RowValues
from leadsync.domain.models import (
    SENTINEL,
    ColumnSpec,
    DestinationConfig,
    ReconciliationOutcome,
    SemanticType,
    column_index,
    column_letter,
)

_PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class RowContext:
    """Known facts about the message used when extraction comes back empty."""

    thread_key: str
    created_at: datetime | None = None
    contact_name: str | None = None


def sheet_range(sheet_name: str, a1: str) -> str:
    """Qualify an A1 range with its sheet, quoting names that need it."""
    if _PLAIN_SHEET_NAME.match(sheet_name):
        return f"{sheet_name}!{a1}"
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'!{a1}"


def _is_missing(value: str | None) -> bool:
    return value is None or not value.strip() or value.strip().upper() == SENTINEL


class ReconcileRowUseCase:
    """
    Write one extracted record to a destination table.

    Flow:
    1. Look up the contact row by the key column (when one is configured)
    2. Assemble the row, applying fallbacks for empty phone/timestamp/name cells
    3. Update the matched row, skip when auto-update is disabled, or append
    """

    def find_row(
        self,
        table: DestinationTable,
        config: DestinationConfig,
        key_column: ColumnSpec,
        key_value: str,
    ) -> int | None:
        """Return the 1-based row holding ``key_value`` in the key column."""
        letter = config.column_address(key_column)
        range_ = sheet_range(config.sheet_name, f"{letter}:{letter}")
        logger.debug(f"Searching for {key_value} in range {range_} of sheet {config.destination_id}")

        values = table.get_range(config.destination_id, range_)
        for position, row in enumerate(values or []):
            if row and str(row[0]) == key_value:
                logger.debug(f"Found {key_value} at row {position + 1} in sheet {config.destination_id}")
                return position + 1

        logger.debug(f"{key_value} not found in sheet {config.destination_id}")
        return None

    def assemble_row(
        self,
        config: DestinationConfig,
        fields: dict[str, str],
        context: RowContext,
    ) -> dict[str, str]:
        """Column id -> cell value, fallbacks applied only to missing values."""
        row: dict[str, str] = {}
        for col in config.columns:
            value = fields.get(col.id)
            if _is_missing(value):
                value = self._fallback(col, context)
            row[col.id] = value if value is not None else ""
        return row

    def row_values(self, config: DestinationConfig, row: dict[str, str]) -> tuple[RowValues, str]:
        """Lay the row out from column A to the last mapped column.

        Returns the values and the last column letter. Unmapped cells are None.
        """
        placed: dict[int, str] = {}
        for col in config.columns:
            placed[column_index(config.column_address(col))] = row.get(col.id, "")
        width = max(placed) + 1
        values: RowValues = [placed.get(i) for i in range(width)]
        return values, column_letter(width - 1)

    def reconcile(
        self,
        table: DestinationTable,
        config: DestinationConfig,
        fields: dict[str, str],
        context: RowContext,
    ) -> ReconciliationOutcome:
        """Append, update or skip. Destination errors propagate."""
        key_column = config.key_column()
        existing_row: int | None = None
        if key_column is None:
            logger.warning(
                f"No key column configured for sheet {config.destination_id}, rows are always appended"
            )
        else:
            existing_row = self.find_row(table, config, key_column, context.thread_key)

        if existing_row is not None and not config.auto_update_existing:
            logger.info(
                f"Found existing contact {context.thread_key} at row {existing_row} in sheet "
                f"{config.destination_id}, but auto-update is disabled. Skipping update."
            )
            return ReconciliationOutcome.skipped("auto-update disabled")

        row = self.assemble_row(config, fields, context)
        values, last_letter = self.row_values(config, row)

        if existing_row is not None:
            range_ = sheet_range(config.sheet_name, f"A{existing_row}:{last_letter}{existing_row}")
            logger.info(f"Updating row {existing_row} in sheet {config.destination_id}. Range: {range_}")
            table.update(config.destination_id, range_, [values])
            return ReconciliationOutcome.updated(existing_row)

        range_ = sheet_range(config.sheet_name, "A1")
        logger.info(f"Appending row to sheet {config.destination_id}. Range: {range_}")
        table.append(config.destination_id, range_, [values])
        return ReconciliationOutcome.appended()

    @staticmethod
    def _fallback(col: ColumnSpec, context: RowContext) -> str | None:
        if col.semantic_type == SemanticType.PHONE:
            return context.thread_key
        if col.is_timestamp:
            created = context.created_at or datetime.now(timezone.utc)
            return created.isoformat()
        if col.semantic_type == SemanticType.NAME:
            return context.contact_name or ""
        return SENTINEL
