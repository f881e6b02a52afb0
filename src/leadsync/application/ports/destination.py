from __future__ import annotations
from typing import Any, Callable, Optional, Protocol

# Cells are written left to right; None leaves the target cell untouched
RowValues = list[Optional[str]]


class DestinationTable(Protocol):
    """Spreadsheet-like table addressed by table id + A1 range."""

    def get_range(self, table_id: str, range_: str) -> list[list[Any]]: ...
    def append(self, table_id: str, range_: str, values: list[RowValues]) -> None: ...
    def update(self, table_id: str, range_: str, values: list[RowValues]) -> None: ...


# Binds a destination table client to one tenant's credentials
DestinationFactory = Callable[[str], DestinationTable]
