"""Upload file parsers.

Public API
----------
AllocationSheetParser  - Reads allocation rows from a CSV or XLSX upload.
ParseResult            - Dataclass returned by ``parser.parse()``.
parse_allocation_sheet - Shortcut: ``AllocationSheetParser(content, name).parse()``.
"""

from cbms.parsers.allocation_sheet import (
    COLUMNS,
    AllocationSheetParser,
    ParseResult,
    parse_allocation_sheet,
)

__all__ = ["COLUMNS", "AllocationSheetParser", "ParseResult", "parse_allocation_sheet"]
