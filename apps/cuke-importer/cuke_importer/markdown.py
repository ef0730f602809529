"""Text-table formatting for step data tables logged to the portal."""

from __future__ import annotations

NEW_LINE = "\n"
ONE_SPACE = "\u00a0"
TABLE_INDENT = ONE_SPACE * 4
TABLE_COLUMN_SEPARATOR = "|"
TABLE_ROW_SEPARATOR = "-"
TRUNCATION_REPLACEMENT = "..."
PADDING_SPACES_NUM = 2
MAX_TABLE_SIZE = 83
MIN_COL_SIZE = 3


def _transpose(table: list[list[str]]) -> list[list[str]]:
    width = max((len(row) for row in table), default=0)
    return [[row[index] for row in table if index < len(row)] for index in range(width)]


def _column_sizes(table: list[list[str]]) -> list[int]:
    return [max((len(cell) for cell in column), default=0) for column in _transpose(table)]


def _table_size(col_sizes: list[int]) -> int:
    inner = sum(col_sizes) + (PADDING_SPACES_NUM + len(TABLE_COLUMN_SEPARATOR)) * len(col_sizes) - 1
    return inner + 2


def _shrink_columns(col_sizes: list[int], max_table_size: int) -> list[int]:
    table_size = _table_size(col_sizes)
    if max_table_size >= table_size:
        return col_sizes
    # (size, index) pairs, widest first
    by_size = sorted(((size, index) for index, size in enumerate(col_sizes)), reverse=True)
    for _ in range(table_size - max_table_size):
        for position, (size, index) in enumerate(by_size):
            if size <= MIN_COL_SIZE:
                continue
            next_size = by_size[position + 1][0] if position + 1 < len(by_size) else 0
            if size >= next_size:
                by_size[position] = (size - 1, index)
                break
    return [size for size, _ in sorted(by_size, key=lambda pair: pair[1])]


def _fit_cell(cell: str, col_size: int) -> str:
    if col_size >= len(cell):
        return cell
    if len(TRUNCATION_REPLACEMENT) < col_size:
        return cell[: col_size - len(TRUNCATION_REPLACEMENT)] + TRUNCATION_REPLACEMENT
    return cell[:col_size]


def format_data_table(table: list[list[str]], max_table_size: int = MAX_TABLE_SIZE) -> str:
    """Render a step data table as an aligned text table.

    Wide tables with more columns than rows are transposed; cells that
    still do not fit are truncated with ``...``. The first row is treated
    as a header unless the table was transposed.
    """

    if not table:
        return ""
    col_sizes = _column_sizes(table)
    transpose = len(col_sizes) > len(table) and _table_size(col_sizes) > max_table_size
    rows = _transpose(table) if transpose else table
    if transpose:
        col_sizes = _column_sizes(rows)
    col_sizes = _shrink_columns(col_sizes, max_table_size)
    add_padding = _table_size(col_sizes) <= max_table_size
    padding = PADDING_SPACES_NUM if add_padding else 0
    header = not transpose

    lines: list[str] = []
    for row in rows:
        parts = [TABLE_INDENT, TABLE_COLUMN_SEPARATOR]
        for index, raw_cell in enumerate(row):
            col_size = col_sizes[index]
            cell = _fit_cell(raw_cell, col_size)
            pad = col_size - len(cell) + padding
            left = pad // 2
            parts.append(ONE_SPACE * left + cell + ONE_SPACE * (pad - left) + TABLE_COLUMN_SEPARATOR)
        lines.append("".join(parts))
        if header:
            header = False
            separator = [TABLE_INDENT, TABLE_COLUMN_SEPARATOR]
            for index in range(len(row)):
                separator.append(TABLE_ROW_SEPARATOR * (col_sizes[index] + padding) + TABLE_COLUMN_SEPARATOR)
            lines.append("".join(separator))
    return NEW_LINE.join(lines)
