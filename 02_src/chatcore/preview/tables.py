"""Bounded tabular grids and their self-contained HTML rendering."""

import csv
import html
import io
from datetime import date, datetime
from pathlib import Path
from typing import Any, BinaryIO, Iterable

from openpyxl import load_workbook

from ..errors import PreviewUnavailable

Grid = list[list[str]]

_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial; margin: 0; padding: 12px; background: #f8fafc; }
  .title { font-size: 16px; font-weight: 800; margin: 0 0 10px; color: #0f172a; }
  .meta { font-size: 12px; color: #64748b; margin: 0 0 12px; }
  .wrap { overflow: auto; border: 1px solid #e5e7eb; border-radius: 12px; background: #fff; }
  table { border-collapse: collapse; width: 100%; min-width: 600px; }
  th, td { border-bottom: 1px solid #e5e7eb; border-right: 1px solid #f1f5f9; padding: 8px; font-size: 12px; vertical-align: top; }
  th { position: sticky; top: 0; background: #f1f5f9; text-align: left; font-weight: 800; color: #0f172a; }
  tr:last-child td { border-bottom: none; }
  td:last-child, th:last-child { border-right: none; }
  .cell-text { white-space: pre-wrap; word-break: break-word; }
"""


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def bounded_grid(rows: Iterable[Iterable[Any]], max_rows: int, max_cols: int) -> Grid:
    """Header plus up to `max_rows` data rows, plus one sentinel row when more exist.

    Blank rows are skipped. Consumption stops early so large sources are
    never read in full.
    """
    grid: Grid = []
    for row in rows:
        cells = [cell_text(v) for v in list(row)[:max_cols]]
        if not any(c.strip() for c in cells):
            continue
        grid.append(cells)
        if len(grid) > max_rows + 1:
            break
    return grid


def csv_grid(data: bytes, max_rows: int, max_cols: int) -> Grid:
    """Parse CSV bytes (UTF-8, BOM tolerated) into a bounded grid."""
    text = data.decode("utf-8-sig", errors="replace")
    try:
        return bounded_grid(csv.reader(io.StringIO(text)), max_rows, max_cols)
    except csv.Error as e:
        raise PreviewUnavailable(f"Unable to read CSV: {e}") from e


def excel_grid(source: str | Path | BinaryIO, max_rows: int, max_cols: int) -> tuple[str, Grid]:
    """First sheet of a workbook as (sheet name, bounded grid)."""
    try:
        wb = load_workbook(source, read_only=True, data_only=True)
    except Exception as e:
        raise PreviewUnavailable(f"Unable to read spreadsheet: {e}") from e
    try:
        if not wb.sheetnames:
            raise PreviewUnavailable("Spreadsheet has no sheets")
        ws = wb[wb.sheetnames[0]]
        grid = bounded_grid(ws.iter_rows(max_col=max_cols, values_only=True), max_rows, max_cols)
        return ws.title, grid
    finally:
        wb.close()


def render_table(title: str, grid: Grid, max_rows: int, max_cols: int) -> str:
    """Escaped HTML document with the grid's first row as headers."""
    header = grid[0] if grid else []
    body = grid[1 : max_rows + 1]
    truncated = len(grid) > max_rows + 1
    col_count = min(max_cols, max((len(r) for r in grid), default=0))

    def cells(row: list[str], tag: str) -> str:
        padded = row + [""] * (col_count - len(row))
        return "".join(
            f'<{tag}><div class="cell-text">{html.escape(v)}</div></{tag}>'
            for v in padded[:col_count]
        )

    thead = f"<thead><tr>{cells(header, 'th')}</tr></thead>" if grid else ""
    tbody = "<tbody>" + "".join(f"<tr>{cells(r, 'td')}</tr>" for r in body) + "</tbody>"
    notice = (
        f'<p class="meta truncated">Showing the first {max_rows} rows. '
        "Open or download the file to see the rest.</p>"
        if truncated
        else ""
    )
    safe_title = html.escape(title)

    return f"""<!doctype html>
<html>
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<title>{safe_title}</title>
<style>{_STYLE}</style>
</head>
<body>
  <h1 class="title">{safe_title}</h1>
  <p class="meta">Preview limited to {max_rows} rows × {max_cols} columns.</p>
  {notice}
  <div class="wrap">
    <table>
      {thead}
      {tbody}
    </table>
  </div>
</body>
</html>"""
