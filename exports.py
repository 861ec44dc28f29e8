"""CSV and XLSX exports of table rows."""

import csv
import io
import re

from openpyxl import Workbook
from openpyxl.styles import Font

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _columns(rows):
    columns = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    return columns


def _cell(value):
    if isinstance(value, (list, tuple)):
        return ', '.join(str(v) for v in value)
    if isinstance(value, dict):
        return ', '.join(f'{k}={v}' for k, v in value.items())
    return value


def safe_filename(base):
    name = re.sub(r'[^\w.-]+', '_', base or '').strip('._')
    return name or 'export'


def to_csv(rows):
    """Render a list of dicts as CSV text with a header row."""
    buf = io.StringIO()
    columns = _columns(rows)
    writer = csv.writer(buf)
    writer.writerow(columns)
    for row in rows:
        writer.writerow(['' if row.get(c) is None else _cell(row.get(c)) for c in columns])
    return buf.getvalue()


def to_xlsx(rows, sheet_title='Data'):
    """Render a list of dicts as an XLSX workbook and return its bytes."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title
    columns = _columns(rows)
    ws.append(columns)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append([_cell(row.get(c)) for c in columns])
    ws.freeze_panes = 'A2'
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
