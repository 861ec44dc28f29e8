#!/usr/bin/env python3
"""
Import departmental records from a CSV/XLSX file into the dashboard database.
The first non-empty row holds the column names; every following row is
validated against the table's schema before it is inserted.

Usage: python import_data.py <table> <file> [--email importer@city.gov.il]
"""

import argparse
import csv
import re
import sys
from pathlib import Path

import openpyxl
from sqlalchemy.exc import SQLAlchemyError

from models import IngestionLog, Profile, db
from records import RESOURCES, assign_values
from validation import ALIASES, ValidationFailed, validate_record

NUMERIC_TYPES = (db.Integer, db.Float)


def parse_money(val):
    """Convert currency string to float. Handles '₪1,234.56', '(1,234)', '-', etc."""
    if val is None:
        return None
    if isinstance(val, (int, float)):
        return float(val)
    val = str(val).strip()
    if not val or val in ('-', '#REF!'):
        return None
    val = val.replace('$', '').replace('₪', '').replace('"', '').replace("'", '').strip()
    negative = False
    if val.startswith('(') and val.endswith(')'):
        negative = True
        val = val[1:-1]
    val = val.replace(',', '').replace(' ', '')
    if val.endswith('%'):
        val = val[:-1]
    if not val or val == '-':
        return None
    try:
        result = float(val)
        return -result if negative else result
    except ValueError:
        return None


def normalize_header(name):
    """'Business Name ' -> 'business_name'."""
    if name is None:
        return None
    name = re.sub(r'[^0-9a-zA-Z]+', '_', str(name).strip()).strip('_').lower()
    return name or None


def read_csv_rows(filepath):
    """Read CSV file and return all rows as lists."""
    rows = []
    encodings = ['utf-8-sig', 'utf-8', 'cp1255', 'latin-1']
    for enc in encodings:
        try:
            with open(filepath, 'r', encoding=enc, newline='') as f:
                reader = csv.reader(f)
                rows = list(reader)
            break
        except (UnicodeDecodeError, UnicodeError):
            continue
    return rows


def read_xlsx_rows(filepath):
    """Read the active sheet of an XLSX file and return all rows as lists."""
    wb = openpyxl.load_workbook(filepath, data_only=True, read_only=True)
    try:
        ws = wb.active
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def read_rows(filepath):
    filepath = Path(filepath)
    if filepath.suffix.lower() in ('.xlsx', '.xlsm'):
        return read_xlsx_rows(filepath)
    if filepath.suffix.lower() == '.csv':
        return read_csv_rows(filepath)
    raise ValueError(f'Unsupported file type: {filepath.suffix}')


def rows_to_dicts(rows):
    """Use the first non-empty row as the header and zip the rest onto it."""
    rows = [r for r in rows if any(c not in (None, '') for c in r)]
    if not rows:
        return []
    header = [normalize_header(h) for h in rows[0]]
    records = []
    for row in rows[1:]:
        record = {}
        for key, value in zip(header, row):
            if key is None:
                continue
            if isinstance(value, str):
                value = value.strip()
            record[key] = value
        records.append(record)
    return records


def _text(value):
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def coerce_cells(model, record):
    """Bring spreadsheet cells to the types of ``model``'s columns.

    Money strings become numbers, numeric cells in text columns become text
    (a block number of 6120) and comma lists fill JSON list columns.
    """
    for key, value in list(record.items()):
        column = model.__table__.columns.get(key)
        if column is None or value is None:
            continue
        if isinstance(column.type, NUMERIC_TYPES):
            if isinstance(value, str):
                record[key] = parse_money(value)
        elif isinstance(column.type, db.JSON):
            if isinstance(value, str):
                record[key] = [v.strip() for v in value.split(',') if v.strip()]
        elif isinstance(column.type, db.Text):
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                record[key] = _text(value)
    return record


def import_file(table, filepath, profile=None, log=print):
    """Validate and insert every row; returns ``(inserted, rejected)``.

    Rejected rows are reported as ``(line, error)`` pairs. Nothing is written
    unless at least one row is valid; an ``ingestion_logs`` row is always
    recorded.
    """
    name = ALIASES.get(table, table)
    resource = RESOURCES.get(name)
    if resource is None:
        raise ValueError(f'Unknown table: {table}')

    rows = rows_to_dicts(read_rows(filepath))
    log(f'  {Path(filepath).name}: {len(rows)} rows')

    valid = []
    rejected = []
    for line, row in enumerate(rows, start=2):
        row = coerce_cells(resource.model, row)
        if not row.get('department_slug') and resource.default_department:
            row['department_slug'] = resource.default_department
        try:
            valid.append(validate_record(name, row))
        except ValidationFailed as exc:
            rejected.append((line, str(exc)))

    for values in valid:
        record = resource.model()
        assign_values(record, values)
        if profile is not None:
            record.profile_id = profile.id
            if name == 'tasks':
                record.assigned_by_role = profile.role
        db.session.add(record)

    status = 'success' if not rejected else ('partial' if valid else 'failed')
    error = '; '.join(f'line {line}: {err}' for line, err in rejected[:20]) or None
    db.session.add(IngestionLog(table_name=name, source_file=Path(filepath).name,
                                rows=len(valid), status=status, error=error,
                                profile_id=profile.id if profile else None))
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    log(f'    Imported {len(valid)} {name} rows, rejected {len(rejected)}')
    return len(valid), rejected


def main(argv=None):
    """Command line entry point."""
    parser = argparse.ArgumentParser(description='Import records from CSV/XLSX')
    parser.add_argument('table', help='Target table, e.g. licenses or budgets')
    parser.add_argument('file', help='CSV or XLSX file with a header row')
    parser.add_argument('--email', help='Profile to record as the importer')
    args = parser.parse_args(argv)

    from app import app

    print("City Hall Dashboard Data Import")
    print(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")
    print("=" * 60)

    with app.app_context():
        db.create_all()
        profile = None
        if args.email:
            profile = Profile.query.filter_by(email=args.email.lower()).first()
            if profile is None:
                print(f"Unknown profile: {args.email}")
                return 1
        try:
            inserted, rejected = import_file(args.table, args.file, profile)
        except (ValueError, OSError) as exc:
            print(f"ERROR: {exc}")
            return 1

    for line, err in rejected:
        print(f"  line {line}: {err}")
    print(f"\nDone! {inserted} rows imported, {len(rejected)} rejected")
    return 0 if inserted or not rejected else 1


if __name__ == "__main__":
    sys.exit(main())
