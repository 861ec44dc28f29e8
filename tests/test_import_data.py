import pytest
from openpyxl import Workbook

from app import app
from import_data import coerce_cells, import_file, main, normalize_header, parse_money, rows_to_dicts
from models import Budget, IngestionLog, License, Plan, Profile, Task, db


def quiet(*args):
    pass


@pytest.fixture
def ctx(client):
    with app.app_context():
        yield


@pytest.mark.parametrize('raw, expected', [
    ('₪1,234.50', 1234.5),
    ('(2,000)', -2000.0),
    ('85%', 85.0),
    ('-', None),
    ('', None),
    (None, None),
    (42, 42.0),
    ('n/a', None),
])
def test_parse_money(raw, expected):
    assert parse_money(raw) == expected


def test_normalize_header():
    assert normalize_header(' Business Name ') == 'business_name'
    assert normalize_header('Fee (₪)') == 'fee'
    assert normalize_header(None) is None


def test_rows_to_dicts_skips_blank_rows():
    rows = [['', ''], ['Name', 'Status'], ['Cafe ', 'active'], [None, None], ['Bar', '']]
    assert rows_to_dicts(rows) == [
        {'name': 'Cafe', 'status': 'active'},
        {'name': 'Bar', 'status': ''},
    ]


def test_csv_import_keeps_valid_rows(ctx, tmp_path):
    path = tmp_path / 'licenses.csv'
    path.write_text(
        'Business Name,Fee Amount,Email,Status\n'
        'Cafe Hanamal,"₪1,200",cafe@example.com,active\n'
        'Broken Email Bar,300,not-an-address,active\n'
        'Green Market,,,pending\n',
        encoding='utf-8',
    )
    inserted, rejected = import_file('business_licenses', path, log=quiet)

    assert inserted == 2
    assert len(rejected) == 1
    line, error = rejected[0]
    assert line == 3
    assert 'email' in error

    rows = License.query.order_by(License.id).all()
    assert [r.business_name for r in rows] == ['Cafe Hanamal', 'Green Market']
    assert rows[0].fee_amount == 1200
    assert rows[0].department_slug == 'business'

    log = IngestionLog.query.one()
    assert log.table_name == 'licenses'
    assert log.status == 'partial'
    assert log.rows == 2


def test_xlsx_import_records_importer(ctx, tmp_path):
    profile = Profile(email='finance@city.gov.il', role='manager')
    db.session.add(profile)
    db.session.commit()

    wb = Workbook()
    ws = wb.active
    ws.append(['Budget Year', 'Department', 'Allocated Amount', 'Spent Amount'])
    ws.append([2025, 'Finance', 1000000, 250000])
    ws.append([2025, 'Education', 5000000, None])
    path = tmp_path / 'budget.xlsx'
    wb.save(path)

    inserted, rejected = import_file('budgets', path, profile=profile, log=quiet)
    assert (inserted, rejected) == (2, [])
    budgets = Budget.query.order_by(Budget.id).all()
    assert budgets[0].remaining_amount == 750000
    assert budgets[1].profile_id == profile.id
    assert IngestionLog.query.one().status == 'success'


def test_all_rows_rejected_is_logged_as_failed(ctx, tmp_path):
    path = tmp_path / 'projects.csv'
    path.write_text('Code,Progress\nP-1,50\nP-2,20\n', encoding='utf-8')
    inserted, rejected = import_file('projects', path, log=quiet)
    assert inserted == 0
    assert [line for line, _ in rejected] == [2, 3]
    log = IngestionLog.query.one()
    assert log.status == 'failed'
    assert 'line 2' in log.error


def test_unknown_table_or_format(ctx, tmp_path):
    path = tmp_path / 'data.csv'
    path.write_text('a\n1\n', encoding='utf-8')
    with pytest.raises(ValueError):
        import_file('spaceships', path, log=quiet)
    with pytest.raises(ValueError):
        import_file('projects', tmp_path / 'data.json', log=quiet)


def test_coerce_cells_matches_column_types():
    row = coerce_cells(Plan, {'block': 6120, 'parcel': 14.0, 'area': '38,000',
                              'name': 'North Quarter', 'image_urls': 'a.png, b.png',
                              'unknown': 7})
    assert row == {'block': '6120', 'parcel': '14', 'area': 38000.0, 'name': 'North Quarter',
                   'image_urls': ['a.png', 'b.png'], 'unknown': 7}


def test_xlsx_numeric_cells_fill_text_columns(ctx, tmp_path):
    wb = Workbook()
    ws = wb.active
    ws.append(['Name', 'Plan Number', 'Block', 'Parcel', 'Area'])
    ws.append(['North Quarter', 455, 6120, 14, 38000])
    path = tmp_path / 'plans.xlsx'
    wb.save(path)

    inserted, rejected = import_file('plans', path, log=quiet)
    assert (inserted, rejected) == (1, [])
    plan = Plan.query.one()
    assert plan.plan_number == '455'
    assert (plan.block, plan.parcel) == ('6120', '14')
    assert plan.area == 38000
    assert plan.department_slug == 'engineering'


def test_csv_comma_list_fills_tags(ctx, tmp_path):
    path = tmp_path / 'tasks.csv'
    path.write_text('Title,Department Slug,Tags\nReview shelters,education,"safety, schools"\n',
                    encoding='utf-8')
    inserted, rejected = import_file('tasks', path, log=quiet)
    assert (inserted, rejected) == (1, [])
    assert Task.query.one().tags == ['safety', 'schools']


def test_main_reports_missing_file(client, tmp_path, capsys):
    assert main(['projects', str(tmp_path / 'missing.csv')]) == 1
    assert 'ERROR' in capsys.readouterr().out
