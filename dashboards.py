"""Pre-aggregated rows for the department dashboards."""

from collections import Counter, defaultdict
from datetime import timedelta

from access import ApiError, require_department, visible_departments
from models import (Activity, Budget, Grant, Institution, License, Plan, Project, PublicInquiry,
                    Task, WelfareService, db, utcnow)

OVER_CAPACITY_PCT = 90
EXPIRY_WINDOW_DAYS = 30
CLOSED_TASK_STATUSES = ('done', 'cancelled')
CLOSED_INQUIRY_STATUSES = ('resolved', 'closed')


def format_currency(value, symbol='₪'):
    """Compact currency label for KPI cards."""
    if value is None:
        return f'{symbol}0'
    if abs(value) >= 1_000_000_000:
        return f'{symbol}{value / 1_000_000_000:,.1f}B'
    if abs(value) >= 1_000_000:
        return f'{symbol}{value / 1_000_000:,.1f}M'
    if abs(value) >= 1_000:
        return f'{symbol}{value / 1_000:,.0f}K'
    return f'{symbol}{value:,.0f}'


def pct(part, whole):
    if not whole:
        return 0
    return round(part / whole * 100, 1)


def kpi(label, value, money=False):
    return {
        'label': label,
        'value': value,
        'display': format_currency(value) if money else f'{value:,}',
    }


def _scope(model, departments):
    # None in ``departments`` also admits rows with no department.
    named = [d for d in departments if d is not None]
    clause = model.department_slug.in_(named)
    if None in departments:
        clause = db.or_(clause, model.department_slug.is_(None))
    return model.query.filter(clause)


def _rows(model, departments):
    return _scope(model, departments).all()


def _counts(rows, attr, missing='unknown'):
    counts = Counter((getattr(r, attr) or missing) for r in rows)
    return [{'key': k, 'count': v} for k, v in sorted(counts.items())]


def overview(departments):
    tables = {
        'licenses': License, 'projects': Project, 'budgets': Budget, 'grants': Grant,
        'tasks': Task, 'institutions': Institution, 'activities': Activity,
        'plans': Plan, 'welfare_services': WelfareService, 'public_inquiries': PublicInquiry,
    }
    counts = {name: _scope(model, departments).count()
              for name, model in tables.items()}
    open_tasks = _scope(Task, departments).filter(Task.status.notin_(CLOSED_TASK_STATUSES)).count()
    approved = [g.amount or 0 for g in _rows(Grant, departments) if (g.status or '').lower() == 'approved']
    return {
        'counts': counts,
        'kpis': [
            kpi('Open tasks', open_tasks),
            kpi('Approved grants', sum(approved), money=True),
        ],
    }


def finance(departments):
    budgets = _rows(Budget, departments)
    grouped = defaultdict(lambda: {'allocated': 0.0, 'spent': 0.0})
    for b in budgets:
        bucket = grouped[(b.budget_year, b.department)]
        bucket['allocated'] += b.allocated_amount or 0
        bucket['spent'] += b.spent_amount or 0
    rows = []
    for (year, dept), totals in sorted(grouped.items()):
        rows.append({
            'budget_year': year,
            'department': dept,
            'allocated': totals['allocated'],
            'spent': totals['spent'],
            'remaining': totals['allocated'] - totals['spent'],
            'execution_pct': pct(totals['spent'], totals['allocated']),
        })

    projects = _rows(Project, departments)
    approved = sum(p.budget_approved or 0 for p in projects)
    executed = sum(p.budget_executed or 0 for p in projects)
    allocated = sum(r['allocated'] for r in rows)
    spent = sum(r['spent'] for r in rows)
    return {
        'budgets': rows,
        'projects': {'approved': approved, 'executed': executed,
                     'execution_pct': pct(executed, approved)},
        'kpis': [
            kpi('Allocated', allocated, money=True),
            kpi('Spent', spent, money=True),
            kpi('Remaining', allocated - spent, money=True),
        ],
    }


def education(departments):
    institutions = _rows(Institution, departments)
    by_level = defaultdict(lambda: {'institutions': 0, 'students': 0})
    for i in institutions:
        level = i.level or 'unknown'
        by_level[level]['institutions'] += 1
        by_level[level]['students'] += i.students or 0
    over_capacity = [i for i in institutions
                     if i.occupancy is not None and i.occupancy >= OVER_CAPACITY_PCT]
    return {
        'by_level': [{'level': k, **v} for k, v in sorted(by_level.items())],
        'over_capacity': [{'id': i.id, 'name': i.name, 'occupancy': i.occupancy}
                          for i in sorted(over_capacity, key=lambda i: -i.occupancy)],
        'kpis': [
            kpi('Institutions', len(institutions)),
            kpi('Students', sum(i.students or 0 for i in institutions)),
            kpi('Classes', sum(i.classes or 0 for i in institutions)),
        ],
    }


def engineering(departments):
    plans = _rows(Plan, departments)
    return {
        'by_status': _counts(plans, 'status'),
        'by_land_use': _counts(plans, 'land_use'),
        'kpis': [
            kpi('Plans', len(plans)),
            kpi('Total area', round(sum(p.area or 0 for p in plans))),
        ],
    }


def welfare(departments):
    services = _rows(WelfareService, departments)
    by_type = defaultdict(lambda: {'recipients': 0, 'budget': 0.0, 'waitlist': 0})
    for s in services:
        row = by_type[s.service_type]
        row['recipients'] += s.recipients or 0
        row['budget'] += s.budget_allocated or 0
        row['waitlist'] += s.waitlist or 0
    return {
        'by_service_type': [{'service_type': k, **v} for k, v in sorted(by_type.items())],
        'kpis': [
            kpi('Recipients', sum(s.recipients or 0 for s in services)),
            kpi('Budget', sum(s.budget_allocated or 0 for s in services), money=True),
            kpi('Waitlist', sum(s.waitlist or 0 for s in services)),
        ],
    }


def non_formal(departments):
    activities = _rows(Activity, departments)
    now = utcnow()
    by_category = defaultdict(lambda: {'activities': 0, 'participants': 0})
    for a in activities:
        row = by_category[a.category or 'unknown']
        row['activities'] += 1
        row['participants'] += a.participants or 0
    upcoming = [a for a in activities if a.scheduled_at and a.scheduled_at >= now]
    return {
        'by_category': [{'category': k, **v} for k, v in sorted(by_category.items())],
        'kpis': [
            kpi('Activities', len(activities)),
            kpi('Participants', sum(a.participants or 0 for a in activities)),
            kpi('Upcoming', len(upcoming)),
        ],
    }


def business(departments):
    licenses = _rows(License, departments)
    today = utcnow().date()
    horizon = today + timedelta(days=EXPIRY_WINDOW_DAYS)
    expiring = [l for l in licenses if l.expires_at and today <= l.expires_at <= horizon]
    return {
        'by_status': _counts(licenses, 'status'),
        'by_type': _counts(licenses, 'type'),
        'expiring': [{'id': l.id, 'business_name': l.business_name,
                      'expires_at': l.expires_at.isoformat()}
                     for l in sorted(expiring, key=lambda l: l.expires_at)],
        'kpis': [
            kpi('Licenses', len(licenses)),
            kpi('Expiring soon', len(expiring)),
            kpi('Fees', sum(l.fee_amount or 0 for l in licenses), money=True),
        ],
    }


def grants(departments):
    rows = _rows(Grant, departments)
    by_status = defaultdict(lambda: {'count': 0, 'amount': 0.0})
    for g in rows:
        bucket = by_status[(g.status or 'draft').lower()]
        bucket['count'] += 1
        bucket['amount'] += g.amount or 0
    approved = by_status.get('approved', {'count': 0})['count']
    rejected = by_status.get('rejected', {'count': 0})['count']
    return {
        'by_status': [{'status': k, **v} for k, v in sorted(by_status.items())],
        'approval_rate': pct(approved, approved + rejected),
        'kpis': [
            kpi('Grants', len(rows)),
            kpi('Requested', sum(g.amount or 0 for g in rows), money=True),
        ],
    }


def projects(departments):
    rows = _rows(Project, departments)
    progress = [p.progress for p in rows if p.progress is not None]
    return {
        'by_status': _counts(rows, 'status'),
        'average_progress': round(sum(progress) / len(progress), 1) if progress else 0,
        'kpis': [
            kpi('Projects', len(rows)),
            kpi('Approved budget', sum(p.budget_approved or 0 for p in rows), money=True),
            kpi('Executed budget', sum(p.budget_executed or 0 for p in rows), money=True),
        ],
    }


def tasks(departments):
    rows = _rows(Task, departments)
    now = utcnow()
    overdue = [t for t in rows
               if t.due_at and t.due_at < now and t.status not in CLOSED_TASK_STATUSES]
    return {
        'by_status': _counts(rows, 'status'),
        'by_priority': _counts(rows, 'priority'),
        'overdue': [{'id': t.id, 'title': t.title, 'department_slug': t.department_slug,
                     'due_at': t.due_at.isoformat()}
                    for t in sorted(overdue, key=lambda t: t.due_at)],
        'kpis': [
            kpi('Tasks', len(rows)),
            kpi('Overdue', len(overdue)),
        ],
    }


def inquiries(departments):
    rows = _rows(PublicInquiry, departments)
    open_rows = [i for i in rows if i.status not in CLOSED_INQUIRY_STATUSES]
    return {
        'by_status': _counts(rows, 'status'),
        'by_type': _counts(rows, 'inquiry_type'),
        'by_source': _counts(rows, 'source'),
        'kpis': [
            kpi('Inquiries', len(rows)),
            kpi('New', sum(1 for i in rows if i.status == 'new')),
            kpi('In progress', sum(1 for i in rows if i.status == 'in_progress')),
            kpi('Resolved', sum(1 for i in rows if i.status == 'resolved')),
            kpi('Urgent open', sum(1 for i in open_rows if i.priority == 'urgent')),
        ],
    }


# Dashboard name -> (builder, department it belongs to; None for cross-department)
DASHBOARDS = {
    'overview': (overview, None),
    'finance': (finance, 'finance'),
    'education': (education, 'education'),
    'engineering': (engineering, 'engineering'),
    'welfare': (welfare, 'welfare'),
    'non-formal': (non_formal, 'non-formal'),
    'business': (business, 'business'),
    'grants': (grants, None),
    'projects': (projects, None),
    'tasks': (tasks, None),
    'inquiries': (inquiries, None),
}


def build(name, profile):
    if name not in DASHBOARDS:
        raise ApiError(f'Unknown dashboard: {name}', 404)
    builder, department = DASHBOARDS[name]
    if department is None:
        departments = visible_departments(profile)
        scope = departments + [None]
    else:
        require_department(profile, department)
        departments = scope = [department]
    data = builder(scope)
    data['dashboard'] = name
    data['departments'] = departments
    return data
