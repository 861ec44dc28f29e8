"""CRUD over the departmental tables.

Each table is described by a :class:`Resource`. Routes look the resource up by
name and call the functions below; every database error rolls the session
back so the stored rows are left as they were.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from access import ApiError, can_create, can_delete, can_view, visible_departments
from models import (Activity, Budget, Grant, Institution, License, Plan, Project, PublicInquiry,
                    Task, WelfareService, db, utcnow)
from validation import ALIASES, ValidationFailed, validate_record

logger = logging.getLogger(__name__)

PERIODS = {
    'day': timedelta(days=1),
    'week': timedelta(days=7),
    'month': timedelta(days=30),
    'year': timedelta(days=365),
}

DEFAULT_LIMIT = 500
MAX_LIMIT = 5000


@dataclass
class Resource:
    name: str
    model: type
    search: tuple
    order_by: str = 'created_at'
    descending: bool = True
    default_department: str = None
    sortable: tuple = ()
    attachments: tuple = ()
    filters: tuple = ('status',)
    label: str = ''
    before_save: object = None


def stamp_resolution(record):
    """Keep ``resolved_at`` in step with a resolved status."""
    if record.status == 'resolved':
        record.resolved_at = record.resolved_at or utcnow()
    else:
        record.resolved_at = None


RESOURCES = {r.name: r for r in [
    Resource('licenses', License, ('business_name', 'owner', 'license_number', 'address'),
             default_department='business',
             sortable=('business_name', 'status', 'type', 'expires_at', 'fee_amount'),
             attachments=('image_urls',), filters=('status', 'type'), label='Business licenses'),
    Resource('projects', Project, ('name', 'code', 'description', 'department'),
             sortable=('name', 'status', 'progress', 'budget_approved', 'start_date', 'end_date'),
             filters=('status', 'domain', 'priority'), label='Projects'),
    Resource('budgets', Budget, ('department', 'category', 'description'),
             default_department='finance', order_by='budget_year',
             sortable=('budget_year', 'department', 'allocated_amount', 'spent_amount'),
             filters=('budget_year', 'category'), label='Budgets'),
    Resource('grants', Grant, ('name', 'ministry'), order_by='decision_at', descending=False,
             sortable=('name', 'ministry', 'amount', 'status', 'submitted_at', 'decision_at'),
             label='Grants'),
    Resource('tasks', Task, ('title', 'description'), order_by='due_at', descending=False,
             sortable=('title', 'status', 'priority', 'due_at', 'progress_percent'),
             filters=('status', 'priority'), label='Tasks'),
    Resource('institutions', Institution, ('name', 'address', 'level'),
             default_department='education',
             sortable=('name', 'level', 'students', 'classes', 'occupancy'),
             filters=('status', 'level'), label='Institutions'),
    Resource('activities', Activity, ('name', 'program', 'location'),
             default_department='non-formal', order_by='scheduled_at',
             sortable=('name', 'category', 'scheduled_at', 'participants'),
             filters=('status', 'category'), label='Activities'),
    Resource('plans', Plan, ('name', 'plan_number', 'address'),
             default_department='engineering',
             sortable=('name', 'plan_number', 'status', 'area', 'start_at'),
             attachments=('image_urls', 'file_urls'), filters=('status', 'land_use'),
             label='Plans'),
    Resource('welfare_services', WelfareService, ('service_type', 'period'),
             default_department='welfare',
             sortable=('service_type', 'recipients', 'budget_allocated', 'waitlist'),
             filters=('period',), label='Welfare services'),
    Resource('public_inquiries', PublicInquiry,
             ('name', 'subject', 'description', 'phone', 'email', 'address'),
             sortable=('name', 'subject', 'status', 'priority', 'inquiry_type', 'source',
                       'resolved_at'),
             filters=('status', 'priority', 'inquiry_type', 'source'),
             label='Public inquiries', before_save=stamp_resolution),
]}


def get_resource(name):
    resource = RESOURCES.get(ALIASES.get(name, name))
    if resource is None:
        raise ApiError(f'Unknown table: {name}', 404)
    return resource


def _parse_when(value, end_of_range=False):
    try:
        when = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ApiError(f'Invalid date: {value}')
    # A bare date as the upper bound covers that whole day.
    if end_of_range and 'T' not in value and ' ' not in value.strip():
        when += timedelta(days=1)
    return when


def created_window(period, start=None, end=None, now=None):
    """Return the half-open ``[from, to)`` created-at window for a period filter."""
    now = now or utcnow()
    if period == 'custom':
        if not start or not end:
            raise ApiError('Custom period needs both from and to')
        return _parse_when(start), _parse_when(end, end_of_range=True)
    if period not in PERIODS:
        raise ApiError(f'Unknown period: {period}')
    return now - PERIODS[period], now + timedelta(microseconds=1)


def list_records(resource, profile, args):
    """Filtered, sorted rows of ``resource`` visible to ``profile``.

    ``args`` is a mapping of query parameters: ``q``, ``department``,
    ``period``/``from``/``to``, ``sort``/``dir`` and the resource filters.
    """
    model = resource.model
    query = model.query

    departments = visible_departments(profile)
    if not profile.is_executive:
        query = query.filter(db.or_(model.department_slug.in_(departments),
                                    model.department_slug.is_(None)))

    department = args.get('department')
    if department and department != 'all':
        if not can_view(profile, department):
            raise ApiError(f'No access to department: {department}', 403)
        query = query.filter(model.department_slug == department)

    q = (args.get('q') or '').strip()
    if q:
        pattern = f'%{q}%'
        query = query.filter(db.or_(*[getattr(model, col).ilike(pattern) for col in resource.search]))

    for name in resource.filters:
        value = args.get(name)
        if value and value != 'all':
            column = getattr(model, name)
            if name == 'status':
                query = query.filter(db.func.lower(column) == value.lower())
            elif isinstance(column.type, db.Integer):
                try:
                    query = query.filter(column == int(value))
                except ValueError:
                    raise ApiError(f'{name} must be a number')
            else:
                query = query.filter(column == value)

    period = args.get('period')
    if period:
        start, end = created_window(period, args.get('from'), args.get('to'))
        query = query.filter(model.created_at >= start, model.created_at < end)

    sort = args.get('sort') or resource.order_by
    if sort not in resource.sortable and sort != resource.order_by and sort != 'created_at':
        raise ApiError(f'Cannot sort by: {sort}')
    direction = args.get('dir')
    descending = resource.descending if direction is None else direction == 'desc'
    column = getattr(model, sort)
    ordering = column.desc() if descending else column.asc()
    query = query.order_by(column.is_(None), ordering, model.id)

    try:
        limit = int(args.get('limit', DEFAULT_LIMIT))
    except ValueError:
        raise ApiError('limit must be a number')
    if limit < 1:
        raise ApiError('limit must be at least 1')
    limit = min(limit, MAX_LIMIT)
    return query.limit(limit).all()


def get_record(resource, profile, record_id):
    record = db.session.get(resource.model, record_id)
    if record is None or not can_view(profile, record.department_slug):
        raise ApiError(f'{resource.name} #{record_id} not found', 404)
    return record


def _commit(action, resource):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception('Failed to %s %s', action, resource.name)
        raise ApiError(f'Failed to {action} {resource.name}: {exc.__class__.__name__}', 500)


def assign_values(record, values):
    for key, value in values.items():
        column = record.__table__.columns.get(key)
        if column is None:
            continue
        # Explicit None would bypass the column default on insert.
        if value is None and record.id is None and column.default is not None:
            continue
        setattr(record, key, value)


def _owning_department(resource, profile, department):
    """Department a record may be stored under; managers cannot leave it empty."""
    if department is not None:
        return department
    if resource.default_department:
        raise ApiError(f'{resource.name} must belong to a department')
    if profile.is_executive:
        return None
    departments = visible_departments(profile)
    if len(departments) == 1:
        return departments[0]
    raise ApiError('department_slug is required')


def create_record(resource, profile, data):
    data = dict(data or {})
    if not data.get('department_slug') and resource.default_department:
        data['department_slug'] = resource.default_department
    try:
        values = validate_record(resource.name, data)
    except ValidationFailed as exc:
        raise ApiError(str(exc), 400)

    department = values['department_slug'] = _owning_department(
        resource, profile, values.get('department_slug'))
    if not can_create(profile, resource.name, department):
        raise ApiError(f'Not allowed to create {resource.name} for {department}', 403)

    record = resource.model()
    assign_values(record, values)
    record.profile_id = profile.id
    if resource.name == 'tasks':
        record.assigned_by_role = profile.role
    if resource.before_save:
        resource.before_save(record)
    db.session.add(record)
    _commit('create', resource)
    logger.info('%s created %s #%s', profile.email, resource.name, record.id)
    return record


def update_record(resource, profile, record_id, data):
    record = get_record(resource, profile, record_id)
    try:
        values = validate_record(resource.name, dict(data or {}), current=record.to_dict())
    except ValidationFailed as exc:
        raise ApiError(str(exc), 400)

    if 'department_slug' in values:
        department = values['department_slug']
        if department is None and (resource.default_department or not profile.is_executive):
            raise ApiError(f'Cannot remove the department of {resource.name} #{record_id}')
        if not can_view(profile, department):
            raise ApiError(f'No access to department: {department}', 403)

    assign_values(record, values)
    if resource.before_save:
        resource.before_save(record)
    _commit('update', resource)
    logger.info('%s updated %s #%s', profile.email, resource.name, record.id)
    return record


def delete_record(resource, profile, record_id):
    record = get_record(resource, profile, record_id)
    if not can_delete(profile, resource.name, record.department_slug):
        raise ApiError(f'Not allowed to delete {resource.name}', 403)
    db.session.delete(record)
    _commit('delete', resource)
    logger.info('%s deleted %s #%s', profile.email, resource.name, record_id)


def attach_url(resource, profile, record_id, column, url):
    """Append a stored file URL to one of the record's URL list columns."""
    if column not in resource.attachments:
        raise ApiError(f'{resource.name} has no attachment list {column}')
    record = get_record(resource, profile, record_id)
    urls = list(getattr(record, column) or [])
    urls.append(url)
    setattr(record, column, urls)
    _commit('update', resource)
    return record
