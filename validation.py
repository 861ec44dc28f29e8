"""Edge validation for records submitted to the dashboard.

One pydantic model per table. Required fields, numeric bounds, e-mail format
and the enumerated status/priority values are checked here; everything else
is left to the database.
"""

import re
from datetime import date, datetime
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, field_validator

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

GRANT_STATUSES = ('draft', 'submitted', 'pending', 'approved', 'rejected')
TASK_STATUSES = ('todo', 'in_progress', 'blocked', 'done', 'cancelled')
TASK_PRIORITIES = ('low', 'medium', 'high', 'urgent')
INQUIRY_STATUSES = ('new', 'in_progress', 'pending', 'resolved', 'closed')
INQUIRY_TYPES = ('complaint', 'request', 'information', 'suggestion', 'other')
INQUIRY_SOURCES = ('whatsapp', 'email', 'phone', 'in_person', 'website', 'other')

Department = Literal['finance', 'education', 'engineering', 'welfare', 'non-formal', 'business']


class ValidationFailed(ValueError):
    """Raised with a flattened ``field: message`` description of every issue."""

    def __init__(self, message, issues=None):
        super().__init__(message)
        self.issues = issues or []


class RecordSchema(BaseModel):
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)

    department_slug: Optional[Department] = None

    @field_validator('*', mode='before')
    @classmethod
    def blank_to_none(cls, value, info):
        # Form posts send '' for untouched optional inputs.
        if value == '' and info.field_name not in cls.required_text_fields():
            return None
        return value

    @classmethod
    def required_text_fields(cls):
        return {name for name, field in cls.model_fields.items()
                if field.is_required() and field.annotation is str}


def _check_email(value):
    if value is None or value == '':
        return value
    if not EMAIL_RE.match(value):
        raise ValueError('Invalid email address')
    return value.lower()


Email = Annotated[Optional[str], AfterValidator(_check_email)]


class LicenseSchema(RecordSchema):
    license_number: Optional[str] = None
    business_name: Optional[str] = None
    owner: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Email = None
    fee_amount: Optional[float] = Field(None, ge=0)
    expires_at: Optional[date] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    notes: Optional[str] = None


class ProjectSchema(RecordSchema):
    name: str = Field(min_length=1)
    code: Optional[str] = None
    description: Optional[str] = None
    department: Optional[str] = None
    domain: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    funding_source: Optional[str] = None
    budget_approved: Optional[float] = Field(None, ge=0)
    budget_executed: Optional[float] = Field(None, ge=0)
    progress: Optional[int] = Field(None, ge=0, le=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetSchema(RecordSchema):
    budget_year: int = Field(ge=2000, le=2100)
    department: str = Field(min_length=1)
    category: Optional[str] = None
    allocated_amount: float = Field(ge=0)
    spent_amount: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None


class GrantSchema(RecordSchema):
    name: str = Field(min_length=1)
    ministry: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    status: Optional[Literal[GRANT_STATUSES]] = None
    submitted_at: Optional[date] = None
    decision_at: Optional[date] = None
    notes: Optional[str] = None

    @field_validator('status', mode='before')
    @classmethod
    def lower_status(cls, value):
        return value.lower() if isinstance(value, str) else value


class TaskSchema(RecordSchema):
    title: str = Field(min_length=1)
    department_slug: Department
    description: Optional[str] = None
    priority: Optional[Literal[TASK_PRIORITIES]] = None
    status: Optional[Literal[TASK_STATUSES]] = None
    due_at: Optional[datetime] = None
    progress_percent: Optional[int] = Field(None, ge=0, le=100)
    progress_notes: Optional[str] = None
    tags: Optional[List[str]] = None


class InstitutionSchema(RecordSchema):
    name: str = Field(min_length=1)
    level: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Email = None
    students: Optional[int] = Field(None, ge=0)
    classes: Optional[int] = Field(None, ge=0)
    capacity: Optional[int] = Field(None, ge=0)
    occupancy: Optional[float] = Field(None, ge=0, le=100)
    status: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class ActivitySchema(RecordSchema):
    name: str = Field(min_length=1)
    program: Optional[str] = None
    category: Optional[str] = None
    age_group: Optional[str] = None
    location: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    participants: Optional[int] = Field(None, ge=0)
    status: Optional[str] = None


class PlanSchema(RecordSchema):
    name: str = Field(min_length=1)
    plan_number: Optional[str] = None
    status: Optional[str] = None
    land_use: Optional[str] = None
    address: Optional[str] = None
    block: Optional[str] = None
    parcel: Optional[str] = None
    area: Optional[float] = Field(None, ge=0)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class WelfareServiceSchema(RecordSchema):
    service_type: str = Field(min_length=1)
    period: Optional[str] = None
    recipients: Optional[int] = Field(None, ge=0)
    budget_allocated: Optional[float] = Field(None, ge=0)
    utilization: Optional[float] = Field(None, ge=0, le=100)
    waitlist: Optional[int] = Field(None, ge=0)


class PublicInquirySchema(RecordSchema):
    name: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    phone: Optional[str] = None
    email: Email = None
    address: Optional[str] = None
    description: Optional[str] = None
    inquiry_type: Optional[Literal[INQUIRY_TYPES]] = None
    source: Optional[Literal[INQUIRY_SOURCES]] = None
    priority: Optional[Literal[TASK_PRIORITIES]] = None
    status: Optional[Literal[INQUIRY_STATUSES]] = None


class ProfileSchema(BaseModel):
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)

    display_name: Optional[str] = Field(None, max_length=120)
    avatar_url: Optional[str] = None


SCHEMAS = {
    'licenses': LicenseSchema,
    'projects': ProjectSchema,
    'budgets': BudgetSchema,
    'grants': GrantSchema,
    'tasks': TaskSchema,
    'institutions': InstitutionSchema,
    'activities': ActivitySchema,
    'plans': PlanSchema,
    'welfare_services': WelfareServiceSchema,
    'public_inquiries': PublicInquirySchema,
}

ALIASES = {
    'business_licenses': 'licenses',
    'regular_budget': 'budgets',
    'budget_authorizations': 'budgets',
    'tabarim': 'budgets',
    'collection_data': 'budgets',
    'salary_data': 'budgets',
    'inquiries': 'public_inquiries',
}


def schema_for(table):
    return SCHEMAS.get(ALIASES.get(table, table))


def _describe(exc):
    issues = []
    for err in exc.errors():
        path = '.'.join(str(p) for p in err['loc']) or '__root__'
        msg = err['msg']
        if msg.startswith('Value error, '):
            msg = msg[len('Value error, '):]
        issues.append(f'{path}: {msg}')
    return issues


def validate_record(table, data, current=None):
    """Validate ``data`` for ``table`` and return the cleaned field values.

    For an update pass the stored row as ``current``: the merged record is
    validated as a whole, but only the submitted keys are returned.
    """
    schema = schema_for(table)
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')
    if schema is None:
        return dict(data)

    merged = dict(current or {})
    merged.update(data)
    try:
        obj = schema.model_validate(merged)
    except ValidationError as exc:
        issues = _describe(exc)
        raise ValidationFailed(', '.join(issues), issues)
    cleaned = obj.model_dump(exclude_unset=True)
    if current is None:
        return cleaned
    return {k: v for k, v in cleaned.items() if k in data}


def validate_row(table, data):
    """Return ``(is_valid, error)``; tables without a schema always pass."""
    if schema_for(table) is None:
        return True, None
    try:
        validate_record(table, data)
    except ValidationFailed as exc:
        return False, str(exc)
    return True, None


def validate_profile(data):
    try:
        obj = ProfileSchema.model_validate(data or {})
    except ValidationError as exc:
        issues = _describe(exc)
        raise ValidationFailed(', '.join(issues), issues)
    return obj.model_dump(exclude_unset=True)


