from datetime import date, datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import declared_attr

db = SQLAlchemy()

DEPARTMENTS = ('finance', 'education', 'engineering', 'welfare', 'non-formal', 'business')
ROLES = ('mayor', 'ceo', 'manager')
EXECUTIVE_ROLES = ('mayor', 'ceo')


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _json_value(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class RecordMixin:
    """Columns and serialization shared by every departmental table."""
    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    department_slug = db.Column(db.Text, index=True)

    @declared_attr
    def profile_id(cls):
        return db.Column(db.Integer, db.ForeignKey('profiles.id'))

    def to_dict(self):
        return {c.name: _json_value(getattr(self, c.name)) for c in self.__table__.columns}


class Profile(db.Model):
    __tablename__ = 'profiles'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.Text, nullable=False, unique=True)
    display_name = db.Column(db.Text)
    avatar_url = db.Column(db.Text)
    role = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    department_links = db.relationship('UserDepartment', backref='profile', lazy='selectin',
                                       cascade='all, delete-orphan')

    @property
    def departments(self):
        return [d.department for d in self.department_links]

    @property
    def is_executive(self):
        return self.role in EXECUTIVE_ROLES

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'display_name': self.display_name,
            'avatar_url': self.avatar_url,
            'role': self.role,
            'departments': self.departments,
        }


class UserDepartment(db.Model):
    __tablename__ = 'user_departments'
    id = db.Column(db.Integer, primary_key=True)
    profile_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    department = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (db.UniqueConstraint('profile_id', 'department'),)


class License(RecordMixin, db.Model):
    __tablename__ = 'licenses'
    license_number = db.Column(db.Text)
    business_name = db.Column(db.Text)
    owner = db.Column(db.Text)
    type = db.Column(db.Text)
    status = db.Column(db.Text)
    address = db.Column(db.Text)
    phone = db.Column(db.Text)
    email = db.Column(db.Text)
    fee_amount = db.Column(db.Float)
    expires_at = db.Column(db.Date)
    lat = db.Column(db.Float)
    lng = db.Column(db.Float)
    image_urls = db.Column(db.JSON)
    notes = db.Column(db.Text)


class Project(RecordMixin, db.Model):
    __tablename__ = 'projects'
    code = db.Column(db.Text)
    name = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text)
    department = db.Column(db.Text)
    domain = db.Column(db.Text)
    status = db.Column(db.Text)
    priority = db.Column(db.Text)
    funding_source = db.Column(db.Text)
    budget_approved = db.Column(db.Float)
    budget_executed = db.Column(db.Float)
    progress = db.Column(db.Integer)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)


class Budget(RecordMixin, db.Model):
    __tablename__ = 'budgets'
    budget_year = db.Column(db.Integer, nullable=False, index=True)
    department = db.Column(db.Text, nullable=False)
    category = db.Column(db.Text)
    allocated_amount = db.Column(db.Float, nullable=False)
    spent_amount = db.Column(db.Float)
    description = db.Column(db.Text)

    @property
    def remaining_amount(self):
        return (self.allocated_amount or 0) - (self.spent_amount or 0)

    def to_dict(self):
        data = super().to_dict()
        data['remaining_amount'] = self.remaining_amount
        return data


class Grant(RecordMixin, db.Model):
    __tablename__ = 'grants'
    name = db.Column(db.Text, nullable=False)
    ministry = db.Column(db.Text)
    amount = db.Column(db.Float)
    status = db.Column(db.Text, default='draft')
    submitted_at = db.Column(db.Date)
    decision_at = db.Column(db.Date)
    notes = db.Column(db.Text)


class Task(RecordMixin, db.Model):
    __tablename__ = 'tasks'
    title = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text)
    priority = db.Column(db.Text, nullable=False, default='medium')
    status = db.Column(db.Text, nullable=False, default='todo')
    due_at = db.Column(db.DateTime)
    progress_percent = db.Column(db.Integer)
    progress_notes = db.Column(db.Text)
    tags = db.Column(db.JSON)
    assigned_by_role = db.Column(db.Text)

    acknowledgements = db.relationship('TaskAcknowledgement', backref='task',
                                       cascade='all, delete-orphan')


class TaskAcknowledgement(db.Model):
    __tablename__ = 'task_acknowledgements'
    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey('tasks.id'), nullable=False)
    profile_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (db.UniqueConstraint('task_id', 'profile_id'),)


class Institution(RecordMixin, db.Model):
    __tablename__ = 'institutions'
    name = db.Column(db.Text, nullable=False)
    level = db.Column(db.Text)
    address = db.Column(db.Text)
    phone = db.Column(db.Text)
    email = db.Column(db.Text)
    students = db.Column(db.Integer)
    classes = db.Column(db.Integer)
    capacity = db.Column(db.Integer)
    occupancy = db.Column(db.Float)
    status = db.Column(db.Text)
    lat = db.Column(db.Float)
    lng = db.Column(db.Float)


class Activity(RecordMixin, db.Model):
    __tablename__ = 'activities'
    name = db.Column(db.Text, nullable=False)
    program = db.Column(db.Text)
    category = db.Column(db.Text)
    age_group = db.Column(db.Text)
    location = db.Column(db.Text)
    scheduled_at = db.Column(db.DateTime)
    participants = db.Column(db.Integer)
    status = db.Column(db.Text)


class Plan(RecordMixin, db.Model):
    __tablename__ = 'plans'
    name = db.Column(db.Text, nullable=False)
    plan_number = db.Column(db.Text)
    status = db.Column(db.Text)
    land_use = db.Column(db.Text)
    address = db.Column(db.Text)
    block = db.Column(db.Text)
    parcel = db.Column(db.Text)
    area = db.Column(db.Float)
    start_at = db.Column(db.DateTime)
    end_at = db.Column(db.DateTime)
    lat = db.Column(db.Float)
    lng = db.Column(db.Float)
    image_urls = db.Column(db.JSON)
    file_urls = db.Column(db.JSON)


class PublicInquiry(RecordMixin, db.Model):
    __tablename__ = 'public_inquiries'
    name = db.Column(db.Text, nullable=False)
    phone = db.Column(db.Text)
    email = db.Column(db.Text)
    address = db.Column(db.Text)
    subject = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text)
    inquiry_type = db.Column(db.Text)
    source = db.Column(db.Text)
    priority = db.Column(db.Text, nullable=False, default='medium')
    status = db.Column(db.Text, nullable=False, default='new')
    resolved_at = db.Column(db.DateTime)


class WelfareService(RecordMixin, db.Model):
    __tablename__ = 'welfare_services'
    service_type = db.Column(db.Text, nullable=False)
    period = db.Column(db.Text)
    recipients = db.Column(db.Integer)
    budget_allocated = db.Column(db.Float)
    utilization = db.Column(db.Float)
    waitlist = db.Column(db.Integer)


class CitySetting(db.Model):
    __tablename__ = 'city_settings'
    key = db.Column(db.Text, primary_key=True)
    value = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class StorageObject(db.Model):
    __tablename__ = 'storage_objects'
    id = db.Column(db.Integer, primary_key=True)
    bucket = db.Column(db.Text, nullable=False)
    path = db.Column(db.Text, nullable=False)
    content_type = db.Column(db.Text)
    size = db.Column(db.Integer)
    profile_id = db.Column(db.Integer, db.ForeignKey('profiles.id'))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (db.UniqueConstraint('bucket', 'path'),)


class IngestionLog(db.Model):
    __tablename__ = 'ingestion_logs'
    id = db.Column(db.Integer, primary_key=True)
    table_name = db.Column(db.Text, nullable=False)
    source_file = db.Column(db.Text)
    rows = db.Column(db.Integer)
    status = db.Column(db.Text)
    error = db.Column(db.Text)
    profile_id = db.Column(db.Integer, db.ForeignKey('profiles.id'))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
