"""Role gating for the department views.

Identity is asserted upstream: the fronting proxy authenticates the user and
forwards the address in ``X-Profile-Email``. Nothing here checks credentials.
"""

import logging
import re

from flask import g, request
from sqlalchemy.exc import SQLAlchemyError

from models import DEPARTMENTS, EXECUTIVE_ROLES, Profile, UserDepartment, db

logger = logging.getLogger(__name__)

PROFILE_HEADER = 'X-Profile-Email'

# Tables only executives may create or delete rows in.
EXECUTIVE_ONLY_TABLES = {'tasks'}

PATH_DEPARTMENTS = {
    '/finance': 'finance',
    '/education': 'education',
    '/engineering': 'engineering',
    '/welfare': 'welfare',
    '/non-formal': 'non-formal',
    '/business': 'business',
}

DIRECTORY = [
    {'email': 'mayor@city.gov.il', 'role': 'mayor', 'departments': list(DEPARTMENTS),
     'display_name': 'Mayor'},
    {'email': 'ceo@city.gov.il', 'role': 'ceo', 'departments': list(DEPARTMENTS),
     'display_name': 'City Manager'},
    {'email': 'finance@city.gov.il', 'role': 'manager', 'departments': ['finance'],
     'display_name': 'Finance Manager'},
    {'email': 'education@city.gov.il', 'role': 'manager', 'departments': ['education'],
     'display_name': 'Education Manager'},
    {'email': 'engineering@city.gov.il', 'role': 'manager', 'departments': ['engineering'],
     'display_name': 'Engineering Manager'},
    {'email': 'welfare@city.gov.il', 'role': 'manager', 'departments': ['welfare'],
     'display_name': 'Welfare Manager'},
    {'email': 'non-formal@city.gov.il', 'role': 'manager', 'departments': ['non-formal'],
     'display_name': 'Non-Formal Education Manager'},
    {'email': 'business@city.gov.il', 'role': 'manager', 'departments': ['business'],
     'display_name': 'Business Licensing Manager'},
]


class ApiError(Exception):
    """An error that maps directly onto a JSON error response."""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.message = message
        self.status = status


def simple_username(email):
    """Alphanumeric, lower-cased local part of an address."""
    prefix = (email or '').split('@')[0]
    return re.sub(r'[^a-z0-9]', '', prefix, flags=re.IGNORECASE).lower()


def access_for_email(email):
    """Look up role and departments for an address in the city directory.

    Falls back to matching the simple username so ``mayor@example.com``
    resolves like ``mayor@city.gov.il``.
    """
    if not email:
        return None
    for entry in DIRECTORY:
        if entry['email'].lower() == email.lower():
            return {'role': entry['role'], 'departments': list(entry['departments'])}
    uname = simple_username(email)
    for entry in DIRECTORY:
        if simple_username(entry['email']) == uname:
            return {'role': entry['role'], 'departments': list(entry['departments'])}
    return None


def department_from_path(path):
    return PATH_DEPARTMENTS.get((path or '').rstrip('/') or '/')


def visible_departments(profile):
    if profile is None or profile.role is None:
        return []
    if profile.role in EXECUTIVE_ROLES:
        return list(DEPARTMENTS)
    return [d for d in profile.departments if d in DEPARTMENTS]


def can_view(profile, department):
    if profile is None or profile.role is None:
        return False
    if department is None:
        return True
    return department in visible_departments(profile)


def can_create(profile, table, department=None):
    if table in EXECUTIVE_ONLY_TABLES:
        return profile is not None and profile.is_executive
    return can_view(profile, department)


def can_delete(profile, table, department=None):
    return can_create(profile, table, department)


def current_profile():
    """Profile named by the request header, cached on ``g``."""
    if 'profile' in g:
        return g.profile
    email = (request.headers.get(PROFILE_HEADER) or '').strip().lower()
    profile = None
    if email:
        profile = Profile.query.filter(db.func.lower(Profile.email) == email).first()
        if profile is None:
            profile = provision_profile(email)
    g.profile = profile
    return profile


def provision_profile(email):
    """Create the profile for a directory address on its first request."""
    access = access_for_email(email)
    if access is None:
        return None
    profile = Profile(email=email, role=access['role'])
    profile.department_links = [UserDepartment(department=d) for d in access['departments']]
    db.session.add(profile)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('Failed to provision profile for %s', email)
        raise ApiError('Failed to load profile', 500)
    logger.info('Provisioned %s profile for %s', profile.role, email)
    return profile


def require_profile():
    profile = current_profile()
    if profile is None:
        raise ApiError('Sign-in required', 401)
    return profile


def require_department(profile, department):
    if not can_view(profile, department):
        raise ApiError(f'No access to department: {department}', 403)


def require_executive(profile):
    if not profile.is_executive:
        raise ApiError('Only the mayor or CEO can do this', 403)
