#!/usr/bin/env python3
"""
Create the dashboard tables and load the city directory plus a handful of
sample rows per department, enough to light up every dashboard.

Usage: python seed_data.py [--reset]
"""

import argparse
import sys
from datetime import date, timedelta

from access import DIRECTORY
from models import (Activity, Budget, CitySetting, Grant, Institution, License, Plan, Profile,
                    Project, PublicInquiry, Task, UserDepartment, WelfareService, db, utcnow)


def seed_profiles():
    """Insert every directory entry that does not have a profile yet."""
    profiles = {}
    for entry in DIRECTORY:
        profile = Profile.query.filter_by(email=entry['email']).first()
        if profile is None:
            profile = Profile(email=entry['email'], role=entry['role'],
                              display_name=entry['display_name'])
            profile.department_links = [UserDepartment(department=d)
                                        for d in entry['departments']]
            db.session.add(profile)
        profiles[entry['role'] if entry['role'] != 'manager' else entry['departments'][0]] = profile
    db.session.flush()
    print(f"  Profiles: {len(profiles)}")
    return profiles


def sample_records(profiles):
    today = date.today()
    now = utcnow()
    mayor = profiles['mayor']
    ceo = profiles['ceo']

    licenses = [
        License(license_number='BL-2024-001', business_name='Cafe Hanamal', owner='Dana Levi',
                type='food', status='active', address='12 Harbor St', fee_amount=1200,
                expires_at=today + timedelta(days=12), department_slug='business'),
        License(license_number='BL-2024-002', business_name='Green Market', owner='Avi Cohen',
                type='retail', status='active', address='4 Market Sq', fee_amount=850,
                expires_at=today + timedelta(days=200), department_slug='business'),
        License(license_number='BL-2023-117', business_name='Night Owl Bar', owner='Noa Mizrahi',
                type='entertainment', status='expired', address='31 Beach Rd', fee_amount=2400,
                expires_at=today - timedelta(days=40), department_slug='business'),
    ]
    projects = [
        Project(code='P-101', name='Central Park Renewal', department='engineering',
                domain='infrastructure', status='in_progress', priority='high',
                funding_source='municipal', budget_approved=4_500_000, budget_executed=1_900_000,
                progress=42, start_date=today - timedelta(days=180),
                end_date=today + timedelta(days=365), department_slug='engineering'),
        Project(code='P-102', name='Smart Classrooms', department='education',
                domain='education', status='planning', priority='medium',
                funding_source='ministry', budget_approved=1_200_000, budget_executed=0,
                progress=5, department_slug='education'),
    ]
    budgets = [
        Budget(budget_year=today.year, department='Finance', category='operations',
               allocated_amount=12_000_000, spent_amount=7_300_000, department_slug='finance'),
        Budget(budget_year=today.year, department='Education', category='operations',
               allocated_amount=48_000_000, spent_amount=31_000_000, department_slug='finance'),
        Budget(budget_year=today.year - 1, department='Welfare', category='services',
               allocated_amount=22_000_000, spent_amount=21_400_000, department_slug='finance'),
    ]
    grants = [
        Grant(name='Green Schools Initiative', ministry='Ministry of Education', amount=650_000,
              status='approved', submitted_at=today - timedelta(days=120),
              decision_at=today - timedelta(days=30), department_slug='education'),
        Grant(name='Road Safety 2025', ministry='Ministry of Transport', amount=1_100_000,
              status='submitted', submitted_at=today - timedelta(days=20),
              department_slug='engineering'),
        Grant(name='Senior Day Center', ministry='Ministry of Welfare', amount=300_000,
              status='rejected', submitted_at=today - timedelta(days=200),
              decision_at=today - timedelta(days=90), department_slug='welfare'),
    ]
    tasks = [
        Task(title='Prepare quarterly budget review', priority='high', status='todo',
             due_at=now + timedelta(days=7), department_slug='finance',
             assigned_by_role='mayor', profile_id=mayor.id, tags=['budget']),
        Task(title='Inspect school shelters', priority='urgent', status='in_progress',
             due_at=now - timedelta(days=2), progress_percent=60, department_slug='education',
             assigned_by_role='ceo', profile_id=ceo.id),
        Task(title='Publish licensing guidelines', priority='medium', status='done',
             department_slug='business', assigned_by_role='ceo', profile_id=ceo.id),
    ]
    institutions = [
        Institution(name='Herzl Elementary', level='elementary', address='8 Herzl St',
                    students=540, classes=20, capacity=560, occupancy=96.4, status='active',
                    department_slug='education'),
        Institution(name='Rabin High School', level='high', address='2 Rabin Blvd',
                    students=910, classes=32, capacity=1200, occupancy=75.8, status='active',
                    department_slug='education'),
    ]
    activities = [
        Activity(name='Youth Robotics Club', program='STEM after school', category='science',
                 age_group='12-15', location='Community Center', participants=24,
                 scheduled_at=now + timedelta(days=3), status='open',
                 department_slug='non-formal'),
        Activity(name='Summer Football League', program='Sports', category='sports',
                 age_group='9-12', location='City Stadium', participants=80,
                 scheduled_at=now - timedelta(days=30), status='closed',
                 department_slug='non-formal'),
    ]
    plans = [
        Plan(name='North Quarter Housing', plan_number='TPL-455', status='approved',
             land_use='residential', block='6120', parcel='14', area=38_000,
             department_slug='engineering'),
        Plan(name='Harbor Commercial Strip', plan_number='TPL-502', status='in_review',
             land_use='commercial', block='6133', parcel='2', area=12_500,
             department_slug='engineering'),
    ]
    welfare = [
        WelfareService(service_type='elderly care', period='2025-Q1', recipients=320,
                       budget_allocated=1_800_000, utilization=88, waitlist=41,
                       department_slug='welfare'),
        WelfareService(service_type='youth at risk', period='2025-Q1', recipients=145,
                       budget_allocated=950_000, utilization=72, waitlist=12,
                       department_slug='welfare'),
    ]
    inquiries = [
        PublicInquiry(name='Yael Ben David', phone='052-5550101', subject='Broken street light',
                      description='The light on 3 Herzl St has been out for a week.',
                      inquiry_type='complaint', source='whatsapp', priority='high', status='new',
                      department_slug='engineering'),
        PublicInquiry(name='Moshe Katz', email='moshe@example.com', subject='Kindergarten registration',
                      inquiry_type='information', source='website', status='resolved',
                      resolved_at=now - timedelta(days=2), department_slug='education'),
    ]
    return {
        'licenses': licenses, 'projects': projects, 'budgets': budgets, 'grants': grants,
        'tasks': tasks, 'institutions': institutions, 'activities': activities,
        'plans': plans, 'welfare_services': welfare, 'public_inquiries': inquiries,
    }


def main(argv=None):
    """Main seed pipeline."""
    parser = argparse.ArgumentParser(description='Seed the dashboard database')
    parser.add_argument('--reset', action='store_true', help='Drop all tables first')
    args = parser.parse_args(argv)

    from app import app

    print("City Hall Dashboard Seed")
    print(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")
    print("=" * 60)

    with app.app_context():
        if args.reset:
            db.drop_all()
            print("Dropped existing tables")
        db.create_all()

        print("\n--- Directory ---")
        profiles = seed_profiles()

        print("\n--- Sample records ---")
        for table, rows in sample_records(profiles).items():
            model = type(rows[0])
            if model.query.count():
                print(f"  {table}: already has data, skipped")
                continue
            db.session.add_all(rows)
            print(f"  {table}: {len(rows)}")

        if db.session.get(CitySetting, 'city_name') is None:
            db.session.add(CitySetting(key='city_name', value=app.config['CITY_NAME']))
        db.session.commit()

    print("\nDone!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
