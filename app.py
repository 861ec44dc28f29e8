#!/usr/bin/env python3
"""City Hall Dashboard - Flask Application"""

import logging
import os

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, send_file
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

import dashboards
import exports
import records
import storage
from access import (ApiError, require_department, require_executive, require_profile,
                    visible_departments)
from avatars import render_avatar
from models import CitySetting, StorageObject, Task, TaskAcknowledgement, db
from validation import ValidationFailed, validate_profile

load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'change-me-in-production')
default_db = 'sqlite:///' + os.path.join(basedir, 'city_dashboard.db')
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', default_db)
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['STORAGE_ROOT'] = os.getenv('STORAGE_ROOT', os.path.join(basedir, 'storage'))
app.config['MAX_CONTENT_LENGTH'] = int(os.getenv('MAX_UPLOAD_MB', '10')) * 1024 * 1024
app.config['CITY_NAME'] = os.getenv('CITY_NAME', 'City Hall')
app.json.ensure_ascii = False

db.init_app(app)

SETTING_KEYS = ('city_name', 'logo_url', 'primary_color', 'mapbox_token')
EXECUTIVE_TASK_ROLES = ('mayor', 'ceo')


# ============================================================
# ERROR HANDLING
# ============================================================

@app.errorhandler(ApiError)
def handle_api_error(exc):
    if exc.status >= 500:
        logger.error('%s %s failed: %s', request.method, request.path, exc.message)
    return jsonify({'error': exc.message}), exc.status


@app.errorhandler(HTTPException)
def handle_http_error(exc):
    return jsonify({'error': exc.description}), exc.code


@app.errorhandler(SQLAlchemyError)
def handle_db_error(exc):
    db.session.rollback()
    logger.exception('Database error on %s %s', request.method, request.path)
    return jsonify({'error': 'Database error'}), 500


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ApiError('Request body must be a JSON object')
    return data


# ============================================================
# HEALTH & PROFILE
# ============================================================

@app.route('/api/health')
def api_health():
    """Liveness plus a database round trip."""
    try:
        db.session.execute(db.text('SELECT 1'))
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('Health check failed')
        return jsonify({'status': 'error', 'database': False}), 503
    return jsonify({'status': 'ok', 'database': True})


@app.route('/api/me')
def api_me():
    profile = require_profile()
    data = profile.to_dict()
    data['visible_departments'] = visible_departments(profile)
    return jsonify(data)


@app.route('/api/me', methods=['PUT'])
def api_update_me():
    profile = require_profile()
    try:
        values = validate_profile(json_body())
    except ValidationFailed as exc:
        raise ApiError(str(exc))
    for key, value in values.items():
        setattr(profile, key, value or None)
    db.session.commit()
    return jsonify(profile.to_dict())


@app.route('/api/me/avatar', methods=['POST'])
def api_upload_avatar():
    profile = require_profile()
    path = storage.upload_file('avatars', profile.id, request.files.get('file'),
                               profile_id=profile.id)
    profile.avatar_url = storage.public_url('avatars', path)
    db.session.commit()
    return jsonify(profile.to_dict()), 201


@app.route('/api/me/avatar.png')
def api_avatar_placeholder():
    profile = require_profile()
    png = render_avatar(profile.display_name or profile.email, key=profile.email)
    return Response(png, mimetype='image/png')


# ============================================================
# CITY SETTINGS
# ============================================================

def settings_dict():
    values = {'city_name': app.config['CITY_NAME'], 'logo_url': None}
    for s in CitySetting.query.all():
        values[s.key] = s.value
    return values


def save_settings(values):
    for key, value in values.items():
        setting = db.session.get(CitySetting, key) or CitySetting(key=key)
        setting.value = value
        db.session.add(setting)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception('Failed to save city settings')
        raise ApiError('Failed to save settings', 500)


@app.route('/api/settings')
def api_settings():
    require_profile()
    return jsonify(settings_dict())


@app.route('/api/settings', methods=['PUT'])
def api_update_settings():
    profile = require_profile()
    require_executive(profile)
    data = json_body()
    unknown = sorted(set(data) - set(SETTING_KEYS))
    if unknown:
        raise ApiError(f'Unknown settings: {", ".join(unknown)}')
    values = {}
    for key, value in data.items():
        if value is not None and not isinstance(value, str):
            raise ApiError(f'{key}: must be a string')
        values[key] = value.strip() if value else None
    save_settings(values)
    return jsonify(settings_dict())


@app.route('/api/settings/logo', methods=['POST'])
def api_upload_logo():
    profile = require_profile()
    require_executive(profile)
    upload = request.files.get('file')
    if upload is not None:
        storage.verify_image(upload.read())
        upload.stream.seek(0)
    path = storage.upload_file('uploads', 'branding', upload, profile_id=profile.id)
    save_settings({'logo_url': storage.public_url('uploads', path)})
    return jsonify(settings_dict()), 201


# ============================================================
# DASHBOARDS & EXECUTIVE TASKS
# ============================================================

@app.route('/api/dashboards/<name>')
def api_dashboard(name):
    profile = require_profile()
    return jsonify(dashboards.build(name, profile))


def pending_executive_tasks(profile, department):
    """Open tasks from the mayor or CEO the manager has not acknowledged yet."""
    acknowledged = db.select(TaskAcknowledgement.task_id) \
        .where(TaskAcknowledgement.profile_id == profile.id)
    return Task.query.filter(
        Task.department_slug == department,
        Task.assigned_by_role.in_(EXECUTIVE_TASK_ROLES),
        Task.status.notin_(dashboards.CLOSED_TASK_STATUSES),
        Task.id.notin_(acknowledged),
    ).order_by(Task.created_at.desc()).all()


@app.route('/api/tasks/executive')
def api_executive_tasks():
    profile = require_profile()
    department = request.args.get('department')
    if not department:
        raise ApiError('department is required')
    require_department(profile, department)
    if profile.role != 'manager':
        return jsonify([])
    return jsonify([t.to_dict() for t in pending_executive_tasks(profile, department)])


@app.route('/api/tasks/<int:task_id>/acknowledge', methods=['POST'])
def api_acknowledge_task(task_id):
    profile = require_profile()
    task = records.get_record(records.get_resource('tasks'), profile, task_id)
    exists = TaskAcknowledgement.query.filter_by(task_id=task.id, profile_id=profile.id).first()
    if exists is None:
        db.session.add(TaskAcknowledgement(task_id=task.id, profile_id=profile.id))
        db.session.commit()
        logger.info('%s acknowledged task #%s', profile.email, task.id)
    return jsonify({'task_id': task.id, 'acknowledged': True})


# ============================================================
# RECORDS
# ============================================================

@app.route('/api/<table>')
def api_list(table):
    profile = require_profile()
    resource = records.get_resource(table)
    rows = records.list_records(resource, profile, request.args)
    return jsonify([r.to_dict() for r in rows])


@app.route('/api/<table>', methods=['POST'])
def api_create(table):
    profile = require_profile()
    resource = records.get_resource(table)
    record = records.create_record(resource, profile, json_body())
    return jsonify(record.to_dict()), 201


@app.route('/api/<table>/<int:record_id>')
def api_get(table, record_id):
    profile = require_profile()
    resource = records.get_resource(table)
    return jsonify(records.get_record(resource, profile, record_id).to_dict())


@app.route('/api/<table>/<int:record_id>', methods=['PATCH', 'PUT'])
def api_update(table, record_id):
    profile = require_profile()
    resource = records.get_resource(table)
    record = records.update_record(resource, profile, record_id, json_body())
    return jsonify(record.to_dict())


@app.route('/api/<table>/<int:record_id>', methods=['DELETE'])
def api_delete(table, record_id):
    profile = require_profile()
    resource = records.get_resource(table)
    records.delete_record(resource, profile, record_id)
    return '', 204


@app.route('/api/<table>/<int:record_id>/attachments', methods=['POST'])
def api_attach(table, record_id):
    """Upload an image or document and link it to a license or plan."""
    profile = require_profile()
    resource = records.get_resource(table)
    kind = request.form.get('kind', 'image')
    column = {'image': 'image_urls', 'file': 'file_urls'}.get(kind)
    if column not in resource.attachments:
        raise ApiError(f'{table} does not accept {kind} attachments')
    records.get_record(resource, profile, record_id)
    path = storage.upload_file('uploads', f'{table}-{record_id}', request.files.get('file'),
                               profile_id=profile.id)
    record = records.attach_url(resource, profile, record_id, column,
                                storage.public_url('uploads', path))
    return jsonify(record.to_dict()), 201


@app.route('/api/<table>/export.<fmt>')
def api_export(table, fmt):
    """Export the filtered table as CSV or XLSX."""
    profile = require_profile()
    resource = records.get_resource(table)
    rows = [r.to_dict() for r in records.list_records(resource, profile, request.args)]
    filename = exports.safe_filename(request.args.get('filename') or table)

    if fmt == 'csv':
        return Response(
            exports.to_csv(rows),
            mimetype='text/csv',
            headers={'Content-Disposition': f'attachment; filename={filename}.csv'}
        )
    if fmt == 'xlsx':
        return Response(
            exports.to_xlsx(rows),
            mimetype=exports.XLSX_MIMETYPE,
            headers={'Content-Disposition': f'attachment; filename={filename}.xlsx'}
        )
    raise ApiError(f'Unsupported export format: {fmt}', 404)


# ============================================================
# STORAGE
# ============================================================

@app.route('/storage/<bucket>/<path:path>')
def storage_object(bucket, path):
    full = storage.object_path(bucket, path)
    if not os.path.isfile(full):
        raise ApiError('File not found', 404)
    obj = StorageObject.query.filter_by(bucket=bucket, path=path).first()
    mimetype = obj.content_type if obj and obj.content_type else None
    return send_file(full, mimetype=mimetype)


@app.route('/api/storage/<bucket>')
def api_storage_list(bucket):
    profile = require_profile()
    require_executive(profile)
    objects = storage.list_objects(bucket, request.args.get('prefix', ''))
    return jsonify([{
        'path': o.path,
        'url': storage.public_url(bucket, o.path),
        'content_type': o.content_type,
        'size': o.size,
        'created_at': o.created_at.isoformat(),
    } for o in objects])


@app.route('/api/storage/<bucket>/<path:path>', methods=['DELETE'])
def api_storage_remove(bucket, path):
    profile = require_profile()
    require_executive(profile)
    storage.remove(bucket, path)
    return '', 204


@app.cli.command('init-db')
def init_db():
    """Create all database tables."""
    db.create_all()
    print(f"Database ready: {app.config['SQLALCHEMY_DATABASE_URI']}")


if __name__ == '__main__':
    with app.app_context():
        db.create_all()
    app.run(debug=True, port=5010)
