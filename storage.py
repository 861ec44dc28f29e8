"""File buckets on local disk.

Objects live under ``STORAGE_ROOT/<bucket>/<owner>/<timestamp>-<name>`` and
are indexed in ``storage_objects`` so they can be listed and removed.
"""

import io
import logging
import os
import time

from flask import current_app, url_for
from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from access import ApiError
from models import StorageObject, db

logger = logging.getLogger(__name__)

BUCKETS = ('uploads', 'avatars')
IMAGE_BUCKETS = ('avatars',)


def _root():
    return current_app.config['STORAGE_ROOT']


def _check_bucket(bucket):
    if bucket not in BUCKETS:
        raise ApiError(f'Unknown bucket: {bucket}', 404)


def object_path(bucket, path):
    """Absolute path of an object, refusing anything outside the bucket."""
    _check_bucket(bucket)
    base = os.path.realpath(os.path.join(_root(), bucket))
    full = os.path.realpath(os.path.join(base, path))
    if not full.startswith(base + os.sep):
        raise ApiError('Invalid storage path', 400)
    return full


def verify_image(data):
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ApiError('File is not a valid image', 400)


def upload(bucket, folder, filename, data, content_type=None, upsert=True, profile_id=None):
    """Store ``data`` and return the object's bucket-relative path."""
    _check_bucket(bucket)
    name = secure_filename(filename or '')
    if not name:
        raise ApiError('A file name is required', 400)
    if not data:
        raise ApiError('File is empty', 400)
    if bucket in IMAGE_BUCKETS:
        verify_image(data)

    path = f'{folder}/{int(time.time() * 1000)}-{name}'
    full = object_path(bucket, path)
    existing = StorageObject.query.filter_by(bucket=bucket, path=path).first()
    if existing and not upsert:
        raise ApiError(f'Object already exists: {path}', 409)

    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, 'wb') as f:
        f.write(data)

    obj = existing or StorageObject(bucket=bucket, path=path)
    obj.content_type = content_type
    obj.size = len(data)
    obj.profile_id = profile_id
    db.session.add(obj)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        os.remove(full)
        logger.exception('Failed to index %s/%s', bucket, path)
        raise ApiError('Failed to store file', 500)
    logger.info('Stored %s/%s (%d bytes)', bucket, path, len(data))
    return path


def upload_file(bucket, folder, file_storage, profile_id=None):
    """Store a werkzeug ``FileStorage`` from a multipart request."""
    if file_storage is None:
        raise ApiError('No file uploaded', 400)
    return upload(bucket, folder, file_storage.filename, file_storage.read(),
                  content_type=file_storage.mimetype, profile_id=profile_id)


def public_url(bucket, path):
    return url_for('storage_object', bucket=bucket, path=path)


def list_objects(bucket, prefix=''):
    _check_bucket(bucket)
    query = StorageObject.query.filter_by(bucket=bucket)
    if prefix:
        query = query.filter(StorageObject.path.startswith(prefix))
    return query.order_by(StorageObject.created_at.desc()).all()


def remove(bucket, path):
    full = object_path(bucket, path)
    obj = StorageObject.query.filter_by(bucket=bucket, path=path).first()
    if obj is None and not os.path.exists(full):
        raise ApiError(f'Object not found: {path}', 404)
    if obj is not None:
        db.session.delete(obj)
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception('Failed to remove %s/%s', bucket, path)
            raise ApiError('Failed to remove file', 500)
    if os.path.exists(full):
        os.remove(full)
