"""
Blob store for uploaded result files.

Objects are keyed ``{folder}/{ownerId}/{uuid}.{ext}``.  The default
implementation sits on Django's ``default_storage``; ``get`` returns a
time-limited signed link for backends that cannot presign themselves.
"""
from __future__ import annotations

import logging
import mimetypes
import os
import uuid
from typing import Optional

from django.conf import settings
from django.core import signing
from django.core.files.storage import default_storage
from django.urls import reverse

from records.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_SIGNING_SALT = 'records.blob'

_EXTENSIONS = {
    'application/pdf': 'pdf',
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'application/msword': 'doc',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document': 'docx',
}


def validate_upload(f) -> str:
    """Check size and MIME type; return the content type."""
    size_mb = (getattr(f, 'size', 0) or 0) / (1024 * 1024)
    if size_mb > settings.UPLOAD_MAX_MB:
        raise ValidationError({'file': f'file exceeds {settings.UPLOAD_MAX_MB}MB'}, kind='file_too_large')
    ctype = (getattr(f, 'content_type', '') or '').split(';')[0].strip().lower()
    if not ctype:
        ctype = mimetypes.guess_type(getattr(f, 'name', '') or '')[0] or ''
    if ctype not in settings.ALLOWED_UPLOAD_TYPES:
        raise ValidationError({'file': 'only PDF, JPEG, PNG and Word documents are accepted'},
                              kind='unsupported_file_type')
    return ctype


class BlobStore:
    """put(file, owner, folder) -> url, get(url) -> presigned url, delete(url)."""

    def __init__(self, storage=None):
        self.storage = storage or default_storage

    @staticmethod
    def key_for(folder: str, owner_id, filename: str, content_type: str) -> str:
        ext = _EXTENSIONS.get(content_type) or os.path.splitext(filename or '')[1].lstrip('.').lower() or 'bin'
        return f"{folder}/{owner_id}/{uuid.uuid4().hex}.{ext}"

    def put(self, f, *, owner_id, folder: str) -> dict:
        content_type = validate_upload(f)
        key = self.key_for(folder, owner_id, getattr(f, 'name', ''), content_type)
        saved = self.storage.save(key, f)
        logger.info('stored blob %s (%s, %s bytes)', saved, content_type, getattr(f, 'size', 0))
        return {'url': saved, 'contentType': content_type, 'size': getattr(f, 'size', 0)}

    def get(self, url: str) -> str:
        if not url or not self.storage.exists(url):
            raise NotFoundError('file not found')
        token = signing.dumps({'k': url}, salt=_SIGNING_SALT)
        return f"{reverse('blob_download')}?token={token}"

    def link(self, url: str) -> Optional[str]:
        """Like :meth:`get`, but ``None`` when there is nothing stored."""
        if not url or not self.storage.exists(url):
            return None
        return self.get(url)

    def resolve(self, token: str, ttl: Optional[int] = None) -> str:
        max_age = ttl if ttl is not None else settings.BLOB_URL_TTL_SECONDS
        try:
            key = signing.loads(token, salt=_SIGNING_SALT, max_age=max_age)['k']
        except (signing.BadSignature, KeyError, TypeError):
            raise NotFoundError('link is invalid or has expired', kind='invalid_link')
        if not self.storage.exists(key):
            raise NotFoundError('file not found')
        return key

    def open(self, key: str):
        return self.storage.open(key, 'rb')

    def delete(self, url: str) -> None:
        if url and self.storage.exists(url):
            self.storage.delete(url)


blob_store = BlobStore()
