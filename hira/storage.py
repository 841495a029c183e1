"""Operational file attachments, stored as blobs named after their project."""

from __future__ import annotations

import logging
import mimetypes
import os
import time
from typing import Iterable, Mapping, Optional

from werkzeug.utils import secure_filename

from .errors import FileLimitError, StorageError, TOO_MANY_FILES, ValidationError

logger = logging.getLogger(__name__)

SUBFOLDER = 'operational-images'
MAX_FILES = 5
MAX_TOTAL_SIZE = 50 * 1024 * 1024


def file_size(file) -> int:
    size = getattr(file, 'size', None)
    if isinstance(size, int):
        return size
    stream = getattr(file, 'stream', file)
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def format_file_size(num_bytes: int) -> str:
    if not num_bytes:
        return '0 Bytes'
    sizes = ['Bytes', 'KB', 'MB', 'GB']
    i = 0
    while num_bytes >= 1024 ** (i + 1) and i < len(sizes) - 1:
        i += 1
    value = round(num_bytes / 1024 ** i, 2)
    return f'{value:g} {sizes[i]}'


class AttachmentStore:
    """Files under ``<root>/operational-images`` named ``{project}_{ms}_{name}``."""

    def __init__(self, root: str, max_files: int = MAX_FILES, max_total_size: int = MAX_TOTAL_SIZE):
        self.root = root
        self.max_files = max_files
        self.max_total_size = max_total_size

    @classmethod
    def from_config(cls, config: Mapping) -> 'AttachmentStore':
        return cls(config['UPLOAD_FOLDER'],
                   max_files=config.get('HIRA_MAX_FILES', MAX_FILES),
                   max_total_size=config.get('HIRA_MAX_TOTAL_SIZE', MAX_TOTAL_SIZE))

    @property
    def folder(self) -> str:
        return os.path.join(self.root, SUBFOLDER)

    def validate_files(self, new_sizes: Iterable[int], existing: Iterable[Mapping] = ()) -> None:
        new_sizes = list(new_sizes)
        existing = list(existing)
        if len(existing) + len(new_sizes) > self.max_files:
            raise FileLimitError(f'Maximum {self.max_files} files allowed', code=TOO_MANY_FILES)
        total = sum(f.get('size') or 0 for f in existing) + sum(new_sizes)
        if total > self.max_total_size:
            raise FileLimitError(
                f'Total file size cannot exceed {format_file_size(self.max_total_size)}')

    def upload(self, file, project_id: str, existing: Optional[Iterable[Mapping]] = None) -> dict:
        if not project_id:
            raise ValidationError('Project ID is required to upload files')
        original = secure_filename(getattr(file, 'filename', '') or '')
        if not original:
            raise ValidationError('A file name is required')

        if existing is None:
            existing = self.list_files(project_id)
        size = file_size(file)
        self.validate_files([size], existing)

        stored_name = f'{project_id}_{int(time.time() * 1000)}_{original}'
        path = f'{SUBFOLDER}/{stored_name}'
        try:
            os.makedirs(self.folder, exist_ok=True)
            file.save(os.path.join(self.folder, stored_name))
        except OSError as exc:
            logger.error('File upload failed for %s: %s', project_id, exc)
            raise StorageError('File upload failed', details={'original_error': str(exc)},
                               context='upload file') from exc

        logger.info('Stored %s for project %s (%s)', original, project_id, format_file_size(size))
        return {
            'name': original,
            'size': size,
            'path': path,
            'url': f'/uploads/{path}',
            'type': getattr(file, 'mimetype', None) or mimetypes.guess_type(original)[0]
            or 'application/octet-stream',
            'project_id': project_id,
        }

    def list_files(self, project_id: str) -> list[dict]:
        if not project_id or not os.path.isdir(self.folder):
            return []
        prefix = f'{project_id}_'
        files = []
        try:
            for stored_name in sorted(os.listdir(self.folder)):
                if not stored_name.startswith(prefix):
                    continue
                original = '_'.join(stored_name[len(prefix):].split('_')[1:])
                files.append({
                    'name': original,
                    'size': os.path.getsize(os.path.join(self.folder, stored_name)),
                    'path': f'{SUBFOLDER}/{stored_name}',
                    'url': f'/uploads/{SUBFOLDER}/{stored_name}',
                    'type': mimetypes.guess_type(original)[0] or 'application/octet-stream',
                    'project_id': project_id,
                })
        except OSError as exc:
            raise StorageError('Could not list files', details={'original_error': str(exc)},
                               context='list files') from exc
        return files

    def resolve(self, path: str) -> str:
        """Absolute location of a stored ``path``; refuses anything outside the store."""
        stored_name = os.path.basename(path or '')
        if not stored_name or path != f'{SUBFOLDER}/{stored_name}':
            raise ValidationError(f'Invalid file path: {path}')
        return os.path.join(self.folder, stored_name)

    def delete(self, path: str) -> None:
        location = self.resolve(path)
        try:
            if os.path.exists(location):
                os.remove(location)
        except OSError as exc:
            raise StorageError('File deletion failed', details={'original_error': str(exc)},
                               context='delete file') from exc

    def delete_project_files(self, project_id: str) -> int:
        removed = 0
        for info in self.list_files(project_id):
            self.delete(info['path'])
            removed += 1
        return removed
