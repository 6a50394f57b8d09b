"""
Backup snapshots of the metadata map and the uploads directory.

Each snapshot is a directory named `backup-<UTC timestamp>` under the backups
folder, holding a copy of the metadata file and an `uploads/` copy of every media
file. Snapshots are assembled in a hidden staging directory and renamed into place,
so a listed snapshot is always complete. Restoring is additive: snapshot files are
copied over the live uploads directory without clearing it first.
"""

import os
import re
import shutil
import threading
from datetime import datetime, timezone

from loguru import logger

import metadata_store
from items import NotFoundError, StorageError
from media import list_media_files
from storage_context import METADATA_FILENAME, UPLOADS_FOLDER_NAME


BACKUP_PREFIX = 'backup-'
BACKUP_NAME_PATTERN = re.compile(r'^backup-\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z(?:-\d+)?$')
STAGING_PREFIX = '.staging-'


def backup_name_for(moment):
    """`backup-2024-01-01T00-00-00-000Z` for the given aware datetime."""
    moment = moment.astimezone(timezone.utc)
    return BACKUP_PREFIX + moment.strftime('%Y-%m-%dT%H-%M-%S-') + f"{moment.microsecond // 1000:03d}Z"


def parse_backup_time(name):
    """ISO-8601 creation time encoded in a snapshot name, or None."""
    match = re.match(r'^backup-(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{3})Z', name)
    if not match:
        return None
    day, hour, minute, second, millis = match.groups()
    return f"{day}T{hour}:{minute}:{second}.{millis}Z"


def is_valid_backup_name(name):
    return bool(name) and bool(BACKUP_NAME_PATTERN.match(name))


def _snapshot_info(context, name):
    snapshot_dir = os.path.join(context.backups_dir, name)
    snapshot_uploads = os.path.join(snapshot_dir, UPLOADS_FOLDER_NAME)
    files = list_media_files(snapshot_uploads)
    size = 0
    for filename in files:
        try:
            size += os.path.getsize(os.path.join(snapshot_uploads, filename))
        except OSError:
            continue
    return {
        'name': name,
        'createdAt': parse_backup_time(name),
        'fileCount': len(files),
        'size': size,
        'hasMetadata': os.path.isfile(os.path.join(snapshot_dir, METADATA_FILENAME)),
    }


def backup_names(context):
    """Snapshot directory names, newest first."""
    if not os.path.isdir(context.backups_dir):
        return []
    names = [
        name for name in os.listdir(context.backups_dir)
        if is_valid_backup_name(name) and os.path.isdir(os.path.join(context.backups_dir, name))
    ]
    # The timestamp format sorts lexically
    return sorted(names, reverse=True)


def list_backups(context):
    return [_snapshot_info(context, name) for name in backup_names(context)]


def latest_backup(context):
    names = backup_names(context)
    return names[0] if names else None


def create_backup(context):
    """
    Snapshots the current metadata file and media files.
    Raises StorageError if the snapshot could not be written.
    """
    os.makedirs(context.backups_dir, exist_ok=True)
    name = backup_name_for(datetime.now(timezone.utc))
    suffix = 1
    base_name = name
    while os.path.exists(os.path.join(context.backups_dir, name)):
        name = f"{base_name}-{suffix}"
        suffix += 1

    staging_dir = os.path.join(context.backups_dir, STAGING_PREFIX + name)
    final_dir = os.path.join(context.backups_dir, name)
    try:
        staging_uploads = os.path.join(staging_dir, UPLOADS_FOLDER_NAME)
        os.makedirs(staging_uploads)

        staged_metadata = os.path.join(staging_dir, METADATA_FILENAME)
        if os.path.isfile(context.metadata_file):
            shutil.copy2(context.metadata_file, staged_metadata)
        else:
            with open(staged_metadata, 'w', encoding='utf-8') as f:
                f.write(metadata_store.serialize(metadata_store.load(context)))

        files = list_media_files(context.uploads_dir)
        for filename in files:
            shutil.copy2(context.upload_path(filename), os.path.join(staging_uploads, filename))

        os.rename(staging_dir, final_dir)
    except OSError as e:
        logger.error(f"Error creating backup {name}: {type(e).__name__}: {e}")
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise StorageError(f"Failed to create backup: {e}") from e

    logger.info(f"Backup {name} created ({len(files)} files)")
    return _snapshot_info(context, name)


def restore_backup(context, name):
    """
    Copies a snapshot back into the live directories. The snapshot's metadata replaces
    the live map (and its mirror); its files are copied over the uploads directory.
    """
    if not is_valid_backup_name(name):
        raise NotFoundError(f"Backup '{name}' not found")
    snapshot_dir = os.path.join(context.backups_dir, name)
    if not os.path.isdir(snapshot_dir):
        raise NotFoundError(f"Backup '{name}' not found")

    snapshot_uploads = os.path.join(snapshot_dir, UPLOADS_FOLDER_NAME)
    snapshot_metadata = os.path.join(snapshot_dir, METADATA_FILENAME)

    restored_files = 0
    try:
        os.makedirs(context.uploads_dir, exist_ok=True)
        for filename in list_media_files(snapshot_uploads):
            shutil.copy2(os.path.join(snapshot_uploads, filename), context.upload_path(filename))
            restored_files += 1
    except OSError as e:
        logger.error(f"Error restoring files from {name}: {type(e).__name__}: {e}")
        raise StorageError(f"Failed to restore backup files: {e}") from e

    restored_entries = 0
    if os.path.isfile(snapshot_metadata):
        items = metadata_store.load_file(snapshot_metadata)
        if items is None:
            raise StorageError(f"Backup '{name}' has unreadable metadata")
        if not metadata_store.save(context, items):
            raise StorageError("Failed to write restored metadata")
        restored_entries = len(items)
    else:
        logger.warning(f"Backup {name} has no metadata file; only files were restored")

    logger.info(f"Restored backup {name}: {restored_files} files, {restored_entries} metadata entries")
    return {'name': name, 'restoredFiles': restored_files, 'restoredEntries': restored_entries}


class BackupScheduler:
    """Counts successful uploads and takes a snapshot every `interval` of them."""

    def __init__(self, context, interval=None):
        self.context = context
        self.interval = context.backup_interval if interval is None else interval
        self.uploads_since_backup = 0
        self._lock = threading.Lock()

    def record_upload(self):
        """Returns the snapshot info when one was taken. Backup failure is only logged."""
        if self.interval <= 0:
            return None
        with self._lock:
            self.uploads_since_backup += 1
            if self.uploads_since_backup < self.interval:
                return None
            self.uploads_since_backup = 0
        try:
            return create_backup(self.context)
        except StorageError as e:
            logger.warning(f"Periodic backup skipped: {e}")
            return None
