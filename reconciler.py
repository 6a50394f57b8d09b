"""Startup reconciliation of the metadata map against the uploads directory."""

import os
from datetime import datetime, timezone

from loguru import logger

import backups
import metadata_store
from items import DEFAULT_CATEGORY, SENTINEL_ORDER, StorageError, StoredFile
from media import allowed_file, get_media_type, is_image_file, is_video_file, list_media_files


def iso_timestamp(moment):
    """JavaScript-style ISO-8601: UTC, millisecond precision, trailing Z."""
    return moment.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _file_mtime(context, filename):
    try:
        mtime = os.path.getmtime(context.upload_path(filename))
    except OSError:
        return iso_timestamp(datetime.now(timezone.utc))
    return iso_timestamp(datetime.fromtimestamp(mtime, timezone.utc))


def reconcile(context, items, filenames):
    """
    Aligns `items` with the media files actually present.

    Returns `(updated, changed)`. Records for stored files that no longer exist are
    dropped (external links are kept); files without a record get a default one.
    Files are never touched. The input map is not modified.
    """
    file_set = {name for name in filenames if allowed_file(name) and not name.startswith('.')}
    updated = {}
    changed = False

    for item_id, item in items.items():
        if not item.is_external and item_id not in file_set:
            logger.info(f"Removing orphaned metadata entry: {item_id}")
            changed = True
            continue
        updated[item_id] = item

    for filename in sorted(file_set):
        if filename in updated:
            continue
        logger.info(f"Adding missing metadata entry for file: {filename}")
        updated[filename] = StoredFile(
            id=filename,
            category=DEFAULT_CATEGORY,
            description='',
            upload_date=_file_mtime(context, filename),
            type=get_media_type(filename),
            group_id=None,
            order=SENTINEL_ORDER,
        )
        changed = True

    return updated, changed


def _restore_if_uploads_empty(context):
    """Recovers from an emptied uploads directory using the newest snapshot."""
    if list_media_files(context.uploads_dir):
        return False
    latest = backups.latest_backup(context)
    if latest is None:
        return False
    logger.warning(f"Uploads directory is empty but backups exist; restoring {latest}")
    try:
        backups.restore_backup(context, latest)
    except StorageError as e:
        logger.error(f"Restore of {latest} failed, media may have been lost: {e}")
        return False
    return True


def check_writable(directory):
    """Writes and removes a probe file; True when the directory accepts writes."""
    probe = os.path.join(directory, '.persistence-test')
    try:
        with open(probe, 'w', encoding='utf-8') as f:
            f.write('test')
        os.remove(probe)
        return True
    except OSError:
        return False


def startup_sync(context):
    """Runs once at process start. Returns the reconciled metadata map."""
    logger.info("Syncing metadata with files on disk...")
    try:
        context.ensure_directories()
    except OSError as e:
        logger.error(f"Could not create storage directories under {context.root}: {e}")

    if check_writable(context.uploads_dir):
        logger.info(f"Uploads directory {context.uploads_dir} is writable")
    else:
        logger.error(f"WARNING: uploads directory {context.uploads_dir} is not writable; uploads will fail")

    with context.lock:
        _restore_if_uploads_empty(context)

        items = metadata_store.load(context)
        files = list_media_files(context.uploads_dir)
        updated, changed = reconcile(context, items, files)
        if changed:
            if metadata_store.save(context, updated):
                logger.info("Metadata synced successfully")
        else:
            logger.info("Metadata is already in sync")

    image_count = sum(1 for f in files if is_image_file(f))
    video_count = sum(1 for f in files if is_video_file(f))
    link_count = sum(1 for item in updated.values() if item.is_external)
    logger.info(
        f"Persistence summary: {image_count} images, {video_count} videos on disk, "
        f"{link_count} external links, {len(updated)} metadata entries"
    )
    return updated
