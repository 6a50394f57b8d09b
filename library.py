"""
Operations behind the HTTP routes: listing, group edits, deletion, usage and health.

Every mutation is a full read-modify-write of the metadata map under the context
lock. Errors are raised as MediaError subclasses for the route layer to convert.
"""

import os
import time
from datetime import datetime, timezone

from loguru import logger

import metadata_store
import thumbnails
from groups import find_group, group_detail, group_members, listing
from items import NotFoundError, StorageError, ValidationError, is_group_id, is_link_id
from media import directory_size, is_safe_filename, list_media_files
from reconciler import check_writable, iso_timestamp


def list_media(context):
    """Individual items and group summaries, newest first."""
    # load() may rewrite the primary from the mirror
    with context.lock:
        items = metadata_store.load(context)
        files = list_media_files(context.uploads_dir)
    return listing(items, files)


def get_group(context, group_id):
    with context.lock:
        items = metadata_store.load(context)
        files = list_media_files(context.uploads_dir)
    group = find_group(items, files, group_id)
    if group is None:
        raise NotFoundError("Group not found")
    return group_detail(group)


def _save(context, items, message):
    if not metadata_store.save(context, items):
        raise StorageError(message)


def set_group_title(context, group_id, title_image_id):
    """Points every member of the group at `title_image_id`."""
    if not title_image_id or not isinstance(title_image_id, str):
        raise ValidationError("Title image ID required")

    with context.lock:
        items = metadata_store.load(context)
        title_item = items.get(title_image_id)
        if is_link_id(title_image_id):
            if title_item is None or not title_item.is_external or title_item.group_id != group_id:
                raise NotFoundError("Link not found or does not belong to group")
        elif not is_safe_filename(title_image_id) or not os.path.isfile(context.upload_path(title_image_id)):
            raise NotFoundError("File not found")

        if title_item is None or title_item.group_id != group_id:
            raise ValidationError("File/Link does not belong to this group")

        for member in group_members(items, group_id):
            member.title_image_id = title_image_id
        _save(context, items, "Failed to update title image")

    logger.info(f"Group {group_id} title set to {title_image_id}")
    return {'message': 'Title image updated successfully', 'titleImageId': title_image_id}


def set_group_order(context, group_id, file_order):
    """Sets each listed member's order to its position in `file_order`."""
    if not isinstance(file_order, list):
        raise ValidationError("File order must be an array")

    positions = {}
    for index, item_id in enumerate(file_order):
        if isinstance(item_id, str) and item_id not in positions:
            positions[item_id] = index

    with context.lock:
        items = metadata_store.load(context)
        updated = 0
        for member in group_members(items, group_id):
            if member.id in positions:
                member.order = positions[member.id]
                updated += 1
        _save(context, items, "Failed to update order")

    logger.info(f"Group {group_id} reordered ({updated} members)")
    return {'message': 'Order updated successfully', 'updated': updated}


def _unlink_stored_file(context, file_id):
    os.remove(context.upload_path(file_id))
    thumbnails.remove_thumbnail(context, file_id)


def delete_item(context, item_id):
    """Deletes a group, a link or a stored file depending on the shape of `item_id`."""
    with context.lock:
        items = metadata_store.load(context)

        if is_group_id(item_id):
            deleted = 0
            for member in group_members(items, item_id):
                if not member.is_external and is_safe_filename(member.id):
                    try:
                        _unlink_stored_file(context, member.id)
                    except FileNotFoundError:
                        pass # Already gone; still drop the record
                    except OSError as e:
                        logger.error(f"Error deleting {member.id}: {e}")
                        raise StorageError("Failed to delete") from e
                del items[member.id]
                deleted += 1
            _save(context, items, "Failed to delete")
            logger.info(f"Deleted group {item_id} ({deleted} items)")
            return {'message': f"Group deleted successfully ({deleted} items)", 'deleted': deleted}

        if is_link_id(item_id):
            if item_id not in items:
                raise NotFoundError("Link not found")
            del items[item_id]
            _save(context, items, "Failed to delete")
            logger.info(f"Deleted link {item_id}")
            return {'message': 'Link deleted successfully', 'deleted': 1}

        if not is_safe_filename(item_id) or not os.path.isfile(context.upload_path(item_id)):
            raise NotFoundError("File not found")
        try:
            _unlink_stored_file(context, item_id)
        except OSError as e:
            logger.error(f"Error deleting {item_id}: {e}")
            raise StorageError("Failed to delete") from e
        if item_id in items:
            del items[item_id]
            _save(context, items, "Failed to delete")
        logger.info(f"Deleted file {item_id}")
        return {'message': 'File deleted successfully', 'deleted': 1}


def storage_usage(context):
    """Bytes used by the uploads directory against the configured quota."""
    used = directory_size(context.uploads_dir)
    limit = context.storage_limit
    percentage = round(used / limit * 100, 2) if limit else 100.0
    return {
        'used': used,
        'available': max(0, limit - used),
        'limit': limit,
        'percentage': min(100, percentage),
    }


def health_report(context, started_at):
    """Liveness plus directory checks. `started_at` is a time.monotonic() reading."""
    uploads_exists = os.path.isdir(context.uploads_dir)
    backups_exists = os.path.isdir(context.backups_dir)
    report = {
        'status': 'ok',
        'timestamp': iso_timestamp(datetime.now(timezone.utc)),
        'uptime': round(time.monotonic() - started_at, 3),
        'disk': {
            'uploadsDirectory': uploads_exists,
            'uploadsWritable': uploads_exists and check_writable(context.uploads_dir),
            'backupsDirectory': backups_exists,
            'backupsWritable': backups_exists and check_writable(context.backups_dir),
            'metadataFile': os.path.isfile(context.metadata_file),
        },
    }
    problems = []
    if not uploads_exists:
        problems.append('Uploads directory missing')
    elif not report['disk']['uploadsWritable']:
        problems.append('Uploads directory not writable')
    if not backups_exists:
        problems.append('Backups directory missing')
    if problems:
        report['status'] = 'degraded'
        report['message'] = '; '.join(problems)
    return report
