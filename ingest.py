"""
Upload and link ingestion: identity, validation and initial ordering of new items.
"""

import os
import random
import re
import time
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

from loguru import logger

import metadata_store
from groups import group_members
from items import (
    DEFAULT_CATEGORY, LINK_ID_PREFIX, SENTINEL_ORDER,
    ExternalLink, StorageError, StoredFile, ValidationError,
)
from media import allowed_file, allowed_mimetype, media_type_for_mimetype
from reconciler import iso_timestamp


CHUNK_SIZE = 1024 * 1024
MAX_FILENAME_ORDER = 9999


def generate_id(extension=''):
    """`<epoch-ms>-<random>` plus the given extension."""
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{extension}"


def extract_order(name):
    """
    Zero-based order hinted by a filename: the first run of digits in the name
    (extension removed), if it is between 1 and 9999. "photo_2.jpg" -> 1.

    Deliberately simple; a year or any other unrelated number in the name is
    taken at face value when it falls in range.
    """
    if not name:
        return None
    stem = os.path.splitext(os.path.basename(name))[0]
    match = re.search(r'[0-9]+', stem)
    if match:
        number = int(match.group(0))
        if 1 <= number <= MAX_FILENAME_ORDER:
            return number - 1
    return None


def derive_order(items, name, group_id):
    """Order for a new item: filename hint, else after the group's last member, else last."""
    order = extract_order(name)
    if order is not None:
        return order
    if group_id:
        max_order = -1
        for member in group_members(items, group_id):
            max_order = max(max_order, member.order)
        return max_order + 1
    return SENTINEL_ORDER


def classify_link(url):
    """
    Returns `(video_type, embed_url, provider_id)` for a registered link.
    Unrecognized URLs embed as themselves.
    """
    if 'youtube.com' in url or 'youtu.be' in url:
        video_id = None
        if 'youtu.be/' in url:
            video_id = url.split('youtu.be/', 1)[1].split('?', 1)[0].split('/', 1)[0]
        elif 'youtube.com' in url:
            video_id = parse_qs(urlparse(url).query).get('v', [None])[0]
        if video_id:
            return 'youtube', f"https://www.youtube.com/embed/{video_id}", video_id
        return 'youtube', url, None

    if 'drive.google.com' in url:
        file_id = None
        if '/file/d/' in url:
            file_id = url.split('/file/d/', 1)[1].split('/', 1)[0].split('?', 1)[0]
        if file_id:
            return 'googledrive', f"https://drive.google.com/file/d/{file_id}/preview", file_id
        return 'googledrive', url, None

    return 'unknown', url, None


def _link_order_name(url, provider_id):
    """Name used for the ordering hint; provider ids are opaque and carry none."""
    if provider_id:
        return None
    path = urlparse(url).path.rstrip('/')
    return path.rsplit('/', 1)[-1] if path else None


def _now():
    return iso_timestamp(datetime.now(timezone.utc))


def _store_stream(context, stream, filename):
    """Copies the upload into place through a hidden part file, enforcing the size limit."""
    final_path = context.upload_path(filename)
    part_path = context.upload_path(f".{filename}.part")
    written = 0
    try:
        with open(part_path, 'wb') as out:
            while True:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > context.max_upload_bytes:
                    raise ValidationError(
                        f"File too large (limit {context.max_upload_bytes // (1024 * 1024)} MB)"
                    )
                out.write(chunk)
        os.replace(part_path, final_path)
    except OSError as e:
        _discard(part_path)
        logger.error(f"Error saving upload {filename}: {type(e).__name__}: {e}")
        raise StorageError("Failed to save file") from e
    except BaseException:
        _discard(part_path)
        raise
    return written


def _discard(path):
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.error(f"Could not remove partial upload {path}: {e}")


def ingest(context, stream, original_name, mimetype, category=None, description=None, group_id=None):
    """Stores an uploaded file and records its metadata. Returns the StoredFile."""
    if not original_name:
        raise ValidationError("No file provided")
    if not allowed_file(original_name) or not allowed_mimetype(mimetype):
        raise ValidationError("Only image and video files are allowed!")

    extension = os.path.splitext(original_name)[1].lower()
    file_id = generate_id(extension)
    group_id = group_id or None

    with context.lock:
        os.makedirs(context.uploads_dir, exist_ok=True)
        size = _store_stream(context, stream, file_id)

        items = metadata_store.load(context)
        item = StoredFile(
            id=file_id,
            category=category or DEFAULT_CATEGORY,
            description=description or '',
            upload_date=_now(),
            type=media_type_for_mimetype(mimetype, original_name),
            group_id=group_id,
            order=derive_order(items, original_name, group_id),
        )
        items[file_id] = item
        if not metadata_store.save(context, items):
            try:
                os.remove(context.upload_path(file_id))
            except OSError as e:
                logger.error(f"Could not remove {file_id} after failed metadata save: {e}")
            raise StorageError("Failed to save metadata")

    logger.info(f"Stored upload {original_name!r} as {file_id} ({size} bytes, order {item.order})")
    return item


def ingest_link(context, url, category=None, description=None, group_id=None):
    """Registers an external video link. Metadata only; no bytes are stored."""
    url = (url or '').strip() if isinstance(url, str) else ''
    if not url:
        raise ValidationError("URL is required")

    video_type, embed_url, provider_id = classify_link(url)
    link_id = LINK_ID_PREFIX + generate_id()
    group_id = group_id or None

    with context.lock:
        items = metadata_store.load(context)
        link = ExternalLink(
            id=link_id,
            category=category or DEFAULT_CATEGORY,
            description=description or '',
            upload_date=_now(),
            type='video',
            group_id=group_id,
            order=derive_order(items, _link_order_name(url, provider_id), group_id),
            external_url=url,
            embed_url=embed_url,
            video_type=video_type,
        )
        items[link_id] = link
        if not metadata_store.save(context, items):
            raise StorageError("Failed to save link")

    logger.info(f"Registered {video_type} link {link_id} -> {embed_url}")
    return link
