"""
Load and save the metadata map.

The primary file is always replaced atomically (temp file + rename) and every save
is mirrored to a backup copy. Reads fall back to that mirror when the primary is
missing or corrupt. Nothing here raises to the caller: failures are logged and
degrade to an empty map (load) or a False return (save).
"""

import json
import os
import tempfile

from loguru import logger

from items import item_from_record, items_to_records


def _read_records(path):
    """Parses a metadata file into a dict of raw records. Raises on any problem."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _records_to_items(records):
    items = {}
    for item_id, record in records.items():
        if not isinstance(record, dict):
            logger.warning(f"Skipping malformed metadata record for {item_id!r}")
            continue
        items[item_id] = item_from_record(item_id, record)
    return items


def _atomic_write(path, payload):
    """Writes `payload` next to `path` and renames it into place."""
    directory = os.path.dirname(path) or '.'
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=os.path.basename(path) + '.', suffix='.tmp', dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        try:
            if os.path.exists(temp_path):
                os.remove(temp_path)
        except OSError as cleanup_error:
            logger.error(f"Error cleaning up temp file {temp_path}: {cleanup_error}")
        raise


def serialize(items):
    return json.dumps(items_to_records(items), indent=2, ensure_ascii=False)


def load_file(path):
    """Items from an arbitrary metadata file (e.g. inside a snapshot), or None if unusable."""
    try:
        return _records_to_items(_read_records(path))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read metadata file {path}: {type(e).__name__}: {e}")
        return None


def load(context):
    """Loads the metadata map, falling back to the mirrored backup copy."""
    primary_error = None
    if os.path.exists(context.metadata_file):
        try:
            return _records_to_items(_read_records(context.metadata_file))
        except (OSError, ValueError) as e:
            primary_error = e
            logger.error(f"Error loading metadata from {context.metadata_file}: {type(e).__name__}: {e}")

    if os.path.exists(context.metadata_backup_file):
        try:
            records = _read_records(context.metadata_backup_file)
        except (OSError, ValueError) as e:
            logger.warning(f"Backup metadata {context.metadata_backup_file} is unreadable too: {type(e).__name__}: {e}")
        else:
            items = _records_to_items(records)
            logger.warning(f"Recovered {len(items)} metadata entries from backup copy; rewriting primary")
            try:
                _atomic_write(context.metadata_file, serialize(items))
            except OSError as e:
                logger.error(f"Could not resynchronize primary metadata file: {e}")
            return items

    if primary_error is not None:
        logger.warning("No usable metadata found; starting with an empty map")
    return {}


def save(context, items):
    """
    Persists the metadata map. Returns False (and leaves the previous file intact)
    if the primary write fails. A failed mirror write is only logged.
    """
    try:
        payload = serialize(items)
        _atomic_write(context.metadata_file, payload)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Error saving metadata: {type(e).__name__}: {e}")
        return False

    try:
        _atomic_write(context.metadata_backup_file, payload)
    except OSError as e:
        logger.warning(f"Could not mirror metadata to {context.metadata_backup_file}: {e}")

    logger.debug(f"Metadata saved ({len(items)} entries)")
    return True
