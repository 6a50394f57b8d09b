import os
import re
import tempfile
import zipfile

from loguru import logger

import metadata_store
from groups import find_group
from items import NotFoundError
from media import list_media_files


SPOOL_MAX_BYTES = 16 * 1024 * 1024 # Zips larger than this spill to disk


def zip_filename(description):
    """Attachment name derived from the group description."""
    name = re.sub(r'[^a-z0-9]', '_', description or 'group', flags=re.IGNORECASE).lower()
    return f"{name or 'group'}.zip"


def link_placeholder(link):
    return f"External Video Link:\n{link.external_url}\n\nEmbed URL:\n{link.embed_url or link.external_url}\n"


def write_group_zip(context, group, fileobj):
    """Writes the members of `group` into `fileobj` in display order. Returns the entry count."""
    count = 0
    with zipfile.ZipFile(fileobj, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        for index, member in enumerate(group.members):
            if member.is_external:
                zf.writestr(f"{index + 1}_external_link.txt", link_placeholder(member))
            else:
                # Numbered names keep upload ids (and their timestamps) out of the archive
                extension = os.path.splitext(member.id)[1]
                zf.write(context.upload_path(member.id), arcname=f"{index + 1}{extension}")
            count += 1
    return count


def export_group_zip(context, group_id):
    """
    Builds a zip of a group's members. Returns `(fileobj, download_name)` with the
    file object rewound to the start.
    """
    with context.lock:
        items = metadata_store.load(context)
        group = find_group(items, list_media_files(context.uploads_dir), group_id)
        if group is None:
            raise NotFoundError("Group not found")

        spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES)
        try:
            count = write_group_zip(context, group, spool)
        except Exception:
            spool.close()
            raise
    spool.seek(0)
    logger.info(f"Exported group {group_id} ({count} entries)")
    return spool, zip_filename(group.description)
