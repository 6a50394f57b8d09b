"""
Item model shared by every storage component.

A metadata record on disk is a loose JSON object keyed by item id. In memory each
record becomes either a StoredFile (bytes in the uploads directory) or an
ExternalLink (a registered video URL, no local bytes).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


DEFAULT_CATEGORY = 'fun'
SENTINEL_ORDER = 999 # "Last" position when nothing says otherwise

LINK_ID_PREFIX = 'link-'
GROUP_ID_PREFIX = 'group-'


class MediaError(Exception):
    """Base class for errors surfaced to API clients."""
    status_code = 500


class ValidationError(MediaError):
    status_code = 400


class NotFoundError(MediaError):
    status_code = 404


class StorageError(MediaError):
    status_code = 500


def coerce_order(value):
    """Integer order from a record value; anything unusable means 'last'."""
    if isinstance(value, bool):
        return SENTINEL_ORDER
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return SENTINEL_ORDER
    return SENTINEL_ORDER


def _text(value, default=''):
    return value if isinstance(value, str) else default


@dataclass
class Item(ABC):
    id: str
    category: str = DEFAULT_CATEGORY
    description: str = ''
    upload_date: str = ''
    type: str = 'image'
    group_id: Optional[str] = None
    order: int = SENTINEL_ORDER
    title_image_id: Optional[str] = None

    is_external = False

    @property
    @abstractmethod
    def url(self):
        """Where clients fetch or embed the item."""

    def _common_record(self):
        record = {
            'category': self.category,
            'description': self.description,
            'uploadDate': self.upload_date,
            'type': self.type,
            'groupId': self.group_id,
            'order': self.order,
        }
        if self.title_image_id:
            record['titleImageId'] = self.title_image_id
        return record

    def to_record(self):
        """The JSON object persisted in the metadata file."""
        return self._common_record()

    def to_json(self):
        """The item as the API returns it."""
        data = {
            'id': self.id,
            'url': self.url,
            'filename': self.id,
            'category': self.category,
            'description': self.description,
            'uploadDate': self.upload_date,
            'type': self.type,
            'groupId': self.group_id,
            'order': self.order,
            'isExternal': self.is_external,
            'isGroup': False,
        }
        if self.title_image_id:
            data['titleImageId'] = self.title_image_id
        return data


@dataclass
class StoredFile(Item):

    @property
    def url(self):
        return f"/uploads/{self.id}"


@dataclass
class ExternalLink(Item):
    type: str = 'video'
    external_url: str = ''
    embed_url: str = ''
    video_type: str = 'unknown'

    is_external = True

    @property
    def url(self):
        return self.embed_url or self.external_url

    def to_record(self):
        record = self._common_record()
        record.update({
            'isExternal': True,
            'externalUrl': self.external_url,
            'embedUrl': self.embed_url,
            'videoType': self.video_type,
        })
        return record

    def to_json(self):
        data = super().to_json()
        data.update({
            'externalUrl': self.external_url,
            'embedUrl': self.embed_url,
            'videoType': self.video_type,
        })
        return data


def is_link_id(item_id):
    return item_id.startswith(LINK_ID_PREFIX)


def is_group_id(item_id):
    return item_id.startswith(GROUP_ID_PREFIX)


def item_from_record(item_id, record):
    """Builds the right Item variant from a persisted record."""
    if not isinstance(record, dict):
        record = {}
    common = dict(
        id=item_id,
        category=_text(record.get('category')) or DEFAULT_CATEGORY,
        description=_text(record.get('description')),
        upload_date=_text(record.get('uploadDate')),
        group_id=_text(record.get('groupId')) or None,
        order=coerce_order(record.get('order', SENTINEL_ORDER)),
        title_image_id=_text(record.get('titleImageId')) or None,
    )
    if record.get('isExternal') or is_link_id(item_id):
        return ExternalLink(
            type=_text(record.get('type')) or 'video',
            external_url=_text(record.get('externalUrl')),
            embed_url=_text(record.get('embedUrl')),
            video_type=_text(record.get('videoType')) or 'unknown',
            **common,
        )
    return StoredFile(type=_text(record.get('type')) or 'image', **common)


def items_to_records(items):
    return {item_id: item.to_record() for item_id, item in items.items()}
