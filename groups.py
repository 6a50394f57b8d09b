"""
Group assembly.

Groups are not stored anywhere: they are folded out of the flat metadata map every
time they are needed. Members are ordered by (order, id) everywhere a group is shown
or exported.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from items import Item, StoredFile


def sort_key(item):
    return (item.order, item.id)


@dataclass
class Group:
    id: str
    members: List[Item] = field(default_factory=list)
    title: Optional[Item] = None

    @property
    def category(self):
        return self.members[0].category if self.members else ''

    @property
    def description(self):
        return self.members[0].description if self.members else ''

    @property
    def upload_date(self):
        return self.members[0].upload_date if self.members else ''


def resolve_title(members):
    """
    The first explicit titleImageId (scanning `members` in order) that names a
    member of this group wins; otherwise the first member.
    """
    if not members:
        return None
    by_id = {member.id: member for member in members}
    for member in members:
        if member.title_image_id and member.title_image_id in by_id:
            return by_id[member.title_image_id]
    return members[0]


def _collect_items(items, stored_file_ids):
    """Stored files that exist on disk plus every external link in the map."""
    collected = []
    for file_id in stored_file_ids:
        item = items.get(file_id)
        if item is None or item.is_external:
            item = StoredFile(id=file_id)
        collected.append(item)
    for item in items.values():
        if item.is_external:
            collected.append(item)
    return collected


def assemble(items, stored_file_ids):
    """
    Splits everything visible into individual items and groups.
    Returns `(individuals, groups)`; neither input is modified.
    """
    individuals = []
    members_by_group = {}
    for item in _collect_items(items, stored_file_ids):
        if item.group_id:
            members_by_group.setdefault(item.group_id, []).append(item)
        else:
            individuals.append(item)

    groups = []
    for group_id, members in members_by_group.items():
        members = sorted(members, key=sort_key)
        groups.append(Group(id=group_id, members=members, title=resolve_title(members)))
    return individuals, groups


def find_group(items, stored_file_ids, group_id):
    """The assembled group, or None when it has no visible members."""
    _, groups = assemble(items, stored_file_ids)
    for group in groups:
        if group.id == group_id:
            return group
    return None


def group_members(items, group_id):
    """Every metadata entry claiming membership of `group_id`, in display order."""
    return sorted((item for item in items.values() if item.group_id == group_id), key=sort_key)


def _member_json(member):
    data = member.to_json()
    data.pop('isGroup', None)
    return data


def group_summary(group):
    """Listing record: the group represented by its title item."""
    return {
        'id': group.id,
        'url': group.title.url,
        'filename': group.title.id,
        'titleImageId': group.title.id,
        'category': group.category,
        'description': group.description,
        'uploadDate': group.upload_date,
        'type': 'group',
        'isGroup': True,
        'files': [_member_json(member) for member in group.members],
    }


def group_detail(group):
    files = []
    for member in group.members:
        data = _member_json(member)
        data['isTitle'] = member.id == group.title.id
        files.append(data)
    return {
        'id': group.id,
        'files': files,
        'titleImageId': group.title.id,
        'category': group.category,
        'description': group.description,
        'uploadDate': group.upload_date,
    }


def listing(items, stored_file_ids):
    """Individuals and group summaries, newest upload first."""
    individuals, groups = assemble(items, stored_file_ids)
    entries = [item.to_json() for item in individuals]
    entries.extend(group_summary(group) for group in groups)
    return sorted(entries, key=lambda entry: entry['uploadDate'], reverse=True)
