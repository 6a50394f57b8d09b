import random

from groups import assemble, find_group, group_detail, listing, resolve_title, sort_key
from items import ExternalLink, StoredFile


def _file(file_id, **kwargs):
    return StoredFile(id=file_id, **kwargs)


def test_assemble_splits_individuals_and_groups():
    items = {
        "a.jpg": _file("a.jpg", upload_date="2024-01-01T00:00:00.000Z"),
        "b.jpg": _file("b.jpg", group_id="group-1", order=1),
        "c.jpg": _file("c.jpg", group_id="group-1", order=0),
        "link-1": ExternalLink(id="link-1", group_id="group-1", order=2, external_url="https://x"),
        "link-2": ExternalLink(id="link-2", external_url="https://y"),
    }
    individuals, groups = assemble(items, ["a.jpg", "b.jpg", "c.jpg"])

    assert sorted(item.id for item in individuals) == ["a.jpg", "link-2"]
    assert len(groups) == 1
    assert [m.id for m in groups[0].members] == ["c.jpg", "b.jpg", "link-1"]


def test_stored_records_without_files_are_invisible():
    items = {"gone.jpg": _file("gone.jpg", group_id="group-1")}
    individuals, groups = assemble(items, [])
    assert individuals == []
    assert groups == []


def test_files_without_records_show_as_individuals():
    individuals, groups = assemble({}, ["x.png"])
    assert [item.id for item in individuals] == ["x.png"]
    assert groups == []


def test_member_order_is_non_decreasing():
    rng = random.Random(7)
    items = {}
    for n in range(40):
        file_id = f"{rng.randint(0, 99):02d}-{n}.jpg"
        items[file_id] = _file(file_id, group_id="group-r", order=rng.choice([0, 1, 2, 999]))
    _, groups = assemble(items, list(items))

    keys = [sort_key(member) for member in groups[0].members]
    assert keys == sorted(keys)


def test_ties_break_on_id():
    items = {
        "b.jpg": _file("b.jpg", group_id="g", order=0),
        "a.jpg": _file("a.jpg", group_id="g", order=0),
    }
    group = find_group(items, ["b.jpg", "a.jpg"], "g")
    assert [m.id for m in group.members] == ["a.jpg", "b.jpg"]


def test_title_defaults_to_first_member():
    members = [_file("a.jpg", order=0), _file("b.jpg", order=1)]
    assert resolve_title(members).id == "a.jpg"


def test_explicit_title_wins_regardless_of_position():
    members = [
        _file("a.jpg", order=0, title_image_id="c.jpg"),
        _file("b.jpg", order=1, title_image_id="c.jpg"),
        _file("c.jpg", order=2, title_image_id="c.jpg"),
    ]
    assert resolve_title(members).id == "c.jpg"


def test_dangling_title_falls_back_to_first_member():
    items = {
        "a.jpg": _file("a.jpg", group_id="g", order=1, title_image_id="deleted.jpg"),
        "b.jpg": _file("b.jpg", group_id="g", order=0, title_image_id="deleted.jpg"),
        "other.jpg": _file("other.jpg", group_id="h"),
    }
    assert find_group(items, list(items), "g").title.id == "b.jpg"

    items["a.jpg"].title_image_id = "other.jpg"
    items["b.jpg"].title_image_id = "other.jpg"
    assert find_group(items, list(items), "g").title.id == "b.jpg"


def test_empty_group_is_not_found():
    assert find_group({}, [], "group-1") is None


def test_group_inherits_from_first_member():
    items = {
        "a.jpg": _file("a.jpg", group_id="g", order=0, category="trip", description="Alps",
                       upload_date="2024-03-01T00:00:00.000Z"),
        "b.jpg": _file("b.jpg", group_id="g", order=1, category="other", description="x"),
    }
    detail = group_detail(find_group(items, list(items), "g"))
    assert detail["category"] == "trip"
    assert detail["description"] == "Alps"
    assert detail["uploadDate"] == "2024-03-01T00:00:00.000Z"
    assert [f["isTitle"] for f in detail["files"]] == [True, False]


def test_listing_sorts_newest_first_and_summarizes_groups():
    items = {
        "old.jpg": _file("old.jpg", upload_date="2024-01-01T00:00:00.000Z"),
        "new.jpg": _file("new.jpg", upload_date="2024-05-01T00:00:00.000Z"),
        "g1.jpg": _file("g1.jpg", group_id="group-1", order=0, upload_date="2024-03-01T00:00:00.000Z"),
        "g2.jpg": _file("g2.jpg", group_id="group-1", order=1, upload_date="2024-03-01T00:00:01.000Z"),
    }
    entries = listing(items, list(items))

    assert [entry["id"] for entry in entries] == ["new.jpg", "group-1", "old.jpg"]
    summary = entries[1]
    assert summary["isGroup"] is True
    assert summary["type"] == "group"
    assert summary["url"] == "/uploads/g1.jpg"
    assert [f["id"] for f in summary["files"]] == ["g1.jpg", "g2.jpg"]


def test_assemble_does_not_mutate_inputs():
    items = {"a.jpg": _file("a.jpg", group_id="g", order=5)}
    snapshot = dict(items)
    assemble(items, ["a.jpg"])
    assert items == snapshot
    assert items["a.jpg"].order == 5
