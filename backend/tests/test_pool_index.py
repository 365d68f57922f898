"""Tests for pool index filtering."""

from qselect.models.item import ItemStatus
from qselect.selection import pool_index
from tests.helpers.seed import create_item


def test_only_published_items_are_returned(db):
    published = create_item(db, tags=[("skill", "algebra")])
    for status in (ItemStatus.DRAFT, ItemStatus.REVIEW, ItemStatus.RETIRED):
        create_item(db, tags=[("skill", "algebra")], status=status)

    result = pool_index.query(db, {"skill": ["algebra"]})

    assert [c.item_id for c in result] == [published.id]
    assert result[0].status == ItemStatus.PUBLISHED


def test_and_across_dimensions_or_within(db):
    both = create_item(db, tags=[("skill", "algebra"), ("exam", "sat")])
    other_tag = create_item(db, tags=[("skill", "geometry"), ("exam", "sat")])
    skill_only = create_item(db, tags=[("skill", "algebra")])
    create_item(db, tags=[("skill", "calculus"), ("exam", "sat")])

    result = pool_index.query(db, {"skill": ["algebra", "geometry"], "exam": ["sat"]})

    ids = {c.item_id for c in result}
    assert ids == {both.id, other_tag.id}
    assert skill_only.id not in ids


def test_no_match_returns_empty(db):
    create_item(db, tags=[("skill", "algebra")])

    assert pool_index.query(db, {"skill": ["topology"]}) == []
    assert pool_index.count(db, {"skill": ["topology"]}) == 0


def test_results_are_ordered_by_id_and_carry_tags(db):
    items = [create_item(db, tags=[("skill", "algebra"), ("trait", f"t{i}")]) for i in range(5)]

    result = pool_index.query(db, {"skill": ["algebra"]})

    assert [c.item_id for c in result] == sorted(item.id for item in items)
    assert all(("skill", "algebra") in c.tags for c in result)
    assert {len(c.tags) for c in result} == {2}


def test_difficulty_filter(db):
    easy = create_item(db, tags=[("skill", "algebra")], difficulty="easy")
    hard = create_item(db, tags=[("skill", "algebra")], difficulty="hard")
    easy_two = create_item(db, tags=[("skill", "algebra")], difficulty="easy")

    easy_ids = {c.item_id for c in pool_index.query(db, {"skill": ["algebra"]}, difficulties=["easy"])}

    assert easy_ids == {easy.id, easy_two.id}
    assert [c.item_id for c in pool_index.query(db, {"skill": ["algebra"]}, ["hard"])] == [hard.id]
    assert pool_index.count(db, {"skill": ["algebra"]}, ["hard"]) == 1


def test_difficulties_for(db):
    create_item(db, tags=[("skill", "algebra")], difficulty="hard")
    create_item(db, tags=[("skill", "algebra")], difficulty="easy")
    create_item(db, tags=[("skill", "algebra")], difficulty="easy")
    create_item(db, tags=[("skill", "geometry")], difficulty="medium")

    assert pool_index.difficulties_for(db, {"skill": ["algebra"]}) == ["easy", "hard"]
