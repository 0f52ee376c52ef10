"""Tests for the image record store and eviction policies."""

import pytest
from conftest import make_face, make_record

from face_cropper.models import CropResult, ImageStatus
from face_cropper.pipeline.store import (
    AggressivePolicy,
    AutoPolicy,
    ImageRecordStore,
    ManualPolicy,
    policy_for_mode,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(face_id: str = "face_0") -> CropResult:
    return CropResult(
        face_id=face_id,
        face_index=1,
        payload=b"png",
        filename="face_a_1.png",
        format="png",
        quality=100,
        source_name="a.png",
        width=256,
        height=256,
    )


def test_upsert_get_remove():
    store = ImageRecordStore()
    store.upsert(make_record("a"))
    store.upsert(make_record("b"))

    assert [r.id for r in store.records()] == ["a", "b"]
    assert store.get("b").id == "b"
    assert "a" in store

    removed = store.remove("a")
    assert removed.id == "a"
    assert len(store) == 1
    with pytest.raises(KeyError):
        store.get("a")
    with pytest.raises(KeyError):
        store.remove("a")


def test_upsert_replaces_in_place():
    store = ImageRecordStore()
    store.upsert(make_record("a"))
    store.upsert(make_record("b"))
    replacement = make_record("a", name="renamed.png")
    store.upsert(replacement)

    assert [r.id for r in store.records()] == ["a", "b"]
    assert store.get("a").filename == "renamed.png"


def test_selection():
    store = ImageRecordStore()
    for image_id in "abc":
        store.upsert(make_record(image_id))

    store.set_selected("b", False)
    assert [r.id for r in store.selected_records()] == ["a", "c"]

    store.select_none()
    assert store.selected_records() == []

    store.select_all()
    assert len(store.selected_records()) == 3


def test_cleanup_is_idempotent_and_keeps_results():
    store = ImageRecordStore()
    record = make_record("a", faces=[make_face(0, 10, 10, 50, 50)])
    record.results = [_result()]
    store.upsert(record)

    assert store.cleanup("a") is True
    after_once = (record.image, list(record.results), list(record.faces), record.memory_cleaned)
    assert store.cleanup("a") is False
    after_twice = (record.image, list(record.results), list(record.faces), record.memory_cleaned)

    assert after_once == after_twice
    assert record.image is None
    assert record.memory_cleaned is True
    assert record.results == [_result()]
    assert len(record.faces) == 1


def test_manual_policy_never_evicts():
    clock = FakeClock()
    store = ImageRecordStore(policy=ManualPolicy(), clock=clock)
    store.upsert(make_record("a"))
    store.mark_completed("a")
    clock.now += 10_000

    assert store.sweep() == []
    assert store.get("a").image is not None


def test_aggressive_policy_evicts_on_completion():
    store = ImageRecordStore(policy=AggressivePolicy())
    store.upsert(make_record("a"))
    store.upsert(make_record("b"))

    store.mark_completed("a")

    assert store.get("a").status == ImageStatus.COMPLETED
    assert store.get("a").memory_cleaned is True
    assert store.get("b").image is not None


def test_auto_policy_evicts_old_completed_records_on_sweep():
    clock = FakeClock()
    store = ImageRecordStore(policy=AutoPolicy(max_age=300), clock=clock)
    for image_id in "abc":
        store.upsert(make_record(image_id))

    store.mark_completed("a")
    clock.now += 200
    store.mark_completed("b")

    assert store.sweep() == []

    clock.now += 150  # a is 350s old, b is 150s old
    assert store.sweep() == ["a"]
    assert store.get("a").memory_cleaned is True
    assert store.get("b").memory_cleaned is False
    assert store.get("c").memory_cleaned is False


def test_cleanup_all_releases_completed_records():
    store = ImageRecordStore()
    store.upsert(make_record("a"))
    store.upsert(make_record("b"))
    store.mark_completed("a")

    assert store.cleanup_all() == ["a"]
    assert store.get("b").image is not None


def test_policy_for_mode():
    assert isinstance(policy_for_mode("manual"), ManualPolicy)
    assert isinstance(policy_for_mode("aggressive"), AggressivePolicy)
    auto = policy_for_mode("auto", max_age=60)
    assert isinstance(auto, AutoPolicy)
    assert auto.max_age == 60
    with pytest.raises(ValueError):
        policy_for_mode("lazy")


def test_mutation_during_restore_is_rejected():
    store = ImageRecordStore()
    store.upsert(make_record("a"))
    with store.restoring():
        with pytest.raises(RuntimeError):
            store.upsert(make_record("b"))
        with pytest.raises(RuntimeError):
            store.set_selected("a", False)
        with pytest.raises(RuntimeError):
            store.cleanup("a")
    store.upsert(make_record("b"))
    assert len(store) == 2


def test_remove_keeps_active_index_in_range():
    store = ImageRecordStore()
    for image_id in "abc":
        store.upsert(make_record(image_id))
    store.active_image_index = 2

    store.remove("a")
    assert store.active_image_index == 1

    store.remove("c")
    assert store.active_image_index == 0
    assert store.active_face_index == 0


def test_clear():
    store = ImageRecordStore()
    store.upsert(make_record("a"))
    store.active_image_index = 0
    store.clear()
    assert store.records() == []
