"""Tests for paginated file intake."""

import pytest
from conftest import encode_png, make_face, make_pixels

from face_cropper.models import FileRef, ImageStatus
from face_cropper.pipeline.loader import StreamingLoader
from face_cropper.pipeline.naming import NameMapping
from face_cropper.pipeline.store import ImageRecordStore

PNG = encode_png(make_pixels(64, 64))


def _refs(count: int) -> list[FileRef]:
    return [FileRef(name=f"img_{i:03d}.png", data=PNG) for i in range(count)]


def test_small_input_is_decoded_immediately():
    store = ImageRecordStore()
    loader = StreamingLoader(store, page_size=20)

    result = loader.enqueue(_refs(20))

    assert len(result.immediate) == 20
    assert result.queued == []
    assert len(store) == 20
    assert all(r.status == ImageStatus.LOADED for r in store.records())
    assert all(r.image is not None for r in store.records())


def test_large_input_is_paginated():
    store = ImageRecordStore()
    loader = StreamingLoader(store, page_size=20)

    result = loader.enqueue(_refs(500))

    assert len(result.immediate) == 20
    assert len(result.queued) == 24
    assert all(len(batch) == 20 for batch in result.queued)
    assert len(store) == 20
    assert loader.pending_batches == 24


def test_load_next_page_decodes_one_batch_at_a_time():
    store = ImageRecordStore()
    loader = StreamingLoader(store, page_size=20)
    loader.enqueue(_refs(500))

    for step in range(1, 25):
        loaded = loader.load_next_page()
        assert len(loaded) == 20
        assert len(store) == 20 + 20 * step
        assert loader.pending_batches == 24 - step

        decoded_tail = [r for r in store.records() if r.page > 0 and r.image is not None]
        assert decoded_tail == loaded
        assert all(r.image is not None for r in store.records() if r.page == 0)

    assert loader.load_next_page() == []
    assert [r.filename for r in store.records()] == [f"img_{i:03d}.png" for i in range(500)]


def test_pages_are_numbered_in_order():
    store = ImageRecordStore()
    loader = StreamingLoader(store, page_size=3)
    result = loader.enqueue(_refs(8))

    assert [batch.page for batch in result.queued] == [1, 2]
    assert {r.page for r in result.immediate} == {0}
    loader.load_all()
    assert [r.page for r in store.records()] == [0, 0, 0, 1, 1, 1, 2, 2]


def test_queued_files_drains_the_queue():
    store = ImageRecordStore()
    loader = StreamingLoader(store, page_size=20)
    loader.enqueue(_refs(50))

    files = loader.queued_files()

    assert [f.name for f in files] == [f"img_{i:03d}.png" for i in range(20, 50)]
    assert loader.pending_batches == 0
    assert len(store) == 20


def test_invalid_files_are_rejected():
    store = ImageRecordStore()
    loader = StreamingLoader(store)
    refs = [FileRef(name="ok.png", data=PNG), FileRef(name="bad.jpg", data=b"\x00\x01")]

    result = loader.enqueue(refs)

    assert [r.filename for r in result.immediate] == ["ok.png"]
    assert [e.filename for e in result.rejected] == ["bad.jpg"]
    assert result.rejected[0].kind == "decode"
    assert len(store) == 1


def test_name_mapping_sets_output_name():
    store = ImageRecordStore()
    loader = StreamingLoader(store, name_mapping=NameMapping({"IMG_001.png": "Alice Smith"}))

    result = loader.enqueue([FileRef(name="img_001.png", data=PNG)])

    assert result.immediate[0].output_name == "Alice Smith"


def test_empty_input():
    loader = StreamingLoader(ImageRecordStore())
    result = loader.enqueue([])
    assert result.immediate == [] and result.queued == []


def test_invalid_page_size():
    with pytest.raises(ValueError):
        StreamingLoader(ImageRecordStore(), page_size=0)


def test_released_page_keeps_its_faces():
    store = ImageRecordStore()
    loader = StreamingLoader(store, page_size=2)
    loader.enqueue(_refs(6))

    first_page = loader.load_next_page()
    first_page[0].faces = [make_face(0, 5, 5, 20, 20)]
    loader.load_next_page()

    released = store.get(first_page[0].id)
    assert released.image is None
    assert released.memory_cleaned is True
    assert released.status == ImageStatus.LOADED
    assert len(released.faces) == 1
