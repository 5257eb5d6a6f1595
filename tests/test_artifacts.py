import os

import pytest

from atelier.storage.artifacts import ArtifactStore


async def test_saves_are_append_only(tmp_path):
    store = ArtifactStore(str(tmp_path))
    first = await store.save("owner-1", "job_1", "result.png", b"one")
    second = await store.save("owner-1", "job_1", "result.png", b"two")
    assert first != second
    assert store.read(first) == b"one"
    assert store.read(second) == b"two"
    assert first.startswith(os.path.join("owner-1", "job_1", "result-"))
    assert not [name for name in os.listdir(tmp_path / "owner-1" / "job_1") if name.endswith(".part")]


async def test_unsafe_names_are_cleaned(tmp_path):
    store = ArtifactStore(str(tmp_path))
    ref = await store.save("../evil", "job/1", "../../x.png", b"data")
    assert store.exists(ref)
    assert os.path.realpath(store.resolve(ref)).startswith(os.path.realpath(str(tmp_path)))


def test_resolve_rejects_escapes(tmp_path):
    store = ArtifactStore(str(tmp_path))
    with pytest.raises(ValueError):
        store.resolve("../outside.png")
