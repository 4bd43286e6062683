"""
Store stage tests - dictionary-backed memory store.
"""

import json

import pytest

from distiller.core.schema import AgentMemory, ScoredMemory
from distiller.vector.index import InMemoryMemoryStore, StoreError
from distiller.vector.types import VectorGeometry


def make_memory(memory_id, agent="trader", namespace="agent", vector=None):
    return AgentMemory(id=memory_id, text=f"memory {memory_id} for {agent}", source_agent=agent,
                       namespace=namespace, timestamp=1700000000000, vector=vector)


def make_scored(memory_id, vector=None, score=80):
    return ScoredMemory(id=memory_id, text=f"scored {memory_id}", source_agent="trader",
                        quality_score=score, category="market_insight", tags=["market_insight"],
                        vector=vector)


@pytest.fixture
def store(tmp_path):
    store = InMemoryMemoryStore(source_collection="source", golden_collection="golden",
                                snapshot_dir=str(tmp_path / "snaps"), upsert_batch_size=2)
    store.create_collection("source", VectorGeometry(size=2))
    store.add_memories([
        make_memory("1"),
        make_memory("2", agent="fullstack"),
        make_memory("3", namespace="shared"),
    ])
    return store


class TestFetch:

    def test_fetch_by_agent(self, store):
        assert [m.id for m in store.fetch_all("trader")] == ["1", "3"]

    def test_fetch_by_agent_and_namespace(self, store):
        assert [m.id for m in store.fetch_all("trader", namespace="shared")] == ["3"]

    def test_fetch_everything(self, store):
        assert len(store.fetch_all()) == 3

    def test_unknown_agent_is_empty(self, store):
        assert store.fetch_all("nobody") == []

    def test_missing_source_collection(self, tmp_path):
        store = InMemoryMemoryStore(source_collection="absent")
        with pytest.raises(StoreError, match="Collection not found: absent"):
            store.fetch_all("trader")


class TestCollections:

    def test_ensure_collection_is_idempotent(self, store):
        store.ensure_collection("golden", VectorGeometry(size=2, distance="Dot"))
        store.ensure_collection("golden", VectorGeometry(size=9))

        assert store.get_geometry("golden") == VectorGeometry(size=2, distance="Dot")

    def test_geometry_of_missing_collection(self, store):
        with pytest.raises(StoreError):
            store.get_geometry("golden")


class TestUpsert:

    def test_upsert_replaces_by_id(self, store):
        store.ensure_collection("golden", VectorGeometry(size=2))
        store.upsert("golden", [make_scored("a", score=60), make_scored("b")])
        store.upsert("golden", [make_scored("a", score=95)])

        points = {m.id: m for m in store.points("golden")}
        assert set(points) == {"a", "b"}
        assert points["a"].quality_score == 95

    def test_missing_vector_becomes_zero_vector(self, store):
        store.ensure_collection("golden", VectorGeometry(size=2))
        store.upsert("golden", [make_scored("a")])
        assert store.points("golden")[0].vector == [0.0, 0.0]

    def test_stored_copy_is_independent(self, store):
        store.ensure_collection("golden", VectorGeometry(size=2))
        memory = make_scored("a", vector=[1.0, 2.0])
        store.upsert("golden", [memory])
        memory.tags.append("changed")

        assert store.points("golden")[0].tags == ["market_insight"]

    def test_dimension_mismatch_rejects_whole_chunk(self, store):
        store.ensure_collection("golden", VectorGeometry(size=2))

        with pytest.raises(StoreError, match="does not match collection size 2"):
            store.upsert("golden", [make_scored("a", vector=[1.0, 0.0]), make_scored("b", vector=[1.0])])
        assert store.points("golden") == []

    def test_earlier_chunks_stay_written(self, store):
        """Writes are atomic per chunk only."""
        store.ensure_collection("golden", VectorGeometry(size=2))
        memories = [make_scored("a"), make_scored("b"), make_scored("c", vector=[1.0, 2.0, 3.0])]

        with pytest.raises(StoreError):
            store.upsert("golden", memories)
        assert [m.id for m in store.points("golden")] == ["a", "b"]

    def test_upsert_into_missing_collection(self, store):
        with pytest.raises(StoreError):
            store.upsert("golden", [make_scored("a")])

    def test_empty_upsert_is_noop(self, store):
        store.ensure_collection("golden", VectorGeometry(size=2))
        store.upsert("golden", [])
        assert store.points("golden") == []


class TestSnapshots:

    def test_snapshot_document(self, store):
        store.ensure_collection("golden", VectorGeometry(size=2))
        store.upsert("golden", [make_scored("a", vector=[0.5, 0.5])])

        location = store.snapshot("golden")

        with open(location, encoding="utf-8") as fh:
            document = json.load(fh)
        assert document["collection"] == "golden"
        assert document["geometry"] == {"size": 2, "distance": "Cosine"}
        assert document["point_count"] == 1
        assert len(document["checksum"]) == 64
        assert document["points"][0]["payload"]["qualityScore"] == 80
        assert document["points"][0]["payload"]["category"] == "market_insight"

    def test_source_snapshot_uses_raw_payload(self, store):
        location = store.snapshot("source")
        with open(location, encoding="utf-8") as fh:
            document = json.load(fh)
        assert document["point_count"] == 3
        assert "qualityScore" not in document["points"][0]["payload"]

    def test_list_snapshots(self, store):
        assert store.list_snapshots("golden") == []

        store.ensure_collection("golden", VectorGeometry(size=2))
        first = store.snapshot("golden")
        second = store.snapshot("golden")
        store.snapshot("source")

        names = store.list_snapshots("golden")
        assert len(names) == 2
        assert names == sorted([first.split("/")[-1], second.split("/")[-1]])

    def test_snapshot_of_missing_collection(self, store):
        with pytest.raises(StoreError):
            store.snapshot("golden")
