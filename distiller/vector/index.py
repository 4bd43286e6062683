"""
Store stage only. Do not implement beyond this file's responsibilities.
Memory store interface and a dictionary-backed implementation for local runs.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from distiller.core.schema import AgentMemory, ScoredMemory
from util.logging import logger

from .types import VectorGeometry


class StoreError(Exception):
    """Raised for any store read, write or snapshot failure."""
    pass


class IMemoryStore(ABC):
    """Abstract interface for the source and golden collections."""

    source_collection: str
    golden_collection: str

    @abstractmethod
    def fetch_all(self, agent: Optional[str] = None, namespace: Optional[str] = None) -> List[AgentMemory]:
        """Read every memory of the source collection matching the filters."""
        pass

    @abstractmethod
    def get_geometry(self, collection: str) -> Optional[VectorGeometry]:
        """Vector geometry of a collection, or None if it declares none."""
        pass

    @abstractmethod
    def ensure_collection(self, name: str, geometry: VectorGeometry) -> None:
        """Create the collection if it does not exist yet."""
        pass

    @abstractmethod
    def upsert(self, collection: str, memories: Sequence[ScoredMemory]) -> None:
        """Insert or replace memories by id, in bounded-size chunks."""
        pass

    @abstractmethod
    def snapshot(self, collection: str) -> str:
        """Snapshot a collection and return its location."""
        pass

    @abstractmethod
    def list_snapshots(self, collection: str) -> List[str]:
        """Names of existing snapshots of a collection."""
        pass


def _chunks(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _calculate_checksum(data: bytes) -> str:
    """Calculate SHA-256 checksum of data."""
    return hashlib.sha256(data).hexdigest()


class InMemoryMemoryStore(IMemoryStore):
    """Dictionary-backed store. Snapshots are JSON files under snapshot_dir."""

    def __init__(self, source_collection: str = "mrc_bot_memory",
                 golden_collection: str = "agent_golden_knowledge",
                 snapshot_dir: str = "./snapshots",
                 upsert_batch_size: int = 128):
        self.source_collection = source_collection
        self.golden_collection = golden_collection
        self.snapshot_dir = snapshot_dir
        self.upsert_batch_size = max(1, upsert_batch_size)
        self._collections: Dict[str, Dict] = {}  # name -> {"geometry", "points"}

    def create_collection(self, name: str, geometry: Optional[VectorGeometry] = None) -> None:
        """Create (or reset) a collection."""
        self._collections[name] = {"geometry": geometry, "points": {}}

    def collection_exists(self, name: str) -> bool:
        return name in self._collections

    def add_memories(self, memories: Sequence[AgentMemory], collection: Optional[str] = None) -> None:
        """Seed a collection (the source collection by default)."""
        name = collection or self.source_collection
        if name not in self._collections:
            self.create_collection(name)
        for memory in memories:
            self._collections[name]["points"][memory.id] = memory

    def points(self, collection: str) -> List[AgentMemory]:
        """Stored memories of a collection, in insertion order."""
        return list(self._require(collection)["points"].values())

    def _require(self, collection: str) -> Dict:
        if collection not in self._collections:
            raise StoreError(f"Collection not found: {collection}")
        return self._collections[collection]

    def fetch_all(self, agent: Optional[str] = None, namespace: Optional[str] = None) -> List[AgentMemory]:
        points = self._require(self.source_collection)["points"].values()
        memories = [
            m for m in points
            if (not agent or m.source_agent == agent) and (not namespace or m.namespace == namespace)
        ]
        logger.log_store_operation("fetch_all", self.source_collection, details={
            "agent": agent, "namespace": namespace, "count": len(memories)
        })
        return memories

    def get_geometry(self, collection: str) -> Optional[VectorGeometry]:
        return self._require(collection)["geometry"]

    def ensure_collection(self, name: str, geometry: VectorGeometry) -> None:
        if name in self._collections:
            return
        self.create_collection(name, geometry)
        logger.log_store_operation("create_collection", name, details=geometry.to_dict())

    def _prepare_vector(self, memory: ScoredMemory, geometry: Optional[VectorGeometry]) -> Optional[List[float]]:
        if memory.vector is None:
            if geometry is None:
                return None
            return np.zeros(geometry.size, dtype=np.float32).tolist()

        vector = np.asarray(memory.vector, dtype=np.float32)
        if vector.ndim != 1:
            raise StoreError(f"Vector for {memory.id} must be one-dimensional")
        if geometry is not None and vector.shape[0] != geometry.size:
            raise StoreError(
                f"Vector dimension {vector.shape[0]} for {memory.id} does not match collection size {geometry.size}"
            )
        return vector.tolist()

    def upsert(self, collection: str, memories: Sequence[ScoredMemory]) -> None:
        target = self._require(collection)
        if not memories:
            return

        for chunk in _chunks(list(memories), self.upsert_batch_size):
            # Validate the whole chunk before writing any of it
            prepared = [(m, self._prepare_vector(m, target["geometry"])) for m in chunk]
            for memory, vector in prepared:
                target["points"][memory.id] = replace(memory, vector=vector, tags=list(memory.tags))
            logger.log_store_operation("upsert", collection, details={"count": len(chunk)})

    def snapshot(self, collection: str) -> str:
        target = self._require(collection)

        points = []
        for memory in target["points"].values():
            payload = memory.to_payload() if isinstance(memory, ScoredMemory) else {
                "text": memory.text,
                "namespace": memory.namespace,
                "source_agent": memory.source_agent,
                "source_type": memory.source_type,
                "userId": memory.user_id,
                "timestamp": memory.timestamp,
            }
            points.append({"id": memory.id, "vector": memory.vector, "payload": payload})

        body = json.dumps(points, ensure_ascii=False, sort_keys=True).encode("utf-8")
        created_at = datetime.now()
        geometry = target["geometry"]
        document = {
            "collection": collection,
            "created_at": created_at.isoformat(),
            "geometry": geometry.to_dict() if geometry else None,
            "point_count": len(points),
            "checksum": _calculate_checksum(body),
            "points": points,
        }

        snapshot_dir = Path(self.snapshot_dir)
        snapshot_dir.mkdir(parents=True, exist_ok=True)
        name = f"{collection}-{created_at.strftime('%Y-%m-%d-%H-%M-%S-%f')}.snapshot"
        path = snapshot_dir / name
        try:
            path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to create snapshot for collection: {collection}: {e}") from e

        logger.log_snapshot(collection, str(path))
        return str(path)

    def list_snapshots(self, collection: str) -> List[str]:
        snapshot_dir = Path(self.snapshot_dir)
        if not snapshot_dir.exists():
            return []
        return sorted(p.name for p in snapshot_dir.glob(f"{collection}-*.snapshot"))
