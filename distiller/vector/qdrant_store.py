"""
Store stage only. Do not implement beyond this file's responsibilities.
Qdrant-backed memory store: paginated reads, chunked writes, snapshots.
"""

import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
from qdrant_client import QdrantClient, models

from distiller.core.schema import AgentMemory, ScoredMemory
from util.logging import logger

from .index import IMemoryStore, StoreError
from .types import VectorGeometry


PointId = Union[int, str]


def _point_id(memory_id: str) -> PointId:
    """Qdrant accepts unsigned integers or UUID strings as point ids."""
    return int(memory_id) if memory_id.isdigit() else memory_id


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_memory(point) -> AgentMemory:
    payload = point.payload or {}
    text = payload.get("text")

    try:
        timestamp = int(payload.get("timestamp"))
    except (TypeError, ValueError):
        timestamp = _now_ms()

    # Named or sparse vectors are not carried over
    vector = point.vector if isinstance(point.vector, list) else None

    return AgentMemory(
        id=str(point.id),
        text=text if isinstance(text, str) else "",
        namespace=str(payload.get("namespace") or ""),
        source_agent=str(payload.get("source_agent") or ""),
        source_type=str(payload.get("source_type") or ""),
        user_id=str(payload.get("userId") or ""),
        timestamp=timestamp,
        vector=vector,
    )


class QdrantMemoryStore(IMemoryStore):
    """Memory store backed by a Qdrant server."""

    def __init__(self, client: QdrantClient, source_collection: str, golden_collection: str,
                 snapshot_dir: str = "./snapshots", page_size: int = 256, upsert_batch_size: int = 128):
        self.client = client
        self.source_collection = source_collection
        self.golden_collection = golden_collection
        self.snapshot_dir = snapshot_dir
        self.page_size = max(1, page_size)
        self.upsert_batch_size = max(1, upsert_batch_size)
        self._geometries: Dict[str, Optional[VectorGeometry]] = {}

    @classmethod
    def from_settings(cls, settings) -> "QdrantMemoryStore":
        client = QdrantClient(
            host=settings.qdrant_host,
            port=settings.qdrant_port,
            api_key=settings.qdrant_api_key,
        )
        return cls(
            client,
            source_collection=settings.source_collection,
            golden_collection=settings.golden_collection,
            snapshot_dir=settings.snapshot_dir,
            page_size=settings.scroll_page_size,
            upsert_batch_size=settings.upsert_batch_size,
        )

    def _build_filter(self, agent: Optional[str], namespace: Optional[str]) -> Optional[models.Filter]:
        must = []
        if agent:
            must.append(models.FieldCondition(key="source_agent", match=models.MatchValue(value=agent)))
        if namespace:
            must.append(models.FieldCondition(key="namespace", match=models.MatchValue(value=namespace)))
        return models.Filter(must=must) if must else None

    def fetch_all(self, agent: Optional[str] = None, namespace: Optional[str] = None) -> List[AgentMemory]:
        memories: List[AgentMemory] = []
        scroll_filter = self._build_filter(agent, namespace)
        offset = None
        pages = 0

        try:
            while True:
                points, offset = self.client.scroll(
                    collection_name=self.source_collection,
                    scroll_filter=scroll_filter,
                    limit=self.page_size,
                    offset=offset,
                    with_payload=True,
                    with_vectors=True,
                )
                pages += 1
                memories.extend(_to_memory(p) for p in points)
                if offset is None:
                    break
        except Exception as e:
            logger.log_store_operation("fetch_all", self.source_collection, "failed", {"error": str(e)})
            raise StoreError(f"Failed to read {self.source_collection}: {e}") from e

        logger.log_store_operation("fetch_all", self.source_collection, details={
            "agent": agent, "namespace": namespace, "count": len(memories), "pages": pages
        })
        return memories

    def get_geometry(self, collection: str) -> Optional[VectorGeometry]:
        try:
            info = self.client.get_collection(collection_name=collection)
        except Exception as e:
            raise StoreError(f"Failed to read collection info for {collection}: {e}") from e

        params = info.config.params if info.config else None
        vectors = params.vectors if params else None

        if isinstance(vectors, dict):
            if not vectors:
                return None
            name, vectors = next(iter(vectors.items()))
            logger.warning(f"Collection {collection} uses named vectors; using geometry of '{name}'")

        if vectors is None:
            return None

        distance = vectors.distance.value if hasattr(vectors.distance, "value") else str(vectors.distance)
        return VectorGeometry(size=vectors.size, distance=distance)

    def ensure_collection(self, name: str, geometry: VectorGeometry) -> None:
        try:
            if self.client.collection_exists(collection_name=name):
                return
            self.client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=geometry.size,
                    distance=models.Distance(geometry.distance),
                ),
            )
        except Exception as e:
            raise StoreError(f"Failed to create collection {name}: {e}") from e

        self._geometries[name] = geometry
        logger.log_store_operation("create_collection", name, details=geometry.to_dict())

    def _vector_size(self, collection: str) -> Optional[int]:
        if collection not in self._geometries:
            self._geometries[collection] = self.get_geometry(collection)
        geometry = self._geometries[collection]
        return geometry.size if geometry else None

    def _to_point(self, memory: ScoredMemory, size: Optional[int]) -> models.PointStruct:
        if memory.vector is not None:
            vector = list(memory.vector)
        elif size is not None:
            vector = np.zeros(size, dtype=np.float32).tolist()
        else:
            vector = {}
        return models.PointStruct(id=_point_id(memory.id), vector=vector, payload=memory.to_payload())

    def upsert(self, collection: str, memories: Sequence[ScoredMemory]) -> None:
        if not memories:
            return

        size = self._vector_size(collection)
        points = [self._to_point(m, size) for m in memories]

        for start in range(0, len(points), self.upsert_batch_size):
            chunk = points[start:start + self.upsert_batch_size]
            try:
                self.client.upsert(collection_name=collection, points=chunk, wait=True)
            except Exception as e:
                logger.log_store_operation("upsert", collection, "failed", {
                    "chunk_start": start, "chunk_size": len(chunk), "error": str(e)
                })
                raise StoreError(f"Failed to upsert into {collection} at offset {start}: {e}") from e
            logger.log_store_operation("upsert", collection, details={"chunk_start": start, "count": len(chunk)})

    def snapshot(self, collection: str) -> str:
        try:
            result = self.client.create_snapshot(collection_name=collection, wait=True)
        except Exception as e:
            raise StoreError(f"Failed to create snapshot for collection: {collection}: {e}") from e

        if result is None or not result.name:
            raise StoreError(f"Failed to create snapshot for collection: {collection}")

        Path(self.snapshot_dir).mkdir(parents=True, exist_ok=True)
        location = str(Path(self.snapshot_dir) / result.name)
        logger.log_snapshot(collection, location)
        return location

    def list_snapshots(self, collection: str) -> List[str]:
        try:
            snapshots = self.client.list_snapshots(collection_name=collection)
        except Exception as e:
            raise StoreError(f"Failed to list snapshots for {collection}: {e}") from e
        return [s.name for s in snapshots]
