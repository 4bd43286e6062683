"""
Store stage only. Do not implement beyond this file's responsibilities.
Vector collection geometry shared by store implementations.
"""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class VectorGeometry:
    """Dense vector configuration of a collection."""

    size: int
    """Dimension of every vector in the collection"""

    distance: str = "Cosine"
    """Distance metric name (Cosine, Euclid, Dot, Manhattan)"""

    def to_dict(self) -> Dict[str, object]:
        return {"size": self.size, "distance": self.distance}
