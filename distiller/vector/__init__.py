"""
Store stage only. Do not implement beyond this file's responsibilities.
Source and golden collection access.
"""

# Package initialization for vector module
from .index import IMemoryStore, InMemoryMemoryStore, StoreError
from .types import VectorGeometry

__all__ = [
    'IMemoryStore',
    'InMemoryMemoryStore',
    'StoreError',
    'VectorGeometry',
]
