"""Naming contract: canonical path params and the storage path constructor."""

from dialectic_worker.paths.canonical import create_canonical_path_params
from dialectic_worker.paths.constructor import construct_storage_path
from dialectic_worker.paths.schemas import CanonicalPathParams, FileType, PathContext

__all__ = [
    "CanonicalPathParams",
    "FileType",
    "PathContext",
    "construct_storage_path",
    "create_canonical_path_params",
]
