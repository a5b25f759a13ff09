"""Sync engine for pys3sync - reconciliation and CloudFront invalidation."""

from .cloudfront import InvalidationController, prepare_paths, remove_redundant_paths
from .context import InvalidationPathSet, RunContext
from .engine import SyncEngine
from .ignore import IgnoreRule, IgnoreRules
from .remote import RemoteObject, RemoteObjectIndex
from .resource import Resource, ResourceState
from .scanner import (
    ArtifactDescriptor,
    BuildDirectorySource,
    DirectoryScanner,
    LocalArtifact,
    LocalArtifactSource,
)

__all__ = [
    "SyncEngine",
    "RunContext",
    "InvalidationPathSet",
    "InvalidationController",
    "prepare_paths",
    "remove_redundant_paths",
    "Resource",
    "ResourceState",
    "RemoteObject",
    "RemoteObjectIndex",
    "ArtifactDescriptor",
    "BuildDirectorySource",
    "DirectoryScanner",
    "LocalArtifact",
    "LocalArtifactSource",
    "IgnoreRule",
    "IgnoreRules",
]
