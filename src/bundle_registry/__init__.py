"""Resolve prompt bundles from heterogeneous sources and package them for installation."""

from bundle_registry.adapters import create_adapter
from bundle_registry.config import RegistrySource, Settings, get_settings
from bundle_registry.models import Bundle, BundleDependency, SourceMetadata, ValidationResult
from bundle_registry.registry import BundleRegistry

__all__ = [
    "Bundle",
    "BundleDependency",
    "BundleRegistry",
    "RegistrySource",
    "Settings",
    "SourceMetadata",
    "ValidationResult",
    "create_adapter",
    "get_settings",
]
