"""Filesystem adapters."""

from .fs_descriptor_repo import DescriptorRepository

__all__ = ["DescriptorRepository"]
