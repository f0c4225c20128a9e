"""Services module - external process collaborators."""

from .backend import BackendLauncher

__all__ = ['BackendLauncher']
