# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Filesystems which can be grown across additional block devices.
"""

__all__ = [
    'IFilesystem', 'FilesystemBackend', 'FilesystemLoader', 'backend_loader',
    'get_filesystem', 'BackendNotFound', 'InvalidBackend',
    'FilesystemCommandError',
]

from .interfaces import IFilesystem
from .errors import BackendNotFound, InvalidBackend, FilesystemCommandError
from .backends import (
    FilesystemBackend, FilesystemLoader, backend_loader, get_filesystem,
)
