# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""In-memory fake filesystem, for use with unit tests."""

from zope.interface import implementer

from .interfaces import IFilesystem


@implementer(IFilesystem)
class MemoryFilesystem(object):
    """
    A filesystem which only records what was asked of it.

    :ivar list devices: The devices the filesystem was created on or grown
        across, in order.
    :ivar tuple usage: The ``(total, used, free)`` returned by ``stat``.
    :ivar error: If not ``None``, an exception raised by every operation.
    """
    def __init__(self, path=u"/mnt/ebs-autoscale", usage=(0, 0, 0)):
        self.path = path
        self.usage = usage
        self.devices = []
        self.created = False
        self.error = None

    def _check(self):
        if self.error is not None:
            raise self.error

    def mount_point(self):
        return self.path

    def create_filesystem(self, device):
        self._check()
        self.created = True
        self.devices.append(device)

    def grow_filesystem(self, device):
        self._check()
        self.devices.append(device)

    def stat(self):
        self._check()
        return self.usage
