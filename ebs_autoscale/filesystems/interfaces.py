# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The contract every filesystem backend satisfies.
"""

from zope.interface import Interface


class IFilesystem(Interface):
    """
    A filesystem which can span several block devices and be grown by adding
    another one.

    All methods are synchronous. Any exception they raise aborts the
    operation which called them.
    """
    def create_filesystem(device):
        """
        Create the filesystem on a device and mount it at ``mount_point()``.

        :param unicode device: The device path, e.g. ``/dev/xvdba``.
        """

    def grow_filesystem(device):
        """
        Extend the mounted filesystem across an additional device.

        :param unicode device: The device path of the new volume.
        """

    def stat():
        """
        :return: A ``tuple`` of ``(total, used, free)`` sizes of the mounted
            filesystem in bytes.
        """

    def mount_point():
        """
        :return: The mount point as ``unicode``.
        """
