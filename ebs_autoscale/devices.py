# -*- test-case-name: ebs_autoscale.test.test_devices -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Selection of local device paths for new volumes, and waiting for the OS to
expose an attached volume at its device path.
"""

from errno import ENOENT
from string import ascii_lowercase

from twisted.python.filepath import FilePath

from ._logging import (
    NO_AVAILABLE_DEVICE, IN_USE_DEVICES, DEVICE_READY, NO_NEW_DEVICE_IN_OS,
)
from ._retry import LoopExceeded, fixed_steps, poll_until
from .exceptions import NoDeviceAvailable, WaitTimeout

DEV = FilePath(u"/dev")

# ``/dev/xvdb*`` names avoid contention with ``/dev/sd*`` and the
# ``/dev/xvda`` root device.
DEVICE_PREFIX = u"xvdb"
DEVICE_NAMES = tuple(DEVICE_PREFIX + suffix for suffix in ascii_lowercase)

DEVICE_READY_TIMEOUT = 50
DEVICE_POLL_INTERVAL = 0.05


def candidate_devices(dev_root=DEV):
    """
    :param FilePath dev_root: The directory holding device nodes.

    :return: The ``FilePath`` of every candidate device, in the order they
        are tried.
    """
    return [dev_root.child(name) for name in DEVICE_NAMES]


def is_available(device):
    """
    Determine whether a device path is free, that is, whether no device
    node exists there.

    :param FilePath device: The device path to check.

    :raise OSError: If the path cannot be inspected for any reason other than
        it not existing.
    :return: ``True`` if nothing exists at ``device``.
    """
    try:
        device.restat()
    except OSError as e:
        if e.errno == ENOENT:
            return True
        raise
    return False


def next_device(dev_root=DEV):
    """
    Find the first candidate device path with no device node.

    :param FilePath dev_root: The directory holding device nodes.

    :raise NoDeviceAvailable: If every candidate is in use.
    :return: The free device path as ``unicode``, e.g. ``/dev/xvdbc``.
    """
    in_use = []
    for device in candidate_devices(dev_root):
        if is_available(device):
            if in_use:
                IN_USE_DEVICES(devices=in_use).write()
            return device.path
        in_use.append(device.path)
    NO_AVAILABLE_DEVICE(devices=in_use).write()
    raise NoDeviceAvailable(in_use)


def wait_for_device(device, cancel, timeout=DEVICE_READY_TIMEOUT,
                    interval=DEVICE_POLL_INTERVAL):
    """
    Wait for the OS to create the device node of a newly attached volume.

    :param unicode device: The device path the volume was attached at.
    :param CancellationToken cancel: Abandons the wait when cancelled.
    :param float timeout: Seconds to wait for the node to appear.
    :param float interval: Seconds between checks.

    :raise WaitTimeout: If the device does not appear within ``timeout``.
    :raise Cancelled: If ``cancel`` fires first.
    """
    path = FilePath(device)
    cancel.raise_if_cancelled()
    try:
        poll_until(
            lambda: not is_available(path),
            fixed_steps(interval, timeout),
            sleep=cancel.sleep,
        )
    except LoopExceeded:
        NO_NEW_DEVICE_IN_OS(device=device, time_limit=timeout).write()
        raise WaitTimeout(u"device node", device, timeout)
    DEVICE_READY(device=device).write()
