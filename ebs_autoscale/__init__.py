# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
ebs-autoscale keeps a mounted filesystem from running out of space by
attaching additional EBS volumes to this EC2 instance and growing the
filesystem across them.
"""

__version__ = "0.1.0"

__all__ = [
    'InvalidCapacityConfig', 'CapacityExceeded', 'NoDeviceAvailable',
    'RemoteOperationError', 'WaitTimeout', 'CompositeError', 'RollbackError',
    'Cancelled', 'CancellationToken',
]

from .exceptions import (
    InvalidCapacityConfig, CapacityExceeded, NoDeviceAvailable,
    RemoteOperationError, WaitTimeout, CompositeError, RollbackError,
)
from ._retry import Cancelled, CancellationToken


def _redirect_eliot_logs_for_trial():
    """
    Enable Eliot logging to the ``_trial/test.log`` file.
    """
    import os
    import sys
    if os.path.basename(sys.argv[0]) == "trial":
        from eliot.twisted import redirectLogsForTrial
        redirectLogsForTrial()
_redirect_eliot_logs_for_trial()
del _redirect_eliot_logs_for_trial
