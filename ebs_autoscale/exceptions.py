# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Errors raised while managing the volumes backing an autoscaled filesystem.
"""

from constantly import Names, NamedConstant


class Ceilings(Names):
    """
    The independent capacity limits which bound the growth of a filesystem.

    :ivar LOGICAL_SIZE: The total size, in GiB, of all managed volumes.
    :ivar CREATED_VOLUMES: The number of volumes created for the filesystem.
    :ivar ATTACHED_VOLUMES: The number of volumes of any origin attached to
        the instance.
    """
    LOGICAL_SIZE = NamedConstant()
    CREATED_VOLUMES = NamedConstant()
    ATTACHED_VOLUMES = NamedConstant()


class InvalidCapacityConfig(Exception):
    """
    The configured sizes and volume counts leave no room to grow.

    :ivar int initial_size_gb: The size of the first volume.
    :ivar int max_logical_size_gb: The maximum size of the filesystem.
    :ivar int max_created_volumes: The maximum number of volumes to create.
    """
    def __init__(self, message, initial_size_gb, max_logical_size_gb,
                 max_created_volumes):
        Exception.__init__(
            self, message, initial_size_gb, max_logical_size_gb,
            max_created_volumes,
        )
        self.message = message
        self.initial_size_gb = initial_size_gb
        self.max_logical_size_gb = max_logical_size_gb
        self.max_created_volumes = max_created_volumes


class CapacityExceeded(Exception):
    """
    Growing the filesystem would violate one of the capacity ceilings.

    :ivar NamedConstant ceiling: A constant from ``Ceilings`` naming the limit.
    :ivar int maximum: The configured value of the limit.
    :ivar int observed: The value which was observed (or which would result
        from the requested growth).
    """
    def __init__(self, ceiling, maximum, observed):
        Exception.__init__(self, ceiling, maximum, observed)
        self.ceiling = ceiling
        self.maximum = maximum
        self.observed = observed

    def __str__(self):
        return "{} exceeded: max {} observed {}".format(
            self.ceiling.name, self.maximum, self.observed,
        )


class NoDeviceAvailable(Exception):
    """
    Every candidate device path already has a device node.

    :ivar list devices: The candidate device paths which were checked.
    """
    def __init__(self, devices):
        Exception.__init__(self, devices)
        self.devices = devices


class RemoteOperationError(Exception):
    """
    A call to the cloud provider failed.

    :ivar unicode operation: The name of the failed operation.
    :ivar volume_id: The identifier of the volume concerned, or ``None`` if
        not yet known.
    :ivar Exception error: The error raised by the provider client.
    """
    def __init__(self, operation, volume_id, error):
        Exception.__init__(self, operation, volume_id, error)
        self.operation = operation
        self.volume_id = volume_id
        self.error = error

    def __str__(self):
        return "{} failed (volume={}): {}".format(
            self.operation, self.volume_id, self.error,
        )


class WaitTimeout(TimeoutError):
    """
    A bounded wait for a volume or device did not finish in time.

    :ivar unicode waiting_for: What was being waited for.
    :ivar unicode subject: The volume id or device path being waited on.
    :ivar float timeout: The bound, in seconds.
    """
    def __init__(self, waiting_for, subject, timeout):
        TimeoutError.__init__(self, waiting_for, subject, timeout)
        self.waiting_for = waiting_for
        self.subject = subject
        self.timeout = timeout

    def __str__(self):
        return "timed out after {}s waiting for {} of {}".format(
            self.timeout, self.waiting_for, self.subject,
        )


class CompositeError(Exception):
    """
    Several errors reported together, in the order they occurred.

    :ivar tuple errors: The individual exceptions.
    """
    def __init__(self, errors):
        errors = tuple(errors)
        Exception.__init__(self, errors)
        self.errors = errors

    def __str__(self):
        return "; ".join(str(e) for e in self.errors)


class RollbackError(CompositeError):
    """
    Compensating for a failed create-and-attach sequence failed in one or
    more steps.

    :ivar unicode volume_id: The volume which could not be fully removed.
    """
    def __init__(self, volume_id, errors):
        CompositeError.__init__(self, errors)
        self.volume_id = volume_id

    def __str__(self):
        return "rollback of {} failed: {}".format(
            self.volume_id, CompositeError.__str__(self),
        )
