# -*- test-case-name: ebs_autoscale.test.test_volume -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The set of EBS volumes backing one autoscaled filesystem, and the protocol
used to add a volume to it.
"""

from ._logging import (
    CREATE_AND_ATTACH, ROLLBACK_VOLUME, CREATE_FILESYSTEM_VOLUME, GROW_VOLUME,
    DISCOVERED_MANAGED_VOLUMES,
)
from ._retry import CancellationToken
from .devices import (
    DEV, DEVICE_READY_TIMEOUT, DEVICE_POLL_INTERVAL, next_device,
    wait_for_device,
)
from .exceptions import (
    Ceilings, CapacityExceeded, CompositeError, InvalidCapacityConfig,
    RollbackError,
)
from .gateway import VOLUME_AVAILABLE_TIMEOUT, VolumeStates
from .tags import AUTOSCALE_ID_LABEL, autoscale_id, build_volume_tags, utc_now


class LogicalVolume(object):
    """
    The volumes attached to this instance on behalf of one filesystem.

    Only one operation may run against a ``LogicalVolume`` at a time; the
    ``managed_volumes`` list is mutated in place and never locked.

    :ivar Host host: The instance the volumes are attached to.
    :ivar IFilesystem filesystem: The filesystem spanning the volumes.
    :ivar IVolumeGateway gateway: Creates and attaches volumes.
    :ivar unicode autoscale_id: The identity tag value carried by every
        managed volume.
    :ivar list managed_volumes: ``ManagedVolume`` records in the order they
        were attached. Only ever appended to, and only once a volume is
        attached and marked for deletion on instance termination.
    """
    def __init__(self, host, filesystem, gateway, volume_type,
                 initial_size_gb, max_logical_size_gb, max_attached_volumes,
                 max_created_volumes, throughput=None, iops=None,
                 managed_volumes=(), dev_root=DEV, now=utc_now,
                 volume_available_timeout=VOLUME_AVAILABLE_TIMEOUT,
                 device_ready_timeout=DEVICE_READY_TIMEOUT,
                 device_poll_interval=DEVICE_POLL_INTERVAL):
        """
        :param unicode volume_type: A value from ``EBSVolumeTypes``.
        :param int initial_size_gb: The size of the first volume.
        :param int max_logical_size_gb: The ceiling on the summed size of
            all managed volumes.
        :param int max_attached_volumes: The ceiling on volumes of any
            origin attached to the instance.
        :param int max_created_volumes: The ceiling on managed volumes.
        :param throughput: Provisioned throughput in MiB/s, or ``None``.
        :param iops: Provisioned IOPS, or ``None``.
        :param managed_volumes: The volumes already backing the filesystem.
        :param FilePath dev_root: The directory holding device nodes.
        :param now: A no-argument callable returning the current time, used
            to stamp new volumes.
        """
        self.host = host
        self.filesystem = filesystem
        self.gateway = gateway
        self.autoscale_id = autoscale_id(filesystem.mount_point())
        self.volume_type = volume_type
        self.throughput = throughput
        self.iops = iops
        self.initial_size_gb = initial_size_gb
        self.max_logical_size_gb = max_logical_size_gb
        self.max_attached_volumes = max_attached_volumes
        self.max_created_volumes = max_created_volumes
        self.managed_volumes = list(managed_volumes)
        self.dev_root = dev_root
        self.now = now
        self.volume_available_timeout = volume_available_timeout
        self.device_ready_timeout = device_ready_timeout
        self.device_poll_interval = device_poll_interval

    def managed_volume_size_gb(self):
        """
        :return: The summed size, in GiB, of the managed volumes.
        """
        return sum(volume.size for volume in self.managed_volumes)

    def total_usage_percent(self):
        """
        :return: The percentage of the filesystem in use as a ``float``, or
            ``0.0`` for a filesystem reporting no capacity at all.
        """
        total, used, _ = self.filesystem.stat()
        if total == 0:
            return 0.0
        return used / total * 100

    def growth_increment_gb(self):
        """
        Spread whatever the first volume leaves of the maximum size evenly
        across the remaining volume slots.

        :raise InvalidCapacityConfig: If there is no size or no slot left to
            spread it across.
        :return: The size, in GiB, of every volume after the first.
        """
        difference = self.max_logical_size_gb - self.initial_size_gb
        if difference <= 0:
            raise InvalidCapacityConfig(
                u"maximum size must be larger than the initial size",
                self.initial_size_gb, self.max_logical_size_gb,
                self.max_created_volumes,
            )
        if self.max_created_volumes <= 1:
            raise InvalidCapacityConfig(
                u"at least two volumes must be allowed in order to grow",
                self.initial_size_gb, self.max_logical_size_gb,
                self.max_created_volumes,
            )
        return difference // (self.max_created_volumes - 1)

    def create_volume(self, cancel=None):
        """
        Attach the first volume and create the filesystem on it.

        :param CancellationToken cancel: Abandons any wait when cancelled.
        """
        if cancel is None:
            cancel = CancellationToken()
        with CREATE_FILESYSTEM_VOLUME(
            mount_point=self.filesystem.mount_point(),
            size_gb=self.initial_size_gb,
        ):
            device = self._create_and_attach(self.initial_size_gb, cancel)
            self.filesystem.create_filesystem(device)

    def grow_volume(self, cancel=None):
        """
        Attach one more volume and grow the filesystem across it.

        :param CancellationToken cancel: Abandons any wait when cancelled.
        """
        if cancel is None:
            cancel = CancellationToken()
        with GROW_VOLUME(mount_point=self.filesystem.mount_point()):
            increment = self.growth_increment_gb()
            if increment < 1:
                raise InvalidCapacityConfig(
                    u"growth increment rounds down to zero",
                    self.initial_size_gb, self.max_logical_size_gb,
                    self.max_created_volumes,
                )
            device = self._create_and_attach(increment, cancel)
            self.filesystem.grow_filesystem(device)

    def _check_capacity(self, size):
        current = self.managed_volume_size_gb()
        if (current >= self.max_logical_size_gb or
                current + size > self.max_logical_size_gb):
            raise CapacityExceeded(
                Ceilings.LOGICAL_SIZE, self.max_logical_size_gb,
                current + size,
            )
        count = len(self.managed_volumes)
        if count >= self.max_created_volumes:
            raise CapacityExceeded(
                Ceilings.CREATED_VOLUMES, self.max_created_volumes, count,
            )

    def _check_attached_capacity(self):
        # Other volumes may have been attached since we last looked. This is
        # advisory only; nothing stops them being attached after it.
        attached = len(
            self.gateway.list_attached_volumes(self.host.instance_id))
        if attached >= self.max_attached_volumes:
            raise CapacityExceeded(
                Ceilings.ATTACHED_VOLUMES, self.max_attached_volumes, attached,
            )

    def _create_and_attach(self, size, cancel):
        """
        Create a volume, attach it to this instance and wait for its device
        node to appear.

        If anything fails after the volume is created and before it is marked
        for deletion on termination, the volume is detached and deleted
        again. The original error is then re-raised or, if that cleanup
        failed too, a ``CompositeError`` of it and the ``RollbackError``.

        :param int size: The size of the new volume in GiB.
        :param CancellationToken cancel: Abandons any wait when cancelled.

        :return: The device path the volume is attached at.
        """
        self._check_capacity(size)
        self._check_attached_capacity()
        device = next_device(self.dev_root)
        cancel.raise_if_cancelled()

        with CREATE_AND_ATTACH(size_gb=size) as action:
            volume = self.gateway.create_volume(
                size=size,
                volume_type=self.volume_type,
                availability_zone=self.host.availability_zone,
                tags=build_volume_tags(self.host, self.autoscale_id, self.now),
                iops=self.iops,
                throughput=self.throughput,
            )
            try:
                self.gateway.wait_for_available(
                    volume.volume_id, cancel, self.volume_available_timeout,
                )
                self.gateway.attach_volume(
                    volume.volume_id, self.host.instance_id, device,
                )
                self.gateway.set_delete_on_termination(
                    self.host.instance_id, device, volume.volume_id,
                )
            except Exception as e:
                try:
                    self._rollback(volume.volume_id)
                except RollbackError as rollback_error:
                    raise CompositeError([e, rollback_error]) from e
                raise

            self.managed_volumes.append(volume.set(
                state=VolumeStates.IN_USE.value, attachments=[device],
            ))
            action.add_success_fields(volume_id=volume.volume_id, device=device)

            # Past this point the volume stays attached and recorded even if
            # the device node never appears.
            wait_for_device(
                device, cancel, self.device_ready_timeout,
                self.device_poll_interval,
            )
        return device

    def _rollback(self, volume_id):
        """
        Detach and delete a volume, attempting every step whatever happens to
        the previous ones.

        The availability wait does not observe the caller's cancellation so
        that cleanup still runs while shutting down.

        :raise RollbackError: Of every step which failed.
        """
        steps = [
            lambda: self.gateway.detach_volume(volume_id),
            lambda: self.gateway.wait_for_available(
                volume_id, CancellationToken(),
                self.volume_available_timeout,
            ),
            lambda: self.gateway.delete_volume(volume_id),
        ]
        with ROLLBACK_VOLUME(volume_id=volume_id):
            errors = []
            for step in steps:
                try:
                    step()
                except Exception as e:
                    errors.append(e)
            if errors:
                raise RollbackError(volume_id, errors)


def discover_volume(host, filesystem, gateway, configuration,
                    dev_root=DEV, now=utc_now):
    """
    Rebuild the ``LogicalVolume`` of a filesystem from the volumes attached
    to this instance which carry its identity tag.

    :param Host host: This instance.
    :param IFilesystem filesystem: The filesystem being managed.
    :param IVolumeGateway gateway: Used to find the volumes.
    :param FilesystemConfiguration configuration: Volume type and capacity
        limits.

    :return: A ``LogicalVolume``.
    """
    mount_point = filesystem.mount_point()
    volume_id_tag = autoscale_id(mount_point)
    managed = gateway.list_tagged_volumes(
        host.instance_id, AUTOSCALE_ID_LABEL, volume_id_tag,
    )
    DISCOVERED_MANAGED_VOLUMES(
        mount_point=mount_point, autoscale_id=volume_id_tag,
        volume_ids=[volume.volume_id for volume in managed],
    ).write()
    return LogicalVolume(
        host=host,
        filesystem=filesystem,
        gateway=gateway,
        volume_type=configuration.ebs_type,
        throughput=configuration.ebs_throughput,
        iops=configuration.ebs_iops,
        initial_size_gb=configuration.initial_size_gb,
        max_logical_size_gb=configuration.max_size_gb,
        max_attached_volumes=configuration.ebs_max_attached_volumes,
        max_created_volumes=configuration.ebs_max_created_volumes,
        managed_volumes=managed,
        dev_root=dev_root,
        now=now,
    )
