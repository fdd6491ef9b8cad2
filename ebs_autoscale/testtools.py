# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Test helpers for ``ebs_autoscale``.
"""

from itertools import count
from unittest import SkipTest

from fixtures import TempDir
import testtools
from twisted.python.filepath import FilePath
from twisted.trial import unittest
from zope.interface import implementer
from zope.interface.verify import verifyObject

from ._retry import CancellationToken
from .exceptions import RemoteOperationError
from .gateway import IVolumeGateway, ManagedVolume, VolumeStates
from .host import Host


class TestCase(testtools.TestCase):
    """
    Base class for synchronous test cases.
    """
    # Eliot's validateLogging hard-codes a check for SkipTest when deciding
    # whether to check for valid logging.
    skipException = SkipTest

    successResultOf = unittest.SynchronousTestCase.successResultOf
    failureResultOf = unittest.SynchronousTestCase.failureResultOf
    assertNoResult = unittest.SynchronousTestCase.assertNoResult

    # Not related to Deferreds but required by the implementation of the above.
    assertIdentical = unittest.SynchronousTestCase.assertIdentical

    def make_temporary_directory(self):
        """
        Create a temporary directory, removed when the test finishes.

        :rtype: FilePath
        """
        return FilePath(self.useFixture(TempDir()).path)


def make_host(tags=None):
    """
    :return: A ``Host`` for tests.
    """
    if tags is None:
        tags = {u"Name": u"autoscaled"}
    return Host(
        instance_id=u"i-0123456789abcdef0",
        instance_arn=(
            u"arn:aws:ec2:eu-west-1:123456789012:"
            u"instance/i-0123456789abcdef0"),
        availability_zone=u"eu-west-1a",
        region=u"eu-west-1",
        tags=tags,
    )


@implementer(IVolumeGateway)
class FakeVolumeGateway(object):
    """
    An in-memory ``IVolumeGateway``.

    Volumes become available as soon as they are waited for. Attaching a
    volume creates its device node under ``dev_root``, if one is given, and
    detaching it removes the node again. Detaching a volume which is not
    attached fails with ``IncorrectState``, as it does on EC2.

    :ivar dict volumes: ``ManagedVolume`` instances keyed by volume id.
    :ivar list calls: ``(operation, arguments...)`` tuples, one for every
        operation, in the order they were called.
    :ivar set delete_on_termination: Ids of the volumes marked to be deleted
        with their instance.
    """
    def __init__(self, dev_root=None):
        """
        :param FilePath dev_root: Where to create device nodes, or ``None``
            for no device nodes.
        """
        self.dev_root = dev_root
        self.volumes = {}
        self.calls = []
        self.delete_on_termination = set()
        self._instances = {}
        self._failures = {}
        self._ids = count(1)

    def fail(self, operation, error=None):
        """
        Make every later call of an operation fail.

        :param unicode operation: The name of an ``IVolumeGateway`` method.
        :param Exception error: The error to raise. Defaults to a
            ``RemoteOperationError``.
        """
        if error is None:
            error = RemoteOperationError(operation, None, u"injected failure")
        self._failures[operation] = error

    def operations(self):
        """
        :return: The names of the operations called so far, in order.
        """
        return [call[0] for call in self.calls]

    def add_attached_volume(self, instance_id, device, size=1, tags=None):
        """
        Add a volume which was attached without using this gateway.

        :return: The ``ManagedVolume``.
        """
        volume = ManagedVolume(
            volume_id=self._new_id(),
            size=size,
            state=VolumeStates.IN_USE.value,
            tags=tags or {},
            attachments=[device],
        )
        self.volumes[volume.volume_id] = volume
        self._instances[volume.volume_id] = instance_id
        return volume

    def _new_id(self):
        return u"vol-{:017x}".format(next(self._ids))

    def _call(self, operation, *args):
        self.calls.append((operation,) + args)
        error = self._failures.get(operation)
        if error is not None:
            raise error

    def _volume(self, operation, volume_id):
        try:
            return self.volumes[volume_id]
        except KeyError:
            raise RemoteOperationError(
                operation, volume_id, u"InvalidVolume.NotFound")

    def _device_node(self, device):
        return self.dev_root.child(FilePath(device).basename())

    def list_attached_volumes(self, instance_id):
        self._call("list_attached_volumes", instance_id)
        return [
            volume for volume_id, volume in sorted(self.volumes.items())
            if self._instances.get(volume_id) == instance_id
        ]

    def list_tagged_volumes(self, instance_id, key, value):
        self._call("list_tagged_volumes", instance_id, key, value)
        return [
            volume for volume_id, volume in sorted(self.volumes.items())
            if self._instances.get(volume_id) == instance_id and
            volume.tags.get(key) == value
        ]

    def create_volume(self, size, volume_type, availability_zone, tags,
                      iops=None, throughput=None):
        self._call(
            "create_volume", size, volume_type, availability_zone, tags,
            iops, throughput,
        )
        volume = ManagedVolume(
            volume_id=self._new_id(),
            size=size,
            state=VolumeStates.CREATING.value,
            tags={tag["Key"]: tag["Value"] for tag in tags},
        )
        self.volumes[volume.volume_id] = volume
        return volume

    def wait_for_available(self, volume_id, cancel, timeout=20):
        self._call("wait_for_available", volume_id, timeout)
        cancel.raise_if_cancelled()
        volume = self._volume("wait_for_available", volume_id)
        if volume.state == VolumeStates.CREATING.value:
            self.volumes[volume_id] = volume.set(
                state=VolumeStates.AVAILABLE.value)

    def attach_volume(self, volume_id, instance_id, device):
        self._call("attach_volume", volume_id, instance_id, device)
        volume = self._volume("attach_volume", volume_id)
        self.volumes[volume_id] = volume.set(
            state=VolumeStates.IN_USE.value, attachments=[device])
        self._instances[volume_id] = instance_id
        if self.dev_root is not None:
            self._device_node(device).touch()

    def set_delete_on_termination(self, instance_id, device, volume_id):
        self._call("set_delete_on_termination", instance_id, device, volume_id)
        self._volume("set_delete_on_termination", volume_id)
        self.delete_on_termination.add(volume_id)

    def detach_volume(self, volume_id):
        self._call("detach_volume", volume_id)
        volume = self._volume("detach_volume", volume_id)
        if volume_id not in self._instances:
            raise RemoteOperationError(
                "detach_volume", volume_id, u"IncorrectState")
        if self.dev_root is not None:
            for device in volume.attachments:
                node = self._device_node(device)
                if node.exists():
                    node.remove()
        self.volumes[volume_id] = volume.set(
            state=VolumeStates.AVAILABLE.value, attachments=[])
        del self._instances[volume_id]

    def delete_volume(self, volume_id):
        self._call("delete_volume", volume_id)
        self._volume("delete_volume", volume_id)
        del self.volumes[volume_id]
        self.delete_on_termination.discard(volume_id)


class IVolumeGatewayTestsMixin(object):
    """
    Tests for ``IVolumeGateway`` implementations.

    Subclasses must set ``self.gateway`` and ``self.instance_id``.
    """
    def _create(self, size=1, tags=()):
        return self.gateway.create_volume(
            size=size,
            volume_type=u"gp3",
            availability_zone=u"eu-west-1a",
            tags=list(tags),
        )

    def _attached(self, device=u"/dev/xvdba", tags=()):
        volume = self._create(tags=tags)
        self.gateway.wait_for_available(volume.volume_id, CancellationToken())
        self.gateway.attach_volume(volume.volume_id, self.instance_id, device)
        return volume

    def test_interface(self):
        """
        ``gateway`` provides ``IVolumeGateway``.
        """
        self.assertTrue(verifyObject(IVolumeGateway, self.gateway))

    def test_create_volume(self):
        """
        ``create_volume`` returns a ``ManagedVolume`` of the requested size
        carrying the requested tags.
        """
        volume = self._create(
            size=7, tags=[dict(Key=u"ebs-autoscale-id", Value=u"abc")])
        self.assertEqual(
            (7, {u"ebs-autoscale-id": u"abc"}),
            (volume.size, dict(volume.tags)),
        )

    def test_unattached_not_listed(self):
        """
        A volume which is not attached is not included in
        ``list_attached_volumes``.
        """
        self._create()
        self.assertEqual(
            [], self.gateway.list_attached_volumes(self.instance_id))

    def test_attached_listed(self):
        """
        A volume attached to the instance is included in
        ``list_attached_volumes`` with its device.
        """
        volume = self._attached(device=u"/dev/xvdbc")
        [listed] = self.gateway.list_attached_volumes(self.instance_id)
        self.assertEqual(
            (volume.volume_id, [u"/dev/xvdbc"]),
            (listed.volume_id, list(listed.attachments)),
        )

    def test_tagged_listed(self):
        """
        ``list_tagged_volumes`` includes only attached volumes with the given
        tag value.
        """
        mine = self._attached(
            device=u"/dev/xvdba",
            tags=[dict(Key=u"ebs-autoscale-id", Value=u"mine")],
        )
        self._attached(
            device=u"/dev/xvdbb",
            tags=[dict(Key=u"ebs-autoscale-id", Value=u"theirs")],
        )
        self.assertEqual(
            [mine.volume_id],
            [volume.volume_id for volume in self.gateway.list_tagged_volumes(
                self.instance_id, u"ebs-autoscale-id", u"mine")],
        )

    def test_detach(self):
        """
        A detached volume is no longer listed as attached.
        """
        volume = self._attached()
        self.gateway.detach_volume(volume.volume_id)
        self.assertEqual(
            [], self.gateway.list_attached_volumes(self.instance_id))

    def test_detach_unattached(self):
        """
        Detaching a volume which is not attached raises
        ``RemoteOperationError``.
        """
        volume = self._create()
        self.gateway.wait_for_available(volume.volume_id, CancellationToken())
        self.assertRaises(
            RemoteOperationError,
            self.gateway.detach_volume, volume.volume_id,
        )

    def test_delete_unknown(self):
        """
        Deleting a volume which does not exist raises
        ``RemoteOperationError``.
        """
        self.assertRaises(
            RemoteOperationError,
            self.gateway.delete_volume, u"vol-00000000000000000",
        )


def make_ivolumegateway_tests(gateway_factory):
    """
    Build a ``TestCase`` for verifying that an implementation of
    ``IVolumeGateway`` adheres to that interface.

    :param gateway_factory: Called with ``test_case``; returns a ``tuple`` of
        the gateway and the id of the instance to attach volumes to.
    """
    class Tests(IVolumeGatewayTestsMixin, TestCase):
        def setUp(self):
            super(Tests, self).setUp()
            self.gateway, self.instance_id = gateway_factory(test_case=self)

    return Tests
