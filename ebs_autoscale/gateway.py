# -*- test-case-name: ebs_autoscale.test.test_gateway -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The EC2 operations needed to create, attach and remove the volumes backing
an autoscaled filesystem.
"""

from functools import wraps
from inspect import signature
import logging
import time

import boto3

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from constantly import Values, ValueConstant
from eliot import Message, register_exception_extractor
from pyrsistent import PClass, field, pmap_field, pvector_field
from zope.interface import Interface, implementer

from ._logging import (
    AWS_ACTION, AWS_CODE, AWS_MESSAGE, AWS_REQUEST_ID, BOTO_LOG_HEADER,
    VOLUME_CREATED, WAITING_FOR_VOLUME_STATUS,
)
from ._retry import LoopExceeded, fixed_steps, poll_until
from .exceptions import RemoteOperationError, WaitTimeout

BOTO_NUM_RETRIES = 20
BOTO_LOGGERS = ("boto3", "botocore")
VOLUME_AVAILABLE_TIMEOUT = 20
VOLUME_POLL_INTERVAL = 1.0


# Register Eliot field extractor for ClientError responses.
register_exception_extractor(
    ClientError,
    lambda e: {
        AWS_CODE.key: e.response.get("Error", {}).get("Code"),
        AWS_MESSAGE.key: e.response.get("Error", {}).get("Message"),
        AWS_REQUEST_ID.key:
            e.response.get("ResponseMetadata", {}).get("RequestId"),
    }
)


class EBSVolumeTypes(Values):
    """
    The EBS volume types new volumes may be created with.

    :ivar IO1: Provisioned IOPS (SSD)
    :ivar IO2: Provisioned IOPS (SSD), higher durability
    :ivar GP3: General Purpose (SSD) with configurable throughput
    """
    IO1 = ValueConstant(u"io1")
    IO2 = ValueConstant(u"io2")
    GP3 = ValueConstant(u"gp3")


class VolumeStates(Values):
    """
    EBS volume states of interest.
    """
    CREATING = ValueConstant(u'creating')
    AVAILABLE = ValueConstant(u'available')
    IN_USE = ValueConstant(u'in-use')
    DELETING = ValueConstant(u'deleting')
    DELETED = ValueConstant(u'deleted')
    ERROR = ValueConstant(u'error')


class UnexpectedVolumeState(RemoteOperationError):
    """
    A volume reached a state from which it will never become available.

    :ivar unicode state: The state it was found in.
    """
    def __init__(self, volume_id, state):
        RemoteOperationError.__init__(
            self, u"wait_for_available", volume_id,
            u"volume entered state {}".format(state),
        )
        self.state = state


class ManagedVolume(PClass):
    """
    An EBS volume believed to back the autoscaled filesystem.

    :ivar unicode volume_id: The EC2 volume id, e.g. ``vol-0abc...``.
    :ivar int size: The size of the volume in GiB.
    :ivar unicode state: The EC2 lifecycle state when last observed.
    :ivar create_time: A ``datetime`` or ``None`` if not reported.
    :ivar PMap tags: The tags on the volume.
    :ivar PVector attachments: Device names the volume is attached at.
    """
    volume_id = field(type=str, mandatory=True)
    size = field(type=int, mandatory=True)
    state = field(type=str, mandatory=True)
    create_time = field(mandatory=True, initial=None)
    tags = pmap_field(str, str)
    attachments = pvector_field(str)


def volume_from_description(description):
    """
    Convert a volume as described by ``DescribeVolumes`` or returned by
    ``CreateVolume`` into a ``ManagedVolume``.

    :param dict description: The EC2 volume structure.
    :return: ``ManagedVolume``
    """
    return ManagedVolume(
        volume_id=description['VolumeId'],
        size=description['Size'],
        state=description['State'],
        create_time=description.get('CreateTime'),
        tags={
            tag['Key']: tag['Value'] for tag in description.get('Tags', [])
        },
        attachments=[
            attachment['Device']
            for attachment in description.get('Attachments', [])
        ],
    )


class IVolumeGateway(Interface):
    """
    The cloud operations the volume lifecycle needs, exposed via synchronous
    methods.

    Implementations raise ``RemoteOperationError`` for any failure of the
    underlying API.
    """
    def list_attached_volumes(instance_id):
        """
        :param unicode instance_id: The instance to inspect.

        :return: A ``list`` of ``ManagedVolume`` for every volume attached to
            the instance, whoever created it.
        """

    def list_tagged_volumes(instance_id, key, value):
        """
        :param unicode instance_id: The instance to inspect.
        :param unicode key: A tag key.
        :param unicode value: The value ``key`` must have.

        :return: A ``list`` of ``ManagedVolume`` for the volumes attached to
            the instance carrying the tag.
        """

    def create_volume(size, volume_type, availability_zone, tags, iops=None,
                      throughput=None):
        """
        Create a new volume. The volume is returned as soon as the provider
        accepts the request; it is usually still ``creating``.

        :param int size: Size in GiB.
        :param unicode volume_type: A value from ``EBSVolumeTypes``.
        :param unicode availability_zone: The zone to create it in.
        :param list tags: ``{"Key": ..., "Value": ...}`` dicts.
        :param iops: Provisioned IOPS or ``None``.
        :param throughput: Provisioned throughput in MiB/s or ``None``.

        :return: The ``ManagedVolume``.
        """

    def wait_for_available(volume_id, cancel, timeout=VOLUME_AVAILABLE_TIMEOUT):
        """
        Wait for a volume to reach the ``available`` state.

        :param unicode volume_id: The volume.
        :param CancellationToken cancel: Abandons the wait when cancelled.
        :param float timeout: Seconds to wait.

        :raise WaitTimeout: If the volume is not available within ``timeout``.
        :raise Cancelled: If ``cancel`` fires first.
        """

    def attach_volume(volume_id, instance_id, device):
        """
        Attach a volume to an instance at the given device name.
        """

    def set_delete_on_termination(instance_id, device, volume_id):
        """
        Arrange for the volume attached at ``device`` to be deleted when the
        instance terminates.
        """

    def detach_volume(volume_id):
        """
        Detach a volume from whichever instance it is attached to.
        """

    def delete_volume(volume_id):
        """
        Delete a volume.
        """


def remote_operation(method):
    """
    Decorator to run an EC2 call inside an ``AWS_ACTION`` and translate
    client failures into ``RemoteOperationError``.

    The ``volume_id`` argument of the decorated method, if it has one, is
    recorded on the error.
    """
    method_signature = signature(method)

    @wraps(method)
    def _run_with_logging(self, *args, **kwargs):
        try:
            with AWS_ACTION(operation=[method.__name__, list(args), kwargs]):
                return method(self, *args, **kwargs)
        except (ClientError, BotoCoreError) as e:
            arguments = method_signature.bind(self, *args, **kwargs).arguments
            raise RemoteOperationError(
                method.__name__, arguments.get("volume_id"), e,
            ) from e
    return _run_with_logging


def _attachment_filter(instance_id):
    return {'Name': 'attachment.instance-id', 'Values': [instance_id]}


@implementer(IVolumeGateway)
class EC2VolumeGateway(object):
    """
    An ``IVolumeGateway`` which uses a boto3 EC2 client.
    """
    def __init__(self, client, poll_interval=VOLUME_POLL_INTERVAL):
        """
        :param client: A boto3 EC2 client.
        :param float poll_interval: Seconds between volume state checks.
        """
        self.client = client
        self.poll_interval = poll_interval

    def _describe_volumes(self, filters):
        paginator = self.client.get_paginator('describe_volumes')
        volumes = []
        for page in paginator.paginate(Filters=filters):
            volumes.extend(
                volume_from_description(description)
                for description in page['Volumes']
            )
        return volumes

    @remote_operation
    def list_attached_volumes(self, instance_id):
        return self._describe_volumes([_attachment_filter(instance_id)])

    @remote_operation
    def list_tagged_volumes(self, instance_id, key, value):
        return self._describe_volumes([
            _attachment_filter(instance_id),
            {'Name': 'tag:' + key, 'Values': [value]},
        ])

    @remote_operation
    def create_volume(self, size, volume_type, availability_zone, tags,
                      iops=None, throughput=None):
        arguments = dict(
            Size=size,
            AvailabilityZone=availability_zone,
            VolumeType=EBSVolumeTypes.lookupByValue(volume_type).value,
            TagSpecifications=[
                dict(ResourceType='volume', Tags=tags),
            ],
        )
        if iops is not None:
            arguments['Iops'] = iops
        if throughput is not None:
            arguments['Throughput'] = throughput
        volume = volume_from_description(
            self.client.create_volume(**arguments))
        VOLUME_CREATED(volume_id=volume.volume_id, size_gb=volume.size).write()
        return volume

    @remote_operation
    def _volume_state(self, volume_id):
        response = self.client.describe_volumes(VolumeIds=[volume_id])
        return response['Volumes'][0]['State']

    def wait_for_available(self, volume_id, cancel,
                           timeout=VOLUME_AVAILABLE_TIMEOUT):
        target = VolumeStates.AVAILABLE.value
        start_time = time.time()

        def available():
            state = self._volume_state(volume_id)
            if state == target:
                return True
            if state in (VolumeStates.DELETED.value, VolumeStates.ERROR.value):
                raise UnexpectedVolumeState(volume_id, state)
            WAITING_FOR_VOLUME_STATUS(
                volume_id=volume_id, status=state, target_status=target,
                wait_time=time.time() - start_time,
            ).write()
            return False

        cancel.raise_if_cancelled()
        try:
            poll_until(
                available,
                fixed_steps(self.poll_interval, timeout),
                sleep=cancel.sleep,
            )
        except LoopExceeded:
            raise WaitTimeout(u"volume available", volume_id, timeout)

    @remote_operation
    def attach_volume(self, volume_id, instance_id, device):
        self.client.attach_volume(
            VolumeId=volume_id, InstanceId=instance_id, Device=device,
        )

    @remote_operation
    def set_delete_on_termination(self, instance_id, device, volume_id):
        self.client.modify_instance_attribute(
            InstanceId=instance_id,
            BlockDeviceMappings=[
                dict(
                    DeviceName=device,
                    Ebs=dict(DeleteOnTermination=True, VolumeId=volume_id),
                ),
            ],
        )

    @remote_operation
    def detach_volume(self, volume_id):
        self.client.detach_volume(VolumeId=volume_id)

    @remote_operation
    def delete_volume(self, volume_id):
        self.client.delete_volume(VolumeId=volume_id)


def ec2_client(region, session_factory=boto3.session.Session):
    """
    Establish connection to EC2 client.

    :param str region: The name of the EC2 region to connect to.
    :param session_factory: Creates the boto3 session.

    :return: A boto3 EC2 client.
    """
    # Exponential backoff and retry for ``RequestLimitExceeded``
    # errors is handled by botocore.
    session = session_factory(region_name=region)
    return session.client(
        "ec2",
        config=Config(retries={"max_attempts": BOTO_NUM_RETRIES}),
    )


def aws_from_configuration(host, session_factory=boto3.session.Session):
    """
    Build an ``EC2VolumeGateway`` for the region ``host`` runs in.

    :param Host host: This instance.
    :param session_factory: Creates the boto3 session.

    :return: ``EC2VolumeGateway``
    """
    return EC2VolumeGateway(ec2_client(host.region, session_factory))


class EliotLogHandler(logging.Handler):
    def emit(self, record):
        Message.new(
            message_type=BOTO_LOG_HEADER, message=record.getMessage()
        ).write()


def enable_boto_logging(level=logging.INFO):
    """
    Make boto log activity using Eliot.

    :param int level: The threshold below which boto messages are dropped.

    :return: The ``EliotLogHandler`` added to the boto loggers.
    """
    handler = EliotLogHandler()
    for name in BOTO_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.addHandler(handler)
    return handler
