# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``ebs_autoscale.gateway``.
"""

from datetime import datetime
import logging

import boto3

from botocore.stub import Stubber
from eliot.testing import capture_logging, assertHasAction, assertHasMessage
from pytz import UTC
from zope.interface.verify import verifyObject

from .._logging import (
    AWS_ACTION, AWS_CODE, AWS_MESSAGE, BOTO_LOG_HEADER, VOLUME_CREATED,
)
from .._retry import Cancelled, CancellationToken
from ..exceptions import RemoteOperationError, WaitTimeout
from ..gateway import (
    BOTO_LOGGERS, EC2VolumeGateway, IVolumeGateway, UnexpectedVolumeState,
    aws_from_configuration, enable_boto_logging, volume_from_description,
)
from ..testtools import (
    FakeVolumeGateway, TestCase, make_host, make_ivolumegateway_tests,
)

INSTANCE_ID = u"i-0123456789abcdef0"
VOLUME_ID = u"vol-0123456789abcdef0"
CREATED = datetime(2024, 3, 1, 12, 30, 0, tzinfo=UTC)


def fake_session(region_name):
    return boto3.session.Session(
        region_name=region_name,
        aws_access_key_id=u"AKIAEXAMPLE",
        aws_secret_access_key=u"secret",
    )


def volume_description(state=u"available", tags=(), device=None, size=10):
    description = {
        "VolumeId": VOLUME_ID,
        "Size": size,
        "State": state,
        "AvailabilityZone": "eu-west-1a",
        "CreateTime": CREATED,
        "VolumeType": "gp3",
        "Tags": [dict(Key=key, Value=value) for key, value in tags],
        "Attachments": [],
    }
    if device is not None:
        description["Attachments"] = [{
            "Device": device,
            "InstanceId": INSTANCE_ID,
            "VolumeId": VOLUME_ID,
            "State": "attached",
        }]
    return description


def fake_gateway_for_test(test_case):
    return FakeVolumeGateway(), INSTANCE_ID


class FakeVolumeGatewayInterfaceTests(
        make_ivolumegateway_tests(fake_gateway_for_test)):
    """
    Interface adherence tests for ``FakeVolumeGateway``.
    """


class VolumeFromDescriptionTests(TestCase):
    """
    Tests for ``volume_from_description``.
    """
    def test_convert(self):
        """
        The id, size, state, creation time, tags and attachment devices are
        taken from the EC2 structure.
        """
        volume = volume_from_description(volume_description(
            state=u"in-use", tags=[(u"ebs-autoscale-id", u"abc")],
            device=u"/dev/xvdba",
        ))
        self.assertEqual(
            (VOLUME_ID, 10, u"in-use", CREATED,
             {u"ebs-autoscale-id": u"abc"}, [u"/dev/xvdba"]),
            (volume.volume_id, volume.size, volume.state, volume.create_time,
             dict(volume.tags), list(volume.attachments)),
        )


class EC2VolumeGatewayTests(TestCase):
    """
    Tests for ``EC2VolumeGateway`` against a stubbed EC2 client.
    """
    def setUp(self):
        super(EC2VolumeGatewayTests, self).setUp()
        client = fake_session(u"eu-west-1").client("ec2")
        self.stubber = Stubber(client)
        self.stubber.activate()
        self.addCleanup(self.stubber.deactivate)
        self.gateway = EC2VolumeGateway(client, poll_interval=0.01)

    def test_interface(self):
        """
        ``EC2VolumeGateway`` provides ``IVolumeGateway``.
        """
        self.assertTrue(verifyObject(IVolumeGateway, self.gateway))

    def test_list_attached_volumes(self):
        """
        ``list_attached_volumes`` filters on the attached instance.
        """
        self.stubber.add_response(
            "describe_volumes",
            {"Volumes": [volume_description(
                state=u"in-use", device=u"/dev/xvda")]},
            {"Filters": [{
                "Name": "attachment.instance-id", "Values": [INSTANCE_ID],
            }]},
        )
        volumes = self.gateway.list_attached_volumes(INSTANCE_ID)
        self.assertEqual([VOLUME_ID], [v.volume_id for v in volumes])
        self.stubber.assert_no_pending_responses()

    def test_list_tagged_volumes(self):
        """
        ``list_tagged_volumes`` filters on the attached instance and the tag.
        """
        self.stubber.add_response(
            "describe_volumes",
            {"Volumes": []},
            {"Filters": [
                {"Name": "attachment.instance-id", "Values": [INSTANCE_ID]},
                {"Name": "tag:ebs-autoscale-id", "Values": [u"abc"]},
            ]},
        )
        self.assertEqual(
            [],
            self.gateway.list_tagged_volumes(
                INSTANCE_ID, u"ebs-autoscale-id", u"abc"),
        )
        self.stubber.assert_no_pending_responses()

    @capture_logging(
        assertHasMessage, VOLUME_CREATED,
        {u"volume_id": VOLUME_ID, u"size_gb": 10},
    )
    def test_create_volume(self, logger):
        """
        ``create_volume`` tags the volume as it is created and leaves out
        IOPS and throughput when they are not configured.
        """
        tags = [dict(Key=u"ebs-autoscale-id", Value=u"abc")]
        self.stubber.add_response(
            "create_volume",
            volume_description(state=u"creating", tags=[(u"ebs-autoscale-id",
                                                         u"abc")]),
            {
                "Size": 10,
                "AvailabilityZone": u"eu-west-1a",
                "VolumeType": u"gp3",
                "TagSpecifications": [
                    {"ResourceType": "volume", "Tags": tags},
                ],
            },
        )
        volume = self.gateway.create_volume(
            size=10, volume_type=u"gp3", availability_zone=u"eu-west-1a",
            tags=tags,
        )
        self.assertEqual(
            (VOLUME_ID, u"creating"), (volume.volume_id, volume.state))
        self.stubber.assert_no_pending_responses()

    def test_create_volume_provisioned(self):
        """
        Configured IOPS and throughput are passed on.
        """
        self.stubber.add_response(
            "create_volume",
            volume_description(state=u"creating"),
            {
                "Size": 10,
                "AvailabilityZone": u"eu-west-1a",
                "VolumeType": u"io2",
                "Iops": 3000,
                "Throughput": 250,
                "TagSpecifications": [
                    {"ResourceType": "volume", "Tags": []},
                ],
            },
        )
        self.gateway.create_volume(
            size=10, volume_type=u"io2", availability_zone=u"eu-west-1a",
            tags=[], iops=3000, throughput=250,
        )
        self.stubber.assert_no_pending_responses()

    def test_unsupported_volume_type(self):
        """
        Volume types other than ``io1``, ``io2`` and ``gp3`` are rejected
        before any call is made.
        """
        self.assertRaises(
            ValueError,
            self.gateway.create_volume,
            size=10, volume_type=u"standard",
            availability_zone=u"eu-west-1a", tags=[],
        )

    def _describe_state(self, state):
        self.stubber.add_response(
            "describe_volumes",
            {"Volumes": [volume_description(state=state)]},
            {"VolumeIds": [VOLUME_ID]},
        )

    def test_wait_for_available(self):
        """
        ``wait_for_available`` polls the volume state until it is
        ``available``.
        """
        self._describe_state(u"creating")
        self._describe_state(u"creating")
        self._describe_state(u"available")
        self.gateway.wait_for_available(
            VOLUME_ID, CancellationToken(), timeout=1)
        self.stubber.assert_no_pending_responses()

    def test_wait_for_available_timeout(self):
        """
        If the volume is not available in time ``WaitTimeout`` is raised.
        """
        for _ in range(3):
            self._describe_state(u"creating")
        error = self.assertRaises(
            WaitTimeout, self.gateway.wait_for_available,
            VOLUME_ID, CancellationToken(), timeout=0.02,
        )
        self.assertEqual(VOLUME_ID, error.subject)

    def test_wait_for_available_error_state(self):
        """
        A volume in the ``error`` state will never become available so
        ``UnexpectedVolumeState``, a ``RemoteOperationError``, is raised
        straight away.
        """
        self._describe_state(u"error")
        error = self.assertRaises(
            RemoteOperationError, self.gateway.wait_for_available,
            VOLUME_ID, CancellationToken(), timeout=1,
        )
        self.assertEqual(
            (UnexpectedVolumeState, u"wait_for_available", VOLUME_ID,
             u"error"),
            (type(error), error.operation, error.volume_id, error.state),
        )

    def test_wait_for_available_cancelled(self):
        """
        A cancelled token abandons the wait before any call is made.
        """
        cancel = CancellationToken()
        cancel.cancel()
        self.assertRaises(
            Cancelled, self.gateway.wait_for_available, VOLUME_ID, cancel,
        )

    def test_attach_volume(self):
        """
        ``attach_volume`` attaches the volume at the given device.
        """
        self.stubber.add_response(
            "attach_volume",
            {"Device": u"/dev/xvdba", "InstanceId": INSTANCE_ID,
             "VolumeId": VOLUME_ID, "State": "attaching"},
            {"VolumeId": VOLUME_ID, "InstanceId": INSTANCE_ID,
             "Device": u"/dev/xvdba"},
        )
        self.gateway.attach_volume(VOLUME_ID, INSTANCE_ID, u"/dev/xvdba")
        self.stubber.assert_no_pending_responses()

    def test_set_delete_on_termination(self):
        """
        ``set_delete_on_termination`` changes the block device mapping of the
        instance.
        """
        self.stubber.add_response(
            "modify_instance_attribute",
            {},
            {
                "InstanceId": INSTANCE_ID,
                "BlockDeviceMappings": [{
                    "DeviceName": u"/dev/xvdba",
                    "Ebs": {
                        "DeleteOnTermination": True,
                        "VolumeId": VOLUME_ID,
                    },
                }],
            },
        )
        self.gateway.set_delete_on_termination(
            INSTANCE_ID, u"/dev/xvdba", VOLUME_ID)
        self.stubber.assert_no_pending_responses()

    def test_detach_and_delete(self):
        """
        ``detach_volume`` and ``delete_volume`` make the matching calls.
        """
        self.stubber.add_response(
            "detach_volume",
            {"VolumeId": VOLUME_ID, "State": "detaching"},
            {"VolumeId": VOLUME_ID},
        )
        self.stubber.add_response(
            "delete_volume", {}, {"VolumeId": VOLUME_ID},
        )
        self.gateway.detach_volume(VOLUME_ID)
        self.gateway.delete_volume(VOLUME_ID)
        self.stubber.assert_no_pending_responses()

    @capture_logging(assertHasAction, AWS_ACTION, False, None, {
        AWS_CODE.key: u"IncorrectState",
        AWS_MESSAGE.key: u"vol is not available",
    })
    def test_client_error(self, logger):
        """
        A failed call raises ``RemoteOperationError`` naming the operation
        and the volume, wrapping the client error. The error code and message
        are logged with the failed action.
        """
        self.stubber.add_client_error(
            "attach_volume",
            service_error_code="IncorrectState",
            service_message="vol is not available",
            expected_params={"VolumeId": VOLUME_ID, "InstanceId": INSTANCE_ID,
                             "Device": u"/dev/xvdba"},
        )
        error = self.assertRaises(
            RemoteOperationError, self.gateway.attach_volume,
            VOLUME_ID, INSTANCE_ID, u"/dev/xvdba",
        )
        self.assertEqual(
            (u"attach_volume", VOLUME_ID, u"IncorrectState"),
            (error.operation, error.volume_id,
             error.error.response["Error"]["Code"]),
        )

    def test_client_error_keyword(self):
        """
        The volume id is recorded when it is passed by keyword too.
        """
        self.stubber.add_client_error(
            "delete_volume", service_error_code="InvalidVolume.NotFound",
        )
        error = self.assertRaises(
            RemoteOperationError, self.gateway.delete_volume,
            volume_id=VOLUME_ID,
        )
        self.assertEqual(VOLUME_ID, error.volume_id)


class AWSFromConfigurationTests(TestCase):
    """
    Tests for ``aws_from_configuration``.
    """
    def test_region(self):
        """
        The gateway talks to EC2 in the region of the host.
        """
        gateway = aws_from_configuration(
            make_host(), session_factory=fake_session)
        self.assertEqual(u"eu-west-1", gateway.client.meta.region_name)


class EnableBotoLoggingTests(TestCase):
    """
    Tests for ``enable_boto_logging``.
    """
    def setUp(self):
        super(EnableBotoLoggingTests, self).setUp()
        for name in BOTO_LOGGERS:
            logger = logging.getLogger(name)
            self.addCleanup(logger.setLevel, logger.level)

    def _enable(self, level):
        handler = enable_boto_logging(level)
        for name in BOTO_LOGGERS:
            self.addCleanup(logging.getLogger(name).removeHandler, handler)

    @capture_logging(None)
    def test_bridged(self, logger):
        """
        Messages logged by botocore are written as Eliot messages.
        """
        self._enable(logging.INFO)
        logging.getLogger("botocore").info("hello %s", "world")
        self.assertEqual(
            [u"hello world"],
            [message["message"] for message in logger.messages
             if message.get("message_type") == BOTO_LOG_HEADER],
        )

    @capture_logging(None)
    def test_level(self, logger):
        """
        Messages below the configured level are dropped.
        """
        self._enable(logging.ERROR)
        logging.getLogger("boto3").info("ignored")
        self.assertEqual(
            [],
            [message for message in logger.messages
             if message.get("message_type") == BOTO_LOG_HEADER],
        )
