# -*- test-case-name: ebs_autoscale.test.test_host -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Discovery of the identity of the EC2 instance this process runs on.
"""

import boto3
import requests

from eliot import start_action
from pyrsistent import PClass, field, pmap_field

METADATA_URL = u"http://169.254.169.254/latest"
METADATA_TOKEN_TTL = 21600
METADATA_TIMEOUT = 5


class HostDiscoveryError(Exception):
    """
    The identity of this instance could not be determined.

    :ivar unicode what: The piece of identity being looked up.
    """
    def __init__(self, what, error):
        Exception.__init__(self, what, error)
        self.what = what
        self.error = error


class Host(PClass):
    """
    The EC2 instance whose filesystem is being managed. Resolved once at
    startup and never changed afterwards.

    :ivar unicode instance_id: The EC2 instance id, e.g. ``i-0abc...``.
    :ivar unicode instance_arn: The ARN of the instance.
    :ivar unicode availability_zone: The zone new volumes are created in.
    :ivar unicode region: The region all EC2 calls are made against.
    :ivar PMap tags: The tags on the instance, propagated to new volumes.
    """
    instance_id = field(type=str, mandatory=True)
    instance_arn = field(type=str, mandatory=True)
    availability_zone = field(type=str, mandatory=True)
    region = field(type=str, mandatory=True)
    tags = pmap_field(str, str)


def instance_arn(region, account, instance_id):
    """
    There is no API which returns the ARN of an instance so it is
    assembled from the region, the account of the caller and the instance id.
    """
    return u"arn:aws:ec2:{}:{}:instance/{}".format(
        region, account, instance_id)


def get_instance_metadata(path, http=requests):
    """
    Fetch a value from the instance metadata service using an IMDSv2
    session token.

    :param unicode path: The metadata path, e.g. ``instance-id``.
    :param http: A ``requests``-like object.

    :raise HostDiscoveryError: If the metadata service cannot be reached or
        rejects the request.
    :return: The value as ``unicode``.
    """
    try:
        token = http.put(
            METADATA_URL + u"/api/token",
            headers={
                u"X-aws-ec2-metadata-token-ttl-seconds":
                    str(METADATA_TOKEN_TTL),
            },
            timeout=METADATA_TIMEOUT,
        )
        token.raise_for_status()
        response = http.get(
            METADATA_URL + u"/meta-data/" + path,
            headers={u"X-aws-ec2-metadata-token": token.text},
            timeout=METADATA_TIMEOUT,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise HostDiscoveryError(path, e)
    return response.text.strip()


def discover_host(session_factory=boto3.session.Session, http=requests):
    """
    Resolve the identity of this instance.

    :param session_factory: Called with ``region_name`` to create the boto3
        session used for STS and EC2 calls.
    :param http: A ``requests``-like object for the metadata service.

    :return: A ``Host``.
    """
    with start_action(action_type=u"ebs_autoscale:host:discover"):
        instance_id = get_instance_metadata(u"instance-id", http)
        availability_zone = get_instance_metadata(
            u"placement/availability-zone", http)
        # Local Zone names such as us-west-2-lax-1a do not end in the region
        # name followed by one letter.
        region = get_instance_metadata(u"placement/region", http)
        session = session_factory(region_name=region)

        account = session.client("sts").get_caller_identity()["Account"]

        tags = {}
        paginator = session.client("ec2").get_paginator("describe_tags")
        pages = paginator.paginate(
            Filters=[{"Name": "resource-id", "Values": [instance_id]}],
        )
        for page in pages:
            for tag in page["Tags"]:
                tags[tag["Key"]] = tag["Value"]

        return Host(
            instance_id=instance_id,
            instance_arn=instance_arn(region, account, instance_id),
            availability_zone=availability_zone,
            region=region,
            tags=tags,
        )
