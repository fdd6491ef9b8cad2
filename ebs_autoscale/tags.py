# -*- test-case-name: ebs_autoscale.test.test_tags -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The identity and tags stamped on every volume backing an autoscaled
filesystem.
"""

from datetime import datetime
from hashlib import md5

from pytz import UTC

SOURCE_INSTANCE_LABEL = u'source-instance'
SOURCE_INSTANCE_ARN_LABEL = u'source-instance-arn'
AUTOSCALE_ID_LABEL = u'ebs-autoscale-id'
CREATION_TIME_LABEL = u'ebs-autoscale-creation-time'

# EC2 rejects tag keys in this namespace when set by a caller.
RESERVED_TAG_PREFIX = u'aws:'


def autoscale_id(mount_point):
    """
    Derive the identity of a filesystem from its mount point.

    :param unicode mount_point: The mount point of the filesystem.

    :return: The hex MD5 digest of ``mount_point``.
    """
    return md5(mount_point.encode("utf-8")).hexdigest()


def utc_now():
    return datetime.now(tz=UTC)


def build_volume_tags(host, volume_id_tag, now=utc_now):
    """
    Build the EC2 tags for a new volume.

    :param Host host: The instance the volume will be attached to.
    :param unicode volume_id_tag: The ``autoscale_id`` of the filesystem.
    :param now: A no-argument callable returning the creation time.

    :return: A ``list`` of ``{"Key": ..., "Value": ...}`` dicts. The
        synthetic tags come first, followed by the host's own tags sorted by
        key, omitting any in the reserved ``aws:`` namespace and any which
        would duplicate a synthetic key.
    """
    tags = [
        dict(Key=SOURCE_INSTANCE_LABEL, Value=host.instance_id),
        dict(Key=SOURCE_INSTANCE_ARN_LABEL, Value=host.instance_arn),
        dict(Key=AUTOSCALE_ID_LABEL, Value=volume_id_tag),
        dict(Key=CREATION_TIME_LABEL, Value=str(now())),
    ]
    synthetic = set(tag["Key"] for tag in tags)
    for key in sorted(host.tags):
        if key.startswith(RESERVED_TAG_PREFIX) or key in synthetic:
            continue
        tags.append(dict(Key=key, Value=host.tags[key]))
    return tags
