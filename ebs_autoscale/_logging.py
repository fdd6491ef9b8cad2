# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Eliot action and message types used while managing autoscaled volumes.
"""

from eliot import Field, ActionType, MessageType

# An OPERATION is a list of:
# gateway method name, positional arguments, keyword arguments.
OPERATION = Field.for_types(
    u"operation", [list],
    u"The EC2 operation being executed, "
    u"along with positional and keyword arguments.")

AWS_ACTION = ActionType(
    u"ebs_autoscale:aws",
    [OPERATION],
    [],
    u"An EC2 API operation is executing.")

# Fields gathered from the EC2 response to a failed boto3 call.
AWS_CODE = Field.for_types(
    u"aws_code", [bytes, str],
    u"The error response code.")
AWS_MESSAGE = Field.for_types(
    u"aws_message", [str],
    u"A human-readable error message given by the response.",
)
AWS_REQUEST_ID = Field.for_types(
    u"aws_request_id", [bytes, str],
    u"The unique identifier assigned by the server for this request.",
)

BOTO_LOG_HEADER = u'ebs_autoscale:boto_logs'

DEVICES = Field.for_types(
    u"devices", [list],
    u"Device paths which already have a device node.")
NO_AVAILABLE_DEVICE = MessageType(
    u"ebs_autoscale:devices:no_available_device",
    [DEVICES],
    u"Every candidate device path is in use.",
)
IN_USE_DEVICES = MessageType(
    u"ebs_autoscale:devices:in_use_devices",
    [DEVICES],
    u"Log current devices.",
)

DEVICE = Field.for_types(
    u"device", [str],
    u"The local device path a volume is attached at.")
TIME_LIMIT = Field.for_types(
    u"time_limit", [int, float],
    u"Time, in seconds, allowed for a wait.")
DEVICE_READY = MessageType(
    u"ebs_autoscale:devices:device_ready",
    [DEVICE],
    u"A newly attached volume has appeared as a local device node.",
)
NO_NEW_DEVICE_IN_OS = MessageType(
    u"ebs_autoscale:devices:no_new_device",
    [DEVICE, TIME_LIMIT],
    u"No new block device manifested in the OS in given time.",
)

VOLUME_ID = Field.for_types(
    u"volume_id", [str],
    u"The identifier of volume of interest.")
STATUS = Field.for_types(
    u"status", [str],
    u"Current status of the volume.")
TARGET_STATUS = Field.for_types(
    u"target_status", [str],
    u"Expected target status of the volume, as a result of an EC2 call.")
WAIT_TIME = Field.for_types(
    u"wait_time", [int, float],
    u"Time, in seconds, system waited for the volume to reach target status.")
WAITING_FOR_VOLUME_STATUS = MessageType(
    u"ebs_autoscale:aws:volume_status_change_wait",
    [VOLUME_ID, STATUS, TARGET_STATUS, WAIT_TIME],
    u"Waiting for a volume to reach target status.",)

SIZE_GB = Field.for_types(
    u"size_gb", [int],
    u"The size, in GiB, of a volume.")
VOLUME_CREATED = MessageType(
    u"ebs_autoscale:aws:created_volume",
    [VOLUME_ID, SIZE_GB],
    u"A new EBS volume was created.",
)

MOUNT_POINT = Field.for_types(
    u"mount_point", [str],
    u"The mount point of the autoscaled filesystem.")
AUTOSCALE_ID = Field.for_types(
    u"autoscale_id", [str],
    u"The identity tag value shared by every volume of a filesystem.")
VOLUME_IDS = Field.for_types(
    u"volume_ids", [list],
    u"Identifiers of the volumes backing the filesystem.")
DISCOVERED_MANAGED_VOLUMES = MessageType(
    u"ebs_autoscale:volume:discovered",
    [MOUNT_POINT, AUTOSCALE_ID, VOLUME_IDS],
    u"The volumes previously created for this filesystem were found.",
)

CREATE_AND_ATTACH = ActionType(
    u"ebs_autoscale:volume:create_and_attach",
    [SIZE_GB],
    [VOLUME_ID, DEVICE],
    u"A new volume is being created and attached to this instance.",
)

ROLLBACK_VOLUME = ActionType(
    u"ebs_autoscale:volume:rollback",
    [VOLUME_ID],
    [],
    u"A partially attached volume is being detached and deleted.",
)

CREATE_FILESYSTEM_VOLUME = ActionType(
    u"ebs_autoscale:volume:create",
    [MOUNT_POINT, SIZE_GB],
    [],
    u"The first volume and the filesystem on it are being created.",
)

GROW_VOLUME = ActionType(
    u"ebs_autoscale:volume:grow",
    [MOUNT_POINT],
    [],
    u"The filesystem is being grown across a new volume.",
)

USAGE_PERCENT = Field.for_types(
    u"usage_percent", [int, float],
    u"The percentage of the filesystem in use.")
THRESHOLD = Field.for_types(
    u"threshold", [int, float],
    u"The usage percentage at which the filesystem is grown.")
USAGE = Field.for_types(
    u"usage", [str],
    u"Human readable used and total space.")
USAGE_CHECKED = MessageType(
    u"ebs_autoscale:monitor:usage",
    [MOUNT_POINT, USAGE_PERCENT, THRESHOLD],
    u"The filesystem usage was sampled.",
)
GROWTH_THRESHOLD_EXCEEDED = MessageType(
    u"ebs_autoscale:monitor:threshold_exceeded",
    [MOUNT_POINT, USAGE_PERCENT, THRESHOLD, USAGE],
    u"The usage threshold was reached and the filesystem will be grown.",
)

LOG_GROUP = Field.for_types(
    u"log_group", [str],
    u"The CloudWatch Logs group messages are shipped to.")
REASON = Field.for_types(
    u"reason", [str],
    u"Why the operation failed.")
CLOUDWATCH_FLUSH_FAILED = MessageType(
    u"ebs_autoscale:cloudwatch:flush_failed",
    [LOG_GROUP, REASON],
    u"A batch of log events could not be delivered to CloudWatch Logs.",
)

COMMAND = Field.for_types(
    u"command", [list],
    u"The argument list of a filesystem command.")
EXIT_STATUS = Field.for_types(
    u"exit_status", [int],
    u"The exit status of a command.")
COMMAND_OUTPUT = Field.for_types(
    u"output", [str],
    u"The combined standard output and standard error of a command.")
FILESYSTEM_COMMAND = ActionType(
    u"ebs_autoscale:filesystems:command",
    [COMMAND, DEVICE, MOUNT_POINT],
    [],
    u"A command is being run to create or grow a filesystem.",
)
COMMAND_RESULT = MessageType(
    u"ebs_autoscale:filesystems:command_result",
    [EXIT_STATUS, COMMAND_OUTPUT],
    u"A filesystem command exited.",
)

FSTAB = Field.for_types(
    u"fstab", [str],
    u"The path of the file system table.")
FSTAB_LINE = Field.for_types(
    u"line", [str],
    u"The entry added to the file system table.")
FSTAB_ENTRY_ADDED = MessageType(
    u"ebs_autoscale:filesystems:btrfs:fstab",
    [FSTAB, FSTAB_LINE],
    u"A new filesystem was recorded so it is mounted at boot.",
)
