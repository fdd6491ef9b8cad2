# -*- test-case-name: ebs_autoscale.test.test_config -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Loading and validation of the ebs-autoscale configuration file.
"""

import yaml

from jsonschema import Draft4Validator, FormatChecker
from pyrsistent import PClass, PMap, field, pmap
from twisted.python.filepath import FilePath

DEFAULT_CONFIGURATION_PATH = FilePath(u"/etc/ebs-autoscale/ebs-autoscale.json")

LOG_LEVELS = [u"DEBUG", u"INFO", u"WARN", u"ERROR"]
VOLUME_TYPES = [u"io1", u"io2", u"gp3"]

_POSITIVE_INTEGER = {"type": "integer", "minimum": 1}
_OPTIONAL_POSITIVE_INTEGER = {
    "oneOf": [_POSITIVE_INTEGER, {"type": "null"}],
}

SCHEMA = {
    "$schema": "http://json-schema.org/draft-04/schema#",
    "type": "object",
    "properties": {
        "logging": {
            "type": "object",
            "required": ["log-group-name"],
            "properties": {
                "log-group-name": {"type": "string", "minLength": 1},
                "poll-interval": _POSITIVE_INTEGER,
                "max-batch-size": {
                    "type": "integer", "minimum": 1, "maximum": 10000,
                },
                "log-level": {"enum": LOG_LEVELS},
            },
            "additionalProperties": False,
        },
        "monitor": {
            "type": "object",
            "properties": {
                "interval": _POSITIVE_INTEGER,
                "threshold-pc": {
                    "type": "number", "minimum": 0, "maximum": 100,
                },
                "stop-on-error": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "filesystem": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "minLength": 1},
                "ebs-type": {"enum": VOLUME_TYPES},
                "ebs-throughput": _OPTIONAL_POSITIVE_INTEGER,
                "ebs-iops": _OPTIONAL_POSITIVE_INTEGER,
                "initial-size-gb": _POSITIVE_INTEGER,
                "max-size-gb": _POSITIVE_INTEGER,
                "ebs-max-attached-volumes": _POSITIVE_INTEGER,
                "ebs-max-created-volumes": _POSITIVE_INTEGER,
                "backend": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "minLength": 1},
                        "fs-specific": {"type": "object"},
                    },
                    "additionalProperties": False,
                },
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


def validate_configuration(configuration):
    """
    Validate a provided configuration.

    :param dict configuration: A configuration as loaded from the file.

    :raises: jsonschema.ValidationError if the configuration is invalid.
    """
    v = Draft4Validator(SCHEMA, format_checker=FormatChecker())
    v.validate(configuration)


class LoggingConfiguration(PClass):
    """
    Where and how often log messages are shipped to CloudWatch Logs.
    """
    log_group_name = field(type=str, mandatory=True)
    poll_interval = field(type=int, initial=5, mandatory=True)
    max_batch_size = field(type=int, initial=100, mandatory=True)
    log_level = field(type=str, initial=u"INFO", mandatory=True)


class MonitorConfiguration(PClass):
    """
    :ivar int interval: Seconds between usage checks.
    :ivar threshold_pc: Usage percentage at which the filesystem is grown.
    :ivar bool stop_on_error: Whether a failed check or growth stops the
        monitor, or is only logged.
    """
    interval = field(type=int, initial=3, mandatory=True)
    threshold_pc = field(type=(int, float), initial=50, mandatory=True)
    stop_on_error = field(type=bool, initial=True, mandatory=True)


class BackendConfiguration(PClass):
    type = field(type=str, initial=u"btrfs", mandatory=True)
    fs_specific = field(type=PMap, factory=pmap, initial=pmap(),
                        mandatory=True)


class FilesystemConfiguration(PClass):
    """
    The filesystem to grow and the limits on the volumes backing it.
    """
    path = field(type=str, initial=u"/mnt/ebs-autoscale", mandatory=True)
    ebs_type = field(type=str, initial=u"gp3", mandatory=True)
    ebs_throughput = field(initial=None, mandatory=True)
    ebs_iops = field(initial=None, mandatory=True)
    initial_size_gb = field(type=int, initial=100, mandatory=True)
    max_size_gb = field(type=int, initial=500, mandatory=True)
    ebs_max_attached_volumes = field(type=int, initial=16, mandatory=True)
    ebs_max_created_volumes = field(type=int, initial=5, mandatory=True)
    backend = field(
        type=BackendConfiguration, initial=BackendConfiguration(),
        mandatory=True)


class Configuration(PClass):
    """
    :ivar logging: A ``LoggingConfiguration``, or ``None`` if log messages
        are only written locally.
    """
    logging = field(initial=None, mandatory=True)
    monitor = field(
        type=MonitorConfiguration, initial=MonitorConfiguration(),
        mandatory=True)
    filesystem = field(
        type=FilesystemConfiguration, initial=FilesystemConfiguration(),
        mandatory=True)


def _python_names(section):
    return {key.replace(u"-", u"_"): value for key, value in section.items()}


def configuration_from_dict(configuration):
    """
    Build a ``Configuration`` from a validated configuration ``dict``, filling
    in defaults for anything not given.

    :param dict configuration: The parsed configuration file.

    :return: A ``Configuration``.
    """
    logging = configuration.get(u"logging")
    if logging is not None:
        logging = LoggingConfiguration(**_python_names(logging))

    filesystem = _python_names(configuration.get(u"filesystem", {}))
    backend = _python_names(filesystem.pop(u"backend", {}))
    backend[u"fs_specific"] = pmap(backend.get(u"fs_specific", {}))

    return Configuration(
        logging=logging,
        monitor=MonitorConfiguration(
            **_python_names(configuration.get(u"monitor", {}))),
        filesystem=FilesystemConfiguration(
            backend=BackendConfiguration(**backend), **filesystem),
    )


def load_configuration(path=DEFAULT_CONFIGURATION_PATH):
    """
    Load and validate the configuration file.

    The file is YAML; JSON, being a subset of it, is accepted too.

    :param FilePath path: The configuration file.

    :raises: jsonschema.ValidationError if the configuration is invalid.
    :return: A ``Configuration``.
    """
    configuration = yaml.safe_load(path.getContent())
    if configuration is None:
        configuration = {}
    validate_configuration(configuration)
    return configuration_from_dict(configuration)
