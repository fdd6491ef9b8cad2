# -*- test-case-name: ebs_autoscale.test.test_script -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The command-line ``ebs-autoscale`` tool.
"""

import logging
import sys

from eliot import add_destinations, start_action, to_file, write_failure
from pyrsistent import PClass, field
from zope.interface import Interface, implementer

from twisted.internet import task, reactor as global_reactor
from twisted.internet.defer import maybeDeferred, succeed
from twisted.internet.threads import deferToThread
from twisted.python import usage
from twisted.python.filepath import FilePath

from . import __version__
from ._retry import CancellationToken
from .cloudwatch import cloudwatch_from_configuration
from .config import DEFAULT_CONFIGURATION_PATH, load_configuration
from .devices import DEV
from .filesystems import backend_loader, get_filesystem
from .gateway import aws_from_configuration, enable_boto_logging
from .host import discover_host
from .monitor import VolumeMonitor
from .volume import discover_volume

__all__ = [
    'ebs_autoscale_main',
]

LOG_LEVELS = {
    u"DEBUG": logging.DEBUG,
    u"INFO": logging.INFO,
    u"WARN": logging.WARNING,
    u"ERROR": logging.ERROR,
}


class ICommandLineScript(Interface):
    """A script which can be run by ``AutoscaleScriptRunner``."""
    def main(reactor, options):
        """
        :param reactor: A Twisted reactor.
        :param dict options: A dictionary of configuration options.
        :return: A ``Deferred`` which fires when the script has completed.
        """


class InitOptions(usage.Options):
    """
    Command line options for ``ebs-autoscale init``.
    """
    longdesc = """\
    Create the first volume, attach it to this instance and create the
    filesystem on it.
    """


class GrowOptions(usage.Options):
    """
    Command line options for ``ebs-autoscale grow``.
    """
    longdesc = """\
    Grow the filesystem across one more volume.
    """


class MonitorOptions(usage.Options):
    """
    Command line options for ``ebs-autoscale monitor``.
    """
    longdesc = """\
    Check the usage of the filesystem periodically, growing it whenever the
    configured threshold is reached.
    """


class VersionOptions(usage.Options):
    """
    Command line options for ``ebs-autoscale version``.
    """


class EBSAutoscaleOptions(usage.Options):
    """
    Command line options for ``ebs-autoscale``.
    """
    synopsis = "Usage: ebs-autoscale [OPTIONS] COMMAND"

    longdesc = """\
    ebs-autoscale keeps a filesystem from running out of space by attaching
    more EBS volumes to this instance and growing the filesystem across them.
    """

    optParameters = [
        ["config", "c", DEFAULT_CONFIGURATION_PATH.path,
         "The configuration file."],
    ]

    subCommands = [
        ["init", None, InitOptions,
         "Create the first volume and the filesystem on it."],
        ["grow", None, GrowOptions,
         "Grow the filesystem by one volume."],
        ["monitor", None, MonitorOptions,
         "Grow the filesystem whenever it fills up."],
        ["version", None, VersionOptions,
         "Print the version and exit."],
    ]

    def postOptions(self):
        if self.subCommand is None:
            raise usage.UsageError("A command must be given.")
        self['config'] = FilePath(self['config'])


@implementer(ICommandLineScript)
class AutoscaleScript(PClass):
    """
    Implement top-level logic for the ``ebs-autoscale`` script.

    Everything which blocks, including every AWS call, is handed to ``run``.

    :ivar discover_host: Returns the ``Host`` this is running on.
    :ivar gateway_factory: Called with the ``Host``; returns an
        ``IVolumeGateway``.
    :ivar cloudwatch_factory: Called with a ``LoggingConfiguration`` and
        a region; returns a ``CloudWatchLogsDestination``.
    :ivar FilesystemLoader filesystems: The filesystem backends to choose
        from.
    :ivar run: Called with a callable and its arguments; returns a
        ``Deferred`` firing with its result.
    :ivar stdout: Where the ``version`` command writes.
    :ivar FilePath dev_root: The directory holding device nodes.
    """
    discover_host = field(initial=(lambda: discover_host), mandatory=True)
    gateway_factory = field(
        initial=(lambda: aws_from_configuration), mandatory=True)
    cloudwatch_factory = field(
        initial=(lambda: cloudwatch_from_configuration), mandatory=True)
    filesystems = field(initial=(lambda: backend_loader), mandatory=True)
    run = field(initial=(lambda: deferToThread), mandatory=True)
    stdout = field(initial=(lambda: sys.stdout), mandatory=True)
    dev_root = field(type=FilePath, initial=DEV, mandatory=True)

    def main(self, reactor, options):
        if options.subCommand == "version":
            self.stdout.write(__version__ + "\n")
            return succeed(None)

        configuration = load_configuration(options['config'])
        level = logging.INFO
        if configuration.logging is not None:
            level = LOG_LEVELS[configuration.logging.log_level]
        enable_boto_logging(level)

        cancel = CancellationToken()
        reactor.addSystemEventTrigger("before", "shutdown", cancel.cancel)

        d = self.run(self._discover, configuration)

        def discovered(result):
            host, volume = result
            if configuration.logging is not None:
                self._ship_logs(reactor, configuration.logging, host)
            return self._command(
                reactor, options.subCommand, configuration, volume, cancel)
        d.addCallback(discovered)
        return d

    def _discover(self, configuration):
        with start_action(action_type=u"ebs_autoscale:script:discover"):
            filesystem_configuration = configuration.filesystem
            host = self.discover_host()
            filesystem = get_filesystem(
                self.filesystems,
                filesystem_configuration.backend.type,
                filesystem_configuration.path,
                filesystem_configuration.backend.fs_specific,
            )
            gateway = self.gateway_factory(host)
            volume = discover_volume(
                host, filesystem, gateway, filesystem_configuration,
                dev_root=self.dev_root,
            )
            return host, volume

    def _ship_logs(self, reactor, logging_configuration, host):
        destination = self.cloudwatch_factory(
            logging_configuration, host.region)
        add_destinations(destination)
        loop = destination.start_flushing(
            reactor, logging_configuration.poll_interval, self.run)

        def stop_flushing():
            if loop.running:
                loop.stop()
            destination.flush()
        reactor.addSystemEventTrigger("before", "shutdown", stop_flushing)

    def _command(self, reactor, command, configuration, volume, cancel):
        if command == "init":
            return self.run(volume.create_volume, cancel)
        if command == "grow":
            return self.run(volume.grow_volume, cancel)

        monitor = VolumeMonitor(
            volume=volume,
            clock=reactor,
            interval=configuration.monitor.interval,
            threshold=configuration.monitor.threshold_pc,
            cancel=cancel,
            stop_on_error=configuration.monitor.stop_on_error,
            run=self.run,
        )
        reactor.addSystemEventTrigger("before", "shutdown", monitor.stop)
        return monitor.start()


class AutoscaleScriptRunner(object):
    """An API for running the ``ebs-autoscale`` script.

    :ivar ICommandLineScript script: See ``script`` of ``__init__``.
    :ivar _react: A reference to ``task.react`` which can be overridden for
        testing purposes.
    """
    _react = staticmethod(task.react)

    def __init__(self, script, options, logging=True,
                 reactor=None, sys_module=None):
        """
        :param ICommandLineScript script: The script object to be run.
        :param usage.Options options: An option parser object.
        :param logging: If ``True``, log to stdout; otherwise don't log.
        :param reactor: Optional reactor to override default one.
        :param sys_module: An optional ``sys`` like module for use in
            testing. Defaults to ``sys``.
        """
        self.script = script
        self.options = options
        self.logging = logging
        if reactor is None:
            reactor = global_reactor
        self._reactor = reactor

        if sys_module is None:
            sys_module = sys
        self.sys_module = sys_module

    def _parse_options(self, arguments):
        """Parse the options defined in the script's options class.

        ``UsageError``s are caught and printed to `stderr` and the script then
        exits.

        :param list arguments: The command line arguments to be parsed.
        :return: A ``dict`` of configuration options.
        """
        try:
            self.options.parseOptions(arguments)
        except usage.UsageError as e:
            self.sys_module.stderr.write(str(self.options))
            self.sys_module.stderr.write('ERROR: ' + str(e) + '\n')
            raise SystemExit(1)
        return self.options

    def main(self):
        """Parse arguments and run the script's main function via ``react``."""
        # --help raises SystemExit, so parse before any side-effecty code.
        options = self._parse_options(self.sys_module.argv[1:])

        if self.logging:
            to_file(self.sys_module.stdout)

        def run_and_log(reactor):
            d = maybeDeferred(self.script.main, reactor, options)

            def got_error(failure):
                if not failure.check(SystemExit):
                    write_failure(failure)
                    self.sys_module.stderr.write(
                        'ERROR: ' + str(failure.value) + '\n')
                return failure
            d.addErrback(got_error)
            return d
        self._react(run_and_log, [], _reactor=self._reactor)


def ebs_autoscale_main():
    """
    Implementation of the ``ebs-autoscale`` command line script.
    """
    return AutoscaleScriptRunner(
        script=AutoscaleScript(),
        options=EBSAutoscaleOptions(),
    ).main()
