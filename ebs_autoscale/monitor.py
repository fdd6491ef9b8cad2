# -*- test-case-name: ebs_autoscale.test.test_monitor -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Periodic usage checks which grow the filesystem once it is full enough.
"""

from bitmath import Byte

from eliot import start_action, write_failure
from twisted.internet.task import LoopingCall
from twisted.internet.threads import deferToThread

from ._logging import USAGE_CHECKED, GROWTH_THRESHOLD_EXCEEDED
from ._retry import CancellationToken


def _human_size(size):
    return Byte(size).best_prefix().format(u"{value:.1f} {unit}")


class VolumeMonitor(object):
    """
    Check the usage of a ``LogicalVolume`` every ``interval`` seconds and
    grow it when usage reaches ``threshold`` percent.

    A check, including any growth it triggers, runs in a thread. The next
    check is not scheduled until it has finished so at most one growth is
    ever in progress.

    :ivar LogicalVolume volume: The filesystem being watched.
    :ivar int interval: Seconds between checks.
    :ivar threshold: The usage percentage at which to grow.
    :ivar bool stop_on_error: If ``True`` a failed check stops the monitor.
        Otherwise the failure is logged and checking continues.
    """
    def __init__(self, volume, clock, interval, threshold, cancel=None,
                 stop_on_error=True, run=deferToThread):
        """
        :param IReactorTime clock: Schedules the checks.
        :param CancellationToken cancel: Passed to ``grow_volume``.
        :param run: Called with a no-argument callable, returning a
            ``Deferred`` firing with its result.
        """
        if cancel is None:
            cancel = CancellationToken()
        self.volume = volume
        self.clock = clock
        self.interval = interval
        self.threshold = threshold
        self.cancel = cancel
        self.stop_on_error = stop_on_error
        self.run = run
        self._loop = None

    def assess_and_grow(self):
        """
        Grow the volume if its usage has reached the threshold.

        :return: ``True`` if the volume was grown.
        """
        mount_point = self.volume.filesystem.mount_point()
        usage = self.volume.total_usage_percent()
        USAGE_CHECKED(
            mount_point=mount_point, usage_percent=usage,
            threshold=self.threshold,
        ).write()
        if usage < self.threshold:
            return False

        total, used, _ = self.volume.filesystem.stat()
        GROWTH_THRESHOLD_EXCEEDED(
            mount_point=mount_point, usage_percent=usage,
            threshold=self.threshold,
            usage=u"{} of {}".format(_human_size(used), _human_size(total)),
        ).write()
        self.volume.grow_volume(self.cancel)
        return True

    def _check(self):
        d = self.run(self.assess_and_grow)
        if not self.stop_on_error:
            d.addErrback(write_failure)
        return d

    def start(self):
        """
        Begin checking, the first time after ``interval`` seconds.

        :return: A ``Deferred`` which fires when ``stop`` is called, or fails
            with the error which stopped the monitor.
        """
        with start_action(
            action_type=u"ebs_autoscale:monitor:start",
            mount_point=self.volume.filesystem.mount_point(),
            interval=self.interval, threshold=self.threshold,
        ):
            self._loop = LoopingCall(self._check)
            self._loop.clock = self.clock
            return self._loop.start(self.interval, now=False)

    def stop(self):
        """
        Stop checking. A check already in progress is allowed to finish.
        """
        if self._loop is not None and self._loop.running:
            self._loop.stop()
