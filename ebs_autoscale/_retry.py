# -*- test-case-name: ebs_autoscale.test.test_retry -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Helpers for bounded polling and cooperative cancellation.

None of these depend on a reactor so the blocking parts of the volume
lifecycle can run in a worker thread and still be interrupted.
"""

from itertools import repeat
import threading


class Cancelled(Exception):
    """
    The operation was abandoned because its ``CancellationToken`` fired.
    """


class CancellationToken(object):
    """
    A flag, shared between the thread doing the work and whoever may ask it
    to stop, which every blocking wait observes.
    """
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        """
        Ask every wait observing this token to give up.
        """
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()

    def raise_if_cancelled(self):
        """
        :raise Cancelled: If ``cancel`` has been called.
        """
        if self._event.is_set():
            raise Cancelled()

    def sleep(self, seconds):
        """
        Block for ``seconds`` or until cancelled, whichever comes first.

        :raise Cancelled: If the token fires before or during the sleep.
        """
        if self._event.wait(seconds):
            raise Cancelled()


class LoopExceeded(Exception):
    """
    Raised when ``poll_until`` looped too many times.
    """

    def __init__(self, predicate, last_result):
        super(LoopExceeded, self).__init__(
            '%r never True in poll_until, last result: %r'
            % (predicate, last_result))


def fixed_steps(interval, timeout):
    """
    Generate the same delay enough times to fill ``timeout``.

    :param float interval: Seconds between attempts.
    :param float timeout: The total time to spend waiting, in seconds.

    :return: An iterator of ``interval`` values.
    """
    if interval <= 0:
        raise ValueError(
            "Invalid ``interval`` ({!r}). Must be > 0.".format(interval))
    return repeat(interval, int(round(timeout / interval)))


def poll_until(predicate, steps, sleep=None):
    """
    Perform steps until a non-false result is returned.

    :param predicate: a function to be called until it returns a
        non-false result.
    :param [float] steps: An iterable of delay intervals, measured in seconds.
    :param callable sleep: called with the interval to delay on.
        Defaults to a ``CancellationToken().sleep``, which never cancels.
    :returns: the non-false result from the final call.
    :raise LoopExceeded: If given a finite sequence of steps, and we exhaust
        that sequence waiting for predicate to be truthy.
    """
    if sleep is None:
        sleep = CancellationToken().sleep
    for step in steps:
        result = predicate()
        if result:
            return result
        sleep(step)
    result = predicate()
    if result:
        return result
    raise LoopExceeded(predicate, result)
