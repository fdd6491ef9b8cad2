# -*- test-case-name: ebs_autoscale.test.test_cloudwatch -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
An Eliot destination which ships log messages to CloudWatch Logs.
"""

import json
import threading
import time
from uuid import uuid4

import boto3

from botocore.exceptions import BotoCoreError, ClientError
from twisted.internet.task import LoopingCall
from twisted.internet.threads import deferToThread

from ._logging import CLOUDWATCH_FLUSH_FAILED

# PutLogEvents accepts at most this many events per call.
MAX_EVENTS_PER_PUT = 10000


def log_stream_name():
    return u"ebs-autoscale-{}".format(uuid4())


class CloudWatchLogsDestination(object):
    """
    Buffer Eliot messages and put them to a CloudWatch Logs group in
    batches.

    The log stream is created by the first successful flush and reused by
    every later one.

    :ivar unicode log_group_name: The existing log group to write to.
    :ivar int max_batch_size: Buffered events which trigger a flush.
    :ivar log_stream_name: The name of the stream being written to, or
        ``None`` before it has been created.
    """
    def __init__(self, client, log_group_name, max_batch_size=100,
                 now=time.time, stream_name_factory=log_stream_name):
        """
        :param client: A boto3 CloudWatch Logs client.
        :param now: A no-argument callable returning the time in seconds
            since the epoch.
        :param stream_name_factory: Returns the name of a new log stream.
        """
        self.client = client
        self.log_group_name = log_group_name
        self.max_batch_size = min(max_batch_size, MAX_EVENTS_PER_PUT)
        self.now = now
        self.stream_name_factory = stream_name_factory
        self.log_stream_name = None
        self._events = []
        self._reactor = None
        self._run = None
        self._buffer_lock = threading.Lock()
        self._flush_lock = threading.Lock()

    def __call__(self, message):
        event = {
            "timestamp": int(self.now() * 1000),
            "message": json.dumps(message, default=repr),
        }
        with self._buffer_lock:
            self._events.append(event)
            full = len(self._events) == self.max_batch_size
        # A full batch is flushed from the reactor, never from the thread
        # which logged the message.
        if full and self._reactor is not None:
            self._reactor.callFromThread(self._run, self.flush)

    def pending(self):
        """
        :return: The number of events waiting to be shipped.
        """
        with self._buffer_lock:
            return len(self._events)

    def flush(self):
        """
        Put every buffered event to CloudWatch Logs.

        A failure is logged and the events are dropped. Messages logged while
        a flush is in progress, including by the flush itself, are buffered
        for the next one.
        """
        if not self._flush_lock.acquire(False):
            return
        try:
            with self._buffer_lock:
                events, self._events = self._events, []
            if not events:
                return
            try:
                self._put(events)
            except (ClientError, BotoCoreError) as e:
                CLOUDWATCH_FLUSH_FAILED(
                    log_group=self.log_group_name, reason=str(e),
                ).write()
        finally:
            self._flush_lock.release()

    def _put(self, events):
        if self.log_stream_name is None:
            name = self.stream_name_factory()
            self.client.create_log_stream(
                logGroupName=self.log_group_name, logStreamName=name,
            )
            self.log_stream_name = name
        self.client.put_log_events(
            logGroupName=self.log_group_name,
            logStreamName=self.log_stream_name,
            logEvents=events,
        )

    def start_flushing(self, reactor, interval, run=deferToThread):
        """
        Flush periodically as well as whenever the buffer fills.

        Until this is called a full buffer just keeps growing.

        :param reactor: Provides ``IReactorTime`` and ``IReactorThreads``;
            schedules the flushes.
        :param int interval: Seconds between flushes.
        :param run: Called with ``flush``, returning a ``Deferred``.
            Defaults to running it in the reactor thread pool.

        :return: The started ``LoopingCall``.
        """
        self._reactor = reactor
        self._run = run
        loop = LoopingCall(run, self.flush)
        loop.clock = reactor
        loop.start(interval, now=False)
        return loop


def cloudwatch_from_configuration(configuration, region,
                                  session_factory=boto3.session.Session):
    """
    Build a ``CloudWatchLogsDestination``.

    :param LoggingConfiguration configuration: The log group and batch size.
    :param unicode region: The region of the log group.
    :param session_factory: Creates the boto3 session.
    """
    session = session_factory(region_name=region)
    return CloudWatchLogsDestination(
        client=session.client("logs"),
        log_group_name=configuration.log_group_name,
        max_batch_size=configuration.max_batch_size,
    )
