"""Tests for transfer records, progress channels, tasks and retry policy."""

import threading

import pytest

from gmr_sync.core.transfer import (
    ChunkReceived,
    Done,
    GameTransfer,
    ProgressChannel,
    RetryPolicy,
    Started,
    TransferFailed,
    TransferState,
    TransferTask,
)


class TestProgressChannel:

    def test_messages_keep_order(self):
        channel = ProgressChannel()
        for message in (Started(10), ChunkReceived(50.0), Done("path")):
            assert channel.send(message)

        assert channel.drain() == [Started(10), ChunkReceived(50.0), Done("path")]
        assert channel.drain() == []

    def test_progress_dropped_when_full(self):
        channel = ProgressChannel(maxsize=2)
        channel.send(Started())
        channel.send(ChunkReceived(1.0))

        assert not channel.send(ChunkReceived(2.0))
        assert channel.drain() == [Started(), ChunkReceived(1.0)]

    def test_terminal_message_waits_for_room(self):
        channel = ProgressChannel(maxsize=1)
        channel.send(Started())
        sent = []
        sender = threading.Thread(target=lambda: sent.append(channel.send(Done(1))))
        sender.start()

        assert channel.drain() == [Started()]
        sender.join(timeout=5)

        assert sent == [True]
        assert channel.drain() == [Done(1)]

    def test_close_releases_blocked_sender(self):
        channel = ProgressChannel(maxsize=1)
        channel.send(Started())
        sent = []
        sender = threading.Thread(target=lambda: sent.append(channel.send(Done(1))))
        sender.start()

        channel.close()
        sender.join(timeout=5)

        assert channel.closed
        assert sent == [False]


class TestTransferTask:

    def test_runs_function_with_channel_and_stop_request(self):
        def transfer(channel, stop_request, value):
            channel.send(Started())
            channel.send(Done(value * 2))

        task = TransferTask(transfer, 21)
        task.start()
        task.join(timeout=5)

        assert task.daemon
        assert task.channel.drain() == [Started(), Done(42)]

    def test_exception_becomes_failure_message(self):
        def transfer(channel, stop_request):
            raise OSError("disk full")

        task = TransferTask(transfer)
        task.start()
        task.join(timeout=5)

        assert task.channel.drain() == [TransferFailed("disk full")]

    def test_cancel_sets_stop_request(self):
        started = threading.Event()

        def transfer(channel, stop_request):
            started.set()
            stop_request.wait(5)

        task = TransferTask(transfer, name="download-1")
        task.start()
        started.wait(5)
        task.cancel()
        task.join(timeout=5)

        assert not task.is_alive()
        assert task.stop_request.is_set()
        assert task.channel.closed
        assert task.name == "download-1"


class TestRetryPolicy:

    def test_backoff_doubles_up_to_cap(self):
        policy = RetryPolicy(max_attempts=10, base_delay=5.0, max_delay=30.0)

        assert [policy.delay_for(n) for n in (1, 2, 3, 4, 5)] == [5.0, 10.0, 20.0, 30.0, 30.0]

    def test_attempts_are_bounded(self):
        policy = RetryPolicy(max_attempts=3)

        assert policy.should_retry(1)
        assert policy.should_retry(2)
        assert not policy.should_retry(3)


class TestGameTransfer:

    def test_default_is_idle(self):
        record = GameTransfer()
        assert record.state == TransferState.IDLE
        assert record.task is None

    @pytest.mark.parametrize("state", [TransferState.DOWNLOADING, TransferState.UPLOADING])
    def test_busy_states_need_a_task(self, state):
        with pytest.raises(ValueError):
            GameTransfer(state)

    @pytest.mark.parametrize("state", [
        TransferState.IDLE,
        TransferState.DOWNLOADED,
        TransferState.UPLOAD_QUEUED,
        TransferState.UPLOAD_COMPLETE,
        TransferState.FAILED,
    ])
    def test_resting_states_cannot_have_a_task(self, state):
        task = TransferTask(lambda channel, stop_request: None)
        with pytest.raises(ValueError):
            GameTransfer(state, task=task)

    def test_moved_drops_task(self):
        task = TransferTask(lambda channel, stop_request: None)
        busy = GameTransfer(TransferState.DOWNLOADING, turn_id=5, task=task, attempts=1)

        done = busy.moved(TransferState.DOWNLOADED)

        assert done.task is None
        assert done.turn_id == 5
        assert done.attempts == 1

    def test_ready_after_delay(self):
        record = GameTransfer(next_attempt_at=100.0)

        assert not record.ready(99.0)
        assert record.ready(100.0)
