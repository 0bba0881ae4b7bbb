"""
Tests for the RateLimitedWorkQueue
"""
# Standard
from unittest import mock
import threading
import time

# Local
from csm_operator.threads.work_queue import RateLimitedWorkQueue, ResourceKey

KEY_A = ResourceKey("ns", "a")
KEY_B = ResourceKey("ns", "b")


def make_queue(**kwargs):
    kwargs.setdefault("timer_thread", mock.MagicMock())
    return RateLimitedWorkQueue(**kwargs)


def test_fifo_and_dedup():
    queue = make_queue()
    queue.add(KEY_A)
    queue.add(KEY_B)
    queue.add(KEY_A)
    assert len(queue) == 2
    assert queue.get(timeout=0) == KEY_A
    assert queue.get(timeout=0) == KEY_B
    assert queue.get(timeout=0) is None


def test_key_in_progress_is_deferred():
    """A key added while being processed is handed out again once done"""
    queue = make_queue()
    queue.add(KEY_A)
    key = queue.get(timeout=0)
    queue.add(KEY_A)
    assert queue.get(timeout=0) is None
    queue.done(key)
    assert queue.get(timeout=0) == KEY_A


def test_done_without_readd():
    queue = make_queue()
    queue.add(KEY_A)
    queue.done(queue.get(timeout=0))
    assert len(queue) == 0


def test_get_waits_for_add():
    queue = make_queue()
    threading.Timer(0.05, queue.add, args=(KEY_A,)).start()
    assert queue.get(timeout=5) == KEY_A


def test_backoff():
    queue = make_queue(base_delay=0.5, max_delay=3)
    assert [queue.when(KEY_A) for _ in range(5)] == [0.5, 1, 2, 3, 3]
    assert queue.num_requeues(KEY_A) == 5
    assert queue.num_requeues(KEY_B) == 0
    queue.forget(KEY_A)
    assert queue.when(KEY_A) == 0.5


def test_backoff_after_many_failures():
    """A key that keeps failing stays at the maximum delay"""
    queue = make_queue(base_delay=0.005, max_delay=120)
    delays = [queue.when(KEY_A) for _ in range(2000)]
    assert delays[-1] == 120
    assert queue.num_requeues(KEY_A) == 2000


def test_default_backoff_from_config():
    queue = make_queue()
    assert queue.base_delay == 0.005
    assert queue.max_delay == 120


def test_add_rate_limited_uses_timer():
    timer = mock.MagicMock()
    queue = make_queue(base_delay=1, timer_thread=timer)
    queue.add_rate_limited(KEY_A)
    timer.start_thread.assert_called_once()
    _, action, key = timer.put_event.call_args.args
    assert action == queue.add
    assert key == KEY_A


def test_add_after_without_delay():
    timer = mock.MagicMock()
    queue = make_queue(timer_thread=timer)
    queue.add_after(KEY_A, 0)
    assert queue.get(timeout=0) == KEY_A
    timer.put_event.assert_not_called()


def test_delayed_add_with_timer():
    queue = RateLimitedWorkQueue(base_delay=0.05)
    start = time.time()
    queue.add_rate_limited(KEY_A)
    assert queue.get(timeout=5) == KEY_A
    assert time.time() - start >= 0.05
    queue.shut_down()


def test_shut_down():
    queue = make_queue()
    queue.add(KEY_A)
    queue.shut_down()
    assert queue.shutting_down
    queue.add(KEY_B)
    assert queue.get(timeout=0) == KEY_A
    assert queue.get(timeout=1) is None
    queue.timer_thread.stop_thread.assert_called_once()
