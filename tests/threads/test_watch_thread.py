"""
Tests for the ResourceWatchThread
"""
# Standard
from unittest import mock

# Local
from csm_operator.deploy_manager import KubeEventType, KubeWatchEvent
from csm_operator.managed_object import ManagedObject
from csm_operator.test_helpers.helpers import (
    API_VERSION,
    CSM_KIND,
    MockDeployManager,
    TEST_NAMESPACE,
    make_csm,
)
from csm_operator.threads.watch import ResourceWatchThread
from csm_operator.threads.work_queue import ResourceKey

KEY = ResourceKey(TEST_NAMESPACE, "isilon")


def make_watch(namespace=TEST_NAMESPACE, deploy_manager=None):
    return ResourceWatchThread(
        mock.MagicMock(),
        CSM_KIND,
        API_VERSION,
        namespace=namespace,
        deploy_manager=deploy_manager or MockDeployManager(),
    )


def event(event_type=KubeEventType.MODIFIED, generation=1, **metadata):
    return KubeWatchEvent(
        event_type, ManagedObject(make_csm(generation=generation, **metadata))
    )


def test_thread_name():
    assert make_watch().name.endswith(f"_{TEST_NAMESPACE}")
    assert make_watch(namespace=None).name == (
        f"watch_thread_{API_VERSION}_{CSM_KIND}"
    )


def test_added_event_queues():
    watch = make_watch()
    assert watch.handle_event(event(KubeEventType.ADDED))
    watch.queue.add.assert_called_once_with(KEY)


def test_unchanged_event_is_skipped():
    """Status and metadata only changes keep the same generation"""
    watch = make_watch()
    watch.handle_event(event())
    assert not watch.handle_event(event(annotations={"a": "b"}))
    assert watch.queue.add.call_count == 1


def test_generation_change_queues():
    watch = make_watch()
    watch.handle_event(event())
    assert watch.handle_event(event(generation=2))
    assert watch.queue.add.call_count == 2


def test_deletion_start_queues():
    watch = make_watch()
    watch.handle_event(event())
    assert watch.handle_event(event(deletionTimestamp="2024-01-01T00:00:00Z"))


def test_deleted_event_queues():
    watch = make_watch()
    watch.handle_event(event())
    assert watch.handle_event(event(KubeEventType.DELETED))
    assert watch.queue.add.call_count == 2
    assert not watch.watched_resources


def test_run_feeds_events():
    """Events from the deploy manager reach the queue until shutdown"""
    dm = MockDeployManager()
    watch = make_watch(deploy_manager=dm)

    def events(*_, **__):
        yield event(KubeEventType.ADDED)
        watch.stop_thread()
        yield event(generation=2)

    dm.watch_objects.side_effect = events
    watch.run()
    watch.queue.add.assert_called_once_with(KEY)
    _, kwargs = dm.watch_objects.call_args
    assert kwargs["namespace"] == TEST_NAMESPACE
    assert kwargs["stop_event"] is watch.shutdown
