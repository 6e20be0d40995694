from formlink.taskqueue_class import LinkageTaskQueue


def test_enqueue_merges_pending_tasks_and_refreshes_timestamp() -> None:
    queue = LinkageTaskQueue()
    first = queue.enqueue("total", ["total"])
    other = queue.enqueue("discount")
    second = queue.enqueue("total", ["total", "discount"])

    assert second > first
    assert not queue.is_task_valid("total", first)
    assert queue.is_task_valid("total", second)
    assert queue.is_task_valid("discount", other)
    assert queue.status()["queue_length"] == 2

    task = queue.dequeue()
    assert task.field_path == "total"
    assert task.timestamp == second
    assert task.affected_fields == ("total", "discount")


def test_complete_only_removes_matching_timestamp() -> None:
    queue = LinkageTaskQueue()
    stale = queue.enqueue("total")
    fresh = queue.enqueue("total")
    queue.complete("total", stale)
    assert not queue.is_empty()
    queue.complete("total", fresh)
    assert queue.is_empty()
    assert queue.dequeue() is None
    # The timestamp stays the latest one for validity checks.
    assert queue.is_task_valid("total", fresh)


def test_clear_invalidates_in_flight_tasks() -> None:
    queue = LinkageTaskQueue()
    token = queue.enqueue("total")
    queue.clear()
    assert queue.is_empty()
    assert not queue.is_task_valid("total", token)


def test_updating_guard() -> None:
    queue = LinkageTaskQueue()
    with queue.updating("total"):
        assert queue.is_field_updating("total")
        assert queue.status()["updating_fields"] == ["total"]
    assert not queue.is_field_updating("total")

    queue.mark_field_updating("a")
    queue.unmark_field_updating("a")
    queue.unmark_field_updating("a")
    assert not queue.is_field_updating("a")
