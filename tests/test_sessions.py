from __future__ import annotations

import threading

import pytest

from pzp_agent.errors import ConflictError, NotFoundError
from pzp_agent.models import FileRef
from pzp_agent.sessions import PendingSessionRegistry


def _file(name: str) -> FileRef:
    return FileRef(display_name=name, file_id=f"id-{name}", chat_id="chat-1", is_private=False)


def test_begin_refuses_second_session() -> None:
    registry = PendingSessionRegistry()
    registry.begin("alice")

    with pytest.raises(ConflictError):
        registry.begin("alice")

    assert len(registry) == 1


def test_files_accumulate_in_order_and_auxiliary_flag_is_one_shot() -> None:
    registry = PendingSessionRegistry()
    registry.begin("alice")

    assert registry.record_file("alice", _file("a.zip")) is False
    registry.request_auxiliary("alice")
    assert registry.record_file("alice", _file("pack.zip")) is True
    assert registry.record_file("alice", _file("b.pez")) is False

    session = registry.peek("alice")
    assert session is not None
    assert [item.display_name for item in session.primary_files] == ["a.zip", "b.pez"]
    assert session.auxiliary_file == _file("pack.zip")
    assert session.expecting_auxiliary_file is False


def test_explicit_auxiliary_argument_overrides_flag() -> None:
    registry = PendingSessionRegistry()
    registry.begin("alice")
    registry.request_auxiliary("alice")

    assert registry.record_file("alice", _file("chart.zip"), as_auxiliary=False) is False
    session = registry.peek("alice")
    assert session is not None and session.expecting_auxiliary_file is True


def test_operations_without_session_raise_not_found() -> None:
    registry = PendingSessionRegistry()

    with pytest.raises(NotFoundError):
        registry.record_file("bob", _file("a.zip"))
    with pytest.raises(NotFoundError):
        registry.request_auxiliary("bob")
    with pytest.raises(NotFoundError):
        registry.take("bob")


def test_take_is_atomic_across_threads() -> None:
    registry = PendingSessionRegistry()
    registry.begin("alice")
    registry.record_file("alice", _file("a.zip"))

    barrier = threading.Barrier(8)
    taken: list[object] = []
    missed: list[Exception] = []

    def worker() -> None:
        barrier.wait()
        try:
            taken.append(registry.take("alice"))
        except NotFoundError as exc:
            missed.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(taken) == 1
    assert len(missed) == 7
    assert "alice" not in registry


def test_abandon_discards_session() -> None:
    registry = PendingSessionRegistry()
    registry.begin("alice")

    assert registry.abandon("alice") is True
    assert registry.abandon("alice") is False
    assert registry.peek("alice") is None
    registry.begin("alice")
