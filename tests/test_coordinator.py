import io
import threading
import time

import pytest
from PIL import Image

from conftest import FakeDetector, ListPageSource, RecordingWriter, blank_page
from voxredact.errors import WriteFailed
from voxredact.ocr import open_pages
from voxredact.pipeline import DocumentCoordinator, PagePipeline, RunConfig, RunStatus
from voxredact.policy import ActivePolicy, Category, PolicyStore
from voxredact.voice import CommandInterpreter


def make_coordinator(detector, cfg, writer=None, store=None):
    return DocumentCoordinator(
        PagePipeline(detector, cfg), writer=writer or RecordingWriter(), store=store
    )


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_run_commits_every_page_in_order(cfg):
    writer = RecordingWriter()
    coordinator = make_coordinator(FakeDetector(), cfg, writer)
    result = coordinator.run(
        ListPageSource(4), ActivePolicy(frozenset({Category.EMAIL}), 1)
    )
    assert result.status == RunStatus.COMPLETED
    assert result.output == "memory://1"
    assert result.categories == ["EMAIL"]
    assert [p.page_index for p in result.pages] == [0, 1, 2, 3]
    assert len(writer.writes) == 1
    assert all(isinstance(page, bytes) for page in writer.writes[0])
    assert coordinator.committed.sequence == 1


def test_partial_detection_failure_is_reported(cfg):
    writer = RecordingWriter()
    coordinator = make_coordinator(FakeDetector(fail_on={1}), cfg, writer)
    result = coordinator.run(ListPageSource(3), ActivePolicy(frozenset({Category.ALL}), 1))
    assert result.status == RunStatus.COMPLETED
    assert len(writer.writes[0]) == 3
    assert result.unredacted_pages == [1]
    assert result.summary == "1 of 3 pages could not be analyzed"


def test_zero_page_document_completes_without_writing(cfg):
    writer = RecordingWriter()
    coordinator = make_coordinator(FakeDetector(), cfg, writer)
    result = coordinator.run(ListPageSource(0), ActivePolicy(frozenset({Category.ALL}), 1))
    assert result.status == RunStatus.COMPLETED
    assert result.pages == []
    assert writer.writes == []


def test_write_failure_fails_the_run(cfg):
    writer = RecordingWriter(fail=WriteFailed("disk full"))
    coordinator = make_coordinator(FakeDetector(), cfg, writer)
    result = coordinator.run(ListPageSource(2), ActivePolicy(frozenset({Category.ALL}), 1))
    assert result.status == RunStatus.FAILED
    assert result.error == "WriteFailed: disk full"
    assert coordinator.committed is None
    assert "disk full" in result.summary


def test_new_command_supersedes_run_in_flight():
    cfg = RunConfig(window=1, box_inflation_px=0, instrument=False)
    entered = threading.Event()
    release = threading.Event()

    def hook(page_index, call_number):
        # Hold the first run on page 1 until the new command arrives
        if page_index == 1 and not entered.is_set():
            entered.set()
            release.wait(5)

    store = PolicyStore()
    writer = RecordingWriter()
    coordinator = make_coordinator(FakeDetector(hook=hook), cfg, writer, store)
    coordinator.load(ListPageSource(3))
    store.set({Category.EMAIL})
    first = coordinator.start()
    assert entered.wait(5)

    coordinator.attach()
    second_policy = store.set({Category.PHONE})
    assert wait_until(lambda: coordinator.current.sequence == second_policy.sequence)
    release.set()
    latest = coordinator.wait()
    coordinator.close()

    assert first.cancelled
    by_sequence = {r.sequence: r for r in coordinator.results}
    assert by_sequence[first.sequence].status == RunStatus.CANCELLED
    assert by_sequence[second_policy.sequence].status == RunStatus.COMPLETED
    assert latest.sequence == second_policy.sequence
    assert latest.categories == ["PHONE"]
    assert len(writer.writes) == 1
    assert len(writer.writes[0]) == 3
    assert coordinator.committed.sequence == second_policy.sequence


def test_repeated_identical_command_triggers_new_run(cfg):
    store = PolicyStore()
    writer = RecordingWriter()
    coordinator = make_coordinator(FakeDetector(), cfg, writer, store)
    coordinator.load(ListPageSource(2))
    coordinator.attach()

    store.set({Category.EMAIL})
    assert wait_until(lambda: coordinator.latest_result is not None)
    coordinator.wait()
    store.set({Category.EMAIL})
    assert wait_until(
        lambda: coordinator.latest_result is not None
        and coordinator.latest_result.sequence == 2
    )
    coordinator.wait()
    coordinator.close()

    assert [r.sequence for r in coordinator.results] == [1, 2]
    assert len(writer.writes) == 2


def test_policy_change_without_document_is_ignored(cfg):
    store = PolicyStore()
    coordinator = make_coordinator(FakeDetector(), cfg, store=store)
    coordinator.attach()
    store.set({Category.EMAIL})
    time.sleep(0.05)
    coordinator.close()
    assert coordinator.results == []
    assert coordinator.current is None


def test_start_requires_a_document(cfg):
    coordinator = make_coordinator(FakeDetector(), cfg)
    with pytest.raises(ValueError):
        coordinator.start(ActivePolicy())


def test_progress_listeners_receive_events(cfg):
    events = []
    coordinator = make_coordinator(FakeDetector(), cfg)
    coordinator.subscribe_progress(events.append)
    coordinator.run(ListPageSource(2), ActivePolicy(frozenset({Category.EMAIL}), 3))
    assert events
    assert {e.sequence for e in events} == {3}
    assert coordinator.latest_progress in events


def test_export_writes_last_committed_pages(cfg):
    coordinator = make_coordinator(FakeDetector(), cfg)
    with pytest.raises(WriteFailed):
        coordinator.export(RecordingWriter())
    coordinator.run(ListPageSource(2), ActivePolicy(frozenset({Category.EMAIL}), 1))
    exporter = RecordingWriter()
    assert coordinator.export(exporter) == "memory://1"
    assert exporter.writes[0] == coordinator.committed.pages


def test_loading_a_document_drops_committed_output(cfg):
    coordinator = make_coordinator(FakeDetector(), cfg)
    coordinator.run(ListPageSource(1), ActivePolicy(frozenset({Category.EMAIL}), 1))
    coordinator.load(ListPageSource(2))
    assert coordinator.committed is None


def decode(page_bytes):
    return Image.open(io.BytesIO(page_bytes)).convert("RGB")


def is_painted(page, point):
    return sum(page.getpixel(point)) < 100


def is_blank(page, point):
    return sum(page.getpixel(point)) > 600


def test_spoken_email_command_paints_only_emails(cfg):
    store = PolicyStore()
    CommandInterpreter().apply("Redact all emails", store)
    detector = FakeDetector(
        tokens={
            0: [("alice@example.com", (5, 5, 40, 20)), ("555-123-4567", (60, 5, 40, 20))],
            1: [("bob@example.org", (5, 5, 40, 20))],
        }
    )
    writer = RecordingWriter()
    result = make_coordinator(detector, cfg, writer).run(ListPageSource(2), store.snapshot())
    assert result.categories == ["EMAIL"]
    first, second = (decode(p) for p in writer.writes[0])
    assert is_painted(first, (25, 15))
    assert is_blank(first, (80, 15))
    assert is_painted(second, (25, 15))


def test_hide_everything_paints_every_token_on_every_page(cfg):
    store = PolicyStore()
    CommandInterpreter().apply("hide everything", store)
    detector = FakeDetector(
        tokens={
            0: [("hello", (5, 5, 40, 20))],
            1: [("42", (60, 5, 40, 20)), ("world", (5, 5, 40, 20))],
            2: [("x@y", (30, 10, 40, 20))],
        }
    )
    writer = RecordingWriter()
    result = make_coordinator(detector, cfg, writer).run(ListPageSource(3), store.snapshot())
    assert result.categories == ["ALL"]
    assert [p.boxes_applied for p in result.pages] == [1, 2, 1]
    pages = [decode(p) for p in writer.writes[0]]
    assert is_painted(pages[0], (25, 15))
    assert is_painted(pages[1], (25, 15)) and is_painted(pages[1], (80, 15))
    assert is_painted(pages[2], (50, 20))
    assert is_blank(pages[0], (100, 35))


def test_unreadable_page_fails_background_run(cfg, tmp_path):
    pages = tmp_path / "scan"
    pages.mkdir()
    blank_page().save(pages / "p1.png")
    (pages / "p2.png").write_bytes(b"not a png")
    blank_page().save(pages / "p3.png")

    store = PolicyStore()
    writer = RecordingWriter()
    coordinator = make_coordinator(FakeDetector(), cfg, writer, store)
    coordinator.load(open_pages(pages))
    store.set({Category.EMAIL})
    coordinator.start()
    result = coordinator.wait(5)

    assert result is not None
    assert result.status == RunStatus.FAILED
    assert result.error.startswith("ValueError: Unreadable image")
    assert "p2.png" in result.error
    assert writer.writes == []
    assert coordinator.committed is None


def test_unexpected_detector_error_fails_run(cfg):
    def crash(page_index, call_number):
        if page_index == 1:
            raise RuntimeError("tesseract crashed")

    writer = RecordingWriter()
    coordinator = make_coordinator(FakeDetector(hook=crash), cfg, writer)
    result = coordinator.run(ListPageSource(3), ActivePolicy(frozenset({Category.ALL}), 1))
    assert result.status == RunStatus.FAILED
    assert result.error == "RuntimeError: tesseract crashed"
    assert coordinator.latest_result is result
    assert writer.writes == []


def test_wait_runs_the_last_command_before_returning(cfg):
    for _ in range(30):
        store = PolicyStore()
        writer = RecordingWriter()
        coordinator = make_coordinator(FakeDetector(), cfg, writer, store)
        coordinator.load(ListPageSource(1))
        coordinator.attach()
        store.set({Category.EMAIL})
        latest = coordinator.wait()
        coordinator.close()
        assert latest is not None and latest.sequence == 1
        assert len(writer.writes) == 1
