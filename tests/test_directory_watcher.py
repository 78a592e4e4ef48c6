from __future__ import annotations

import os
import shutil
import threading
import time

from pathlib import Path

import pytest

from conftest import ALICE, BOB, DummyExtractor, solid, wait_for, write_image
from facewatch.face.recognizer import FaceRecognition
from facewatch.face.registry import LoadStatus
from facewatch.face.watcher import DirectoryWatcher, latest_mtime


def _touch_future(path: Path, ahead: float = 10.0) -> None:
    t = time.time() + ahead
    os.utime(path, (t, t))


def _watcher_threads():
    return [t for t in threading.enumerate() if t.name == "db-watcher" and t.is_alive()]


def test_latest_mtime_is_newest_regular_file(tmp_path: Path):
    assert latest_mtime(tmp_path) == 0
    a = tmp_path / "a" / "1.png"
    b = tmp_path / "b" / "deep" / "2.png"
    for p in (a, b):
        p.parent.mkdir(parents=True)
        p.write_bytes(b"x")
    os.utime(a, ns=(1_000_000_000, 1_000_000_000))
    os.utime(b, ns=(3_000_000_000, 3_000_000_000))

    assert latest_mtime(tmp_path) == 3_000_000_000


def test_latest_mtime_raises_for_missing_root(tmp_path: Path):
    with pytest.raises(OSError):
        latest_mtime(tmp_path / "missing")


def test_watcher_reloads_new_identity(persons_db: Path, dummy_extractor: DummyExtractor):
    with FaceRecognition(extractor=dummy_extractor) as fr:
        fr.load_persons_db(persons_db)
        assert "xavier" not in fr.registry
        assert fr.start_watching(0.05)

        new_image = write_image(persons_db / "xavier" / "1.png", solid((90, 90, 90)))
        _touch_future(new_image)

        assert wait_for(lambda: len(fr.registry.get("xavier", ())) == 1)
        assert fr.load_status is LoadStatus.LOADED
    assert not fr.is_watching


def test_start_without_path_is_a_noop(dummy_extractor: DummyExtractor):
    fr = FaceRecognition(extractor=dummy_extractor)

    assert fr.start_watching(0.05) is False
    assert not fr.is_watching
    assert _watcher_threads() == []


def test_start_twice_keeps_single_thread(persons_db: Path, dummy_extractor: DummyExtractor):
    with FaceRecognition(extractor=dummy_extractor) as fr:
        fr.load_persons_db(persons_db)
        assert fr.start_watching(0.05) is True
        assert fr.start_watching(0.05) is False
        assert len(_watcher_threads()) == 1


def test_stop_joins_and_is_idempotent(persons_db: Path, dummy_extractor: DummyExtractor):
    fr = FaceRecognition(extractor=dummy_extractor)
    fr.stop_watching()

    fr.load_persons_db(persons_db)
    fr.start_watching(10)
    started = time.monotonic()
    fr.stop_watching()

    # The sleep is interruptible, so stop does not wait out the interval.
    assert time.monotonic() - started < 5
    assert not fr.is_watching
    assert _watcher_threads() == []
    fr.stop_watching()


def test_dropping_the_recognizer_stops_its_thread(persons_db: Path, dummy_extractor: DummyExtractor):
    fr = FaceRecognition(extractor=dummy_extractor)
    fr.load_persons_db(persons_db)
    fr.start_watching(0.05)
    assert len(_watcher_threads()) == 1

    del fr

    assert wait_for(lambda: _watcher_threads() == [])


def test_scan_errors_do_not_stop_the_loop(tmp_path: Path):
    root = tmp_path / "db"
    write_image(root / "alice" / "1.png", solid(ALICE))
    changes = []
    watcher = DirectoryWatcher(changes.append)
    watcher.start(root, 0.05)
    try:
        shutil.rmtree(root)
        time.sleep(0.2)
        assert watcher.running
        assert changes == []

        _touch_future(write_image(root / "alice" / "1.png", solid(ALICE)))
        assert wait_for(lambda: root in changes)
    finally:
        watcher.stop()


def test_changes_within_one_interval_coalesce(tmp_path: Path):
    root = tmp_path / "db"
    write_image(root / "alice" / "1.png", solid(ALICE))
    changes = []
    watcher = DirectoryWatcher(changes.append)
    watcher.start(root, 0.3)
    try:
        for i in range(3):
            _touch_future(write_image(root / "bob" / f"{i}.png", solid(BOB)))
        time.sleep(1.0)
    finally:
        watcher.stop()

    assert changes == [root]


def test_callback_errors_are_logged_not_fatal(tmp_path: Path):
    root = tmp_path / "db"
    write_image(root / "alice" / "1.png", solid(ALICE))
    calls = []

    def _boom(path: Path) -> None:
        calls.append(path)
        raise RuntimeError("reload failed")

    watcher = DirectoryWatcher(_boom)
    watcher.start(root, 0.05)
    try:
        _touch_future(write_image(root / "alice" / "2.png", solid(ALICE)), ahead=10)
        assert wait_for(lambda: len(calls) >= 1)
        seen = len(calls)
        _touch_future(write_image(root / "alice" / "3.png", solid(ALICE)), ahead=20)
        assert wait_for(lambda: len(calls) > seen)
        assert watcher.running
    finally:
        watcher.stop()


def test_loading_another_folder_moves_the_watcher(tmp_path: Path, persons_db: Path, dummy_extractor: DummyExtractor):
    other = tmp_path / "other"
    write_image(other / "zed" / "1.png", solid(BOB))

    with FaceRecognition(extractor=dummy_extractor) as fr:
        fr.load_persons_db(persons_db)
        fr.start_watching(0.05)
        fr.load_persons_db(other)
        assert fr.is_watching

        _touch_future(write_image(other / "yan" / "1.png", solid(ALICE)))
        assert wait_for(lambda: "yan" in fr.registry)
        assert "alice" not in fr.registry


def test_latest_mtime_skips_dangling_symlinks(tmp_path: Path):
    image = write_image(tmp_path / "alice" / "1.png", solid(ALICE))
    os.utime(image, ns=(2_000_000_000, 2_000_000_000))
    os.symlink(tmp_path / "gone.png", tmp_path / "alice" / "link.png")

    assert latest_mtime(tmp_path) == 2_000_000_000


def test_dangling_symlink_does_not_blind_the_watcher(tmp_path: Path):
    root = tmp_path / "db"
    write_image(root / "alice" / "1.png", solid(ALICE))
    os.symlink(tmp_path / "gone.png", root / "alice" / "link.png")
    changes = []
    watcher = DirectoryWatcher(changes.append)
    watcher.start(root, 0.05)
    try:
        _touch_future(write_image(root / "alice" / "2.png", solid(ALICE)))
        assert wait_for(lambda: root in changes)
    finally:
        watcher.stop()


def test_start_during_stop_leaves_a_running_watcher(tmp_path: Path):
    root = tmp_path / "db"
    write_image(root / "alice" / "1.png", solid(ALICE))
    entered = threading.Event()
    release = threading.Event()

    def _slow_reload(path: Path) -> None:
        entered.set()
        release.wait(5)

    watcher = DirectoryWatcher(_slow_reload)
    watcher.start(root, 0.05)
    try:
        _touch_future(write_image(root / "alice" / "2.png", solid(ALICE)))
        assert entered.wait(5)

        # stop() blocks joining the thread that is still inside the callback.
        stopper = threading.Thread(target=watcher.stop)
        stopper.start()
        time.sleep(0.1)
        assert stopper.is_alive()

        results = []
        starter = threading.Thread(target=lambda: results.append(watcher.start(root, 0.05)))
        starter.start()
        time.sleep(0.1)
        release.set()
        stopper.join(5)
        starter.join(5)

        assert results == [True]
        assert watcher.running
        assert len(_watcher_threads()) == 1
    finally:
        release.set()
        watcher.stop()
    assert not watcher.running
