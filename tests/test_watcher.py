from __future__ import annotations

import os
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest import mock

import md_io
from watcher import (
    DEFAULT_DEBOUNCE,
    FileError,
    FileUpdated,
    FileWatch,
    WatchSubscriptionError,
    debounce_from_env,
    watch_once,
)


class _BrokenObserver:
    def schedule(self, handler, path, recursive=False):
        raise OSError(2, "No such file or directory", path)

    def start(self) -> None:
        raise AssertionError("start should not be reached")


class _DeadObserver:
    """Starts fine but its thread is never alive, like an emitter that crashed."""

    def __init__(self) -> None:
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        return None

    def start(self) -> None:
        return None

    def is_alive(self) -> bool:
        return False

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout=None) -> None:
        return None


class FileWatchDebounceTests(unittest.TestCase):
    def test_burst_of_events_produces_one_read(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "todo.md"
            path.write_text("## A\n- [ ] one\n", encoding="utf-8")
            watch = FileWatch(path, debounce=0.05)

            with mock.patch("watcher.read_and_parse", wraps=md_io.read_and_parse) as reader:
                for _ in range(5):
                    watch.schedule_read()
                result = watch.wait(timeout=5)
                watch.close()

            self.assertIsInstance(result, FileUpdated)
            self.assertEqual(result.sections[0].heading, "A")
            self.assertEqual(reader.call_count, 1)

    def test_missing_file_delivers_read_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            watch = FileWatch(Path(tmp) / "gone.md", debounce=0.01)
            watch.schedule_read()
            result = watch.wait(timeout=5)
            watch.close()

        self.assertIsInstance(result, FileError)
        self.assertIsInstance(result.error, OSError)
        self.assertNotIsInstance(result.error, WatchSubscriptionError)

    def test_events_after_result_are_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "todo.md"
            path.write_text("## A\n", encoding="utf-8")
            watch = FileWatch(path, debounce=0.01)
            watch.schedule_read()
            first = watch.wait(timeout=5)

            path.write_text("## B\n", encoding="utf-8")
            watch.schedule_read()
            time.sleep(0.1)
            watch.close()

        self.assertIs(watch.result, first)
        self.assertEqual(first.sections[0].heading, "A")

    def test_events_after_close_do_not_start_a_read(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "todo.md"
            path.write_text("## A\n", encoding="utf-8")
            watch = FileWatch(path, debounce=0.01)
            watch.close()

            with mock.patch("watcher.read_and_parse") as reader:
                watch.schedule_read()
                time.sleep(0.1)

        self.assertIsNone(watch._timer)
        reader.assert_not_called()
        self.assertIsNone(watch.result)

    def test_read_errors_are_left_to_the_consumer_to_log(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            watch = FileWatch(Path(tmp) / "gone.md", debounce=0.01)
            with mock.patch("watcher.activity_log.log_event") as log_event:
                watch.schedule_read()
                result = watch.wait(timeout=5)
                watch.close()

        self.assertIsInstance(result, FileError)
        statuses = [call.args[0] for call in log_event.call_args_list]
        self.assertNotIn("ERROR", statuses)

    def test_wait_times_out_without_events(self) -> None:
        watch = FileWatch(Path("/nonexistent/todo.md"), debounce=0.01)
        self.assertIsNone(watch.wait(timeout=0.05))

    def test_wait_stops_when_asked(self) -> None:
        watch = FileWatch(Path("/nonexistent/todo.md"), debounce=0.01)
        stop = threading.Event()
        stop.set()
        self.assertIsNone(watch.wait(should_stop=stop.is_set))


class FileWatchSubscriptionTests(unittest.TestCase):
    def test_schedule_failure_is_delivered_immediately(self) -> None:
        watch = FileWatch(Path("/nonexistent/dir/todo.md"), observer_factory=_BrokenObserver)
        watch.start()

        result = watch.wait(timeout=0)
        self.assertIsInstance(result, FileError)
        self.assertIsInstance(result.error, WatchSubscriptionError)
        watch.close()

    def test_dead_observer_is_reported(self) -> None:
        observer = _DeadObserver()
        watch = FileWatch(Path("/tmp/todo.md"), observer_factory=lambda: observer)
        watch.start()

        result = watch.wait(timeout=2)
        watch.close()

        self.assertIsInstance(result, FileError)
        self.assertIsInstance(result.error, WatchSubscriptionError)
        self.assertTrue(observer.stopped)


class WatchOnceTests(unittest.TestCase):
    def test_write_to_watched_file_delivers_update(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "todo.md"
            path.write_text("## Before\n", encoding="utf-8")
            results = []

            thread = threading.Thread(
                target=lambda: results.append(watch_once(path, debounce=0.05)),
                daemon=True,
            )
            thread.start()
            # Keep writing until the watch picks it up; the observer starts asynchronously.
            deadline = time.monotonic() + 10
            while thread.is_alive() and time.monotonic() < deadline:
                staged = Path(tmp) / "todo.md.tmp"
                staged.write_text("## After\n- [x] done\n", encoding="utf-8")
                os.replace(staged, path)
                thread.join(timeout=0.3)

            self.assertFalse(thread.is_alive())
            self.assertEqual(len(results), 1)
            self.assertIsInstance(results[0], FileUpdated)
            self.assertEqual(results[0].sections[0].heading, "After")

    def test_writes_to_sibling_files_are_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "todo.md"
            path.write_text("## Before\n", encoding="utf-8")
            watch = FileWatch(path, debounce=0.01)
            watch.start()
            try:
                for n in range(5):
                    (Path(tmp) / f"other{n}.md").write_text("## Other\n", encoding="utf-8")
                self.assertIsNone(watch.wait(timeout=0.5))
            finally:
                watch.close()


class DebounceConfigTests(unittest.TestCase):
    def test_env_override(self) -> None:
        with mock.patch.dict(os.environ, {"TODO_TREE_DEBOUNCE": "0.25"}):
            self.assertEqual(debounce_from_env(), 0.25)

    def test_bad_values_fall_back(self) -> None:
        for raw in ("", "soon", "-1"):
            with mock.patch.dict(os.environ, {"TODO_TREE_DEBOUNCE": raw}):
                self.assertEqual(debounce_from_env(), DEFAULT_DEBOUNCE)


if __name__ == "__main__":
    unittest.main()
