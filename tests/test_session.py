import sys
import tempfile
import time
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from annotab.record import SessionRecord  # noqa: E402
from annotab.session import EventChannel, FileWatcher, Phase, SessionConfig, SessionState  # noqa: E402


def make_record() -> SessionRecord:
    return SessionRecord(file="data.csv", mode="csv", reason="button", timestamp="t", comments=[])


class TestSessionState(unittest.TestCase):
    def setUp(self):
        self._tempdir = tempfile.TemporaryDirectory()
        self.path = Path(self._tempdir.name) / "data.csv"
        self.path.write_text("a,b\n1,2\n", encoding="utf-8")
        config = SessionConfig(reload_debounce=0.05, keepalive_interval=60, watch_interval=60)
        self.state = SessionState(source_path=self.path, config=config)

    def tearDown(self):
        self.state.close()
        self._tempdir.cleanup()

    def test_lifecycle_phases(self):
        self.assertIs(self.state.phase, Phase.INIT)
        self.state.start()
        self.assertIs(self.state.phase, Phase.SERVING)
        self.assertTrue(self.state.begin_shutdown(make_record()))
        self.assertIs(self.state.phase, Phase.DRAINING)
        self.state.close()
        self.assertIs(self.state.phase, Phase.CLOSED)

    def test_only_first_shutdown_wins(self):
        self.state.start()
        first = make_record()
        self.assertTrue(self.state.begin_shutdown(first))
        self.assertFalse(self.state.begin_shutdown(make_record()))
        self.assertFalse(self.state.begin_shutdown(None))
        self.assertIs(self.state.record, first)

    def test_no_channels_after_shutdown_begins(self):
        self.state.start()
        channel = self.state.open_channel()
        self.assertIsNotNone(channel)
        self.state.begin_shutdown(None)
        self.assertIsNone(self.state.open_channel())
        self.state.close()
        self.assertTrue(channel.closed)
        self.assertEqual(list(channel.events()), [])

    def test_file_changes_are_debounced_into_one_reload(self):
        self.state.start()
        channel = self.state.open_channel()
        for _ in range(5):
            self.state.notify_file_changed()
        self.assertEqual(channel._queue.get(timeout=2), "reload")
        time.sleep(0.2)
        self.assertTrue(channel._queue.empty())

    def test_reload_ignored_before_serving(self):
        channel = self.state.open_channel()
        self.state.notify_file_changed()
        time.sleep(0.15)
        self.assertTrue(channel._queue.empty())

    def test_broadcast_reaches_every_open_channel(self):
        self.state.start()
        first = self.state.open_channel()
        second = self.state.open_channel()
        self.state.close_channel(first)
        self.assertEqual(self.state.broadcast("ping"), 1)
        self.assertEqual(second._queue.get(timeout=1), "ping")

    def test_keepalive_pings_until_close(self):
        config = SessionConfig(reload_debounce=60, keepalive_interval=0.05, watch_interval=60)
        state = SessionState(source_path=self.path, config=config)
        self.addCleanup(state.close)
        state.start()
        channel = state.open_channel()
        self.assertEqual(channel._queue.get(timeout=2), "ping")
        self.assertEqual(channel._queue.get(timeout=2), "ping")
        state.close()
        state._keepalive.join(timeout=2)
        self.assertFalse(state._keepalive.is_alive())
        self.assertNotIn("reload", list(channel.events()))
        listener = state.open_channel()
        self.assertIsNone(listener)
        time.sleep(0.2)
        self.assertTrue(channel._queue.empty())

    def test_load_sets_mode(self):
        result = self.state.load()
        self.assertEqual(self.state.mode, "csv")
        self.assertEqual(result.grid.row_count, 2)
        self.assertIn("annotab-grid-json", self.state.render_html())


class TestEventChannel(unittest.TestCase):
    def test_events_stop_after_close(self):
        channel = EventChannel()
        channel.send("reload")
        channel.close()
        channel.send("late")
        self.assertEqual(list(channel.events()), ["reload"])


class TestFileWatcher(unittest.TestCase):
    def test_poll_detects_size_or_mtime_change(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = Path(tempdir) / "notes.txt"
            path.write_text("one\n", encoding="utf-8")
            calls = []
            watcher = FileWatcher(path, lambda: calls.append(True), interval=60)
            self.assertFalse(watcher.poll())
            path.write_text("one\ntwo\n", encoding="utf-8")
            self.assertTrue(watcher.poll())
            self.assertFalse(watcher.poll())
            path.unlink()
            self.assertTrue(watcher.poll())
            self.assertEqual(len(calls), 2)


if __name__ == "__main__":
    unittest.main()
