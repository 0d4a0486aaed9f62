import http.client
import io
import json
import sys
import tempfile
import threading
import time
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

import yaml
from rich.console import Console

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from annotab import __version__  # noqa: E402
from annotab import cli  # noqa: E402


class TestCli(unittest.TestCase):
    def test_missing_file_is_startup_error(self):
        stderr = io.StringIO()
        with tempfile.TemporaryDirectory() as tempdir, redirect_stderr(stderr):
            code = cli.main([str(Path(tempdir) / "missing.csv"), "--no-open"])
        self.assertEqual(code, 1)
        self.assertIn("[error] File not found", stderr.getvalue())

    def test_missing_file_among_several_binds_nothing(self):
        stderr = io.StringIO()
        with tempfile.TemporaryDirectory() as tempdir, redirect_stderr(stderr):
            present = Path(tempdir) / "data.csv"
            present.write_text("a\n1\n", encoding="utf-8")
            with mock.patch.object(cli, "create_server") as create_server:
                code = cli.main([str(present), str(Path(tempdir) / "missing.csv"), "--no-open"])
        self.assertEqual(code, 1)
        create_server.assert_not_called()
        self.assertIn("[error] File not found", stderr.getvalue())

    def test_each_file_gets_a_server_and_records_print_once(self):
        with tempfile.TemporaryDirectory() as tempdir:
            first = Path(tempdir) / "data.csv"
            first.write_text("a,b\n1,2\n", encoding="utf-8")
            second = Path(tempdir) / "notes.md"
            second.write_text("# Notes\n\nhello\n", encoding="utf-8")
            servers = []
            real_create_server = cli.create_server

            def capture(state):
                server = real_create_server(state)
                servers.append(server)
                return server

            stdout = io.StringIO()
            result = {}

            def run():
                with redirect_stdout(stdout), redirect_stderr(io.StringIO()):
                    result["code"] = cli.main([str(first), str(second), "--port", "0", "--no-open"])

            def submit(server, payload):
                conn = http.client.HTTPConnection("127.0.0.1", server.server_address[1], timeout=5)
                conn.request("POST", "/exit", json.dumps(payload), {"Content-Type": "application/json"})
                status = conn.getresponse().status
                conn.close()
                return status

            with mock.patch.object(cli, "create_server", side_effect=capture):
                thread = threading.Thread(target=run, daemon=True)
                thread.start()
                deadline = time.monotonic() + 5
                while len(servers) < 2 and time.monotonic() < deadline:
                    time.sleep(0.01)
                self.assertEqual(len(servers), 2, "servers did not start")
                self.assertNotEqual(servers[0].server_address[1], servers[1].server_address[1])
                self.assertEqual(submit(servers[1], {"reason": "button", "comments": []}), 200)
                time.sleep(0.2)
                self.assertEqual(stdout.getvalue(), "")
                self.assertEqual(submit(servers[0], {"reason": "close", "summary": "done"}), 200)
                thread.join(timeout=5)

            self.assertEqual(result.get("code"), 0)
            loaded = yaml.safe_load(stdout.getvalue())
            self.assertEqual([item["file"] for item in loaded["files"]], ["data.csv", "notes.md"])
            self.assertEqual([item["reason"] for item in loaded["files"]], ["close", "button"])
            self.assertEqual(loaded["files"][0]["summary"], "done")

    def test_later_files_start_after_the_previous_port(self):
        with tempfile.TemporaryDirectory() as tempdir:
            paths = []
            for name in ("a.csv", "b.csv", "c.txt"):
                path = Path(tempdir) / name
                path.write_text("x\n", encoding="utf-8")
                paths.append(str(path))
            states = cli.build_states(cli.parse_args([*paths, "--port", "5000"]))
            requested = []

            def fake_server(state):
                requested.append(state.config.port)
                bound = state.config.port + (2 if len(requested) == 1 else 0)
                server = mock.MagicMock()
                server.server_address = ("127.0.0.1", bound)
                return server

            with mock.patch.object(cli, "create_server", side_effect=fake_server):
                servers = cli._bind_all(states, Console(file=io.StringIO()))
        self.assertEqual(requested, [5000, 5003, 5004])
        self.assertEqual([server.server_address[1] for server in servers], [5002, 5003, 5004])

    def test_version(self):
        stdout = io.StringIO()
        with redirect_stdout(stdout), self.assertRaises(SystemExit) as ctx:
            cli.main(["--version"])
        self.assertEqual(ctx.exception.code, 0)
        self.assertIn(__version__, stdout.getvalue())

    def test_parse_args_defaults(self):
        args = cli.parse_args(["data.csv"])
        self.assertEqual(args.paths, ["data.csv"])
        self.assertEqual(args.port, 3000)
        self.assertTrue(args.open_browser)
        self.assertIsNone(args.encoding)
        args = cli.parse_args(["a.csv", "b.md", "--no-open", "-e", "shift_jis", "--port", "4000"])
        self.assertEqual(args.paths, ["a.csv", "b.md"])
        self.assertEqual((args.open_browser, args.encoding, args.port), (False, "shift_jis", 4000))

    def test_submission_prints_one_yaml_record(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = Path(tempdir) / "data.csv"
            path.write_text("a,b\n1,2\n,4", encoding="utf-8")
            servers = []
            real_create_server = cli.create_server

            def capture(state):
                server = real_create_server(state)
                servers.append(server)
                return server

            stdout = io.StringIO()
            stderr = io.StringIO()
            result = {}

            def run():
                with redirect_stdout(stdout), redirect_stderr(stderr):
                    result["code"] = cli.main([str(path), "--port", "0", "--no-open"])

            with mock.patch.object(cli, "create_server", side_effect=capture):
                thread = threading.Thread(target=run, daemon=True)
                thread.start()
                deadline = time.monotonic() + 5
                while not servers and time.monotonic() < deadline:
                    time.sleep(0.01)
                self.assertTrue(servers, "server did not start")
                port = servers[0].server_address[1]
                conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
                payload = {
                    "reason": "button",
                    "comments": [{"row": 2, "col": 1, "text": "check", "value": "1"}],
                    "summary": "one issue",
                }
                conn.request("POST", "/exit", json.dumps(payload), {"Content-Type": "application/json"})
                self.assertEqual(conn.getresponse().status, 200)
                conn.close()
                thread.join(timeout=5)

            self.assertEqual(result.get("code"), 0)
            text = stdout.getvalue()
            self.assertEqual(text.count("file: data.csv"), 1)
            record = yaml.safe_load(text)
            self.assertEqual(record["mode"], "csv")
            self.assertEqual(record["reason"], "button")
            self.assertEqual(record["comments"], [{"row": 2, "col": 1, "text": "check", "value": "1"}])
            self.assertEqual(record["summary"], "one issue")
            self.assertIn("check", stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
