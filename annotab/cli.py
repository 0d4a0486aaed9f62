from __future__ import annotations

import argparse
import logging
import sys
import threading
import webbrowser
from http.server import ThreadingHTTPServer
from pathlib import Path
from typing import TextIO

from rich.console import Console
from rich.panel import Panel

from . import __version__
from .ingest import IngestError
from .logging_config import configure_logging
from .record import SessionRecord, dump_records, render_record_summary
from .server import ServerStartError, create_server, serve_until_submitted, server_url
from .session import SessionConfig, SessionState

logger = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="annotab",
        description="Review CSV/TSV/text/Markdown files in the browser and print comments as YAML on submit.",
    )
    parser.add_argument(
        "paths",
        nargs="+",
        metavar="path",
        help="File(s) to review (.csv, .tsv, .md, .diff, or any text file); each gets its own port",
    )
    parser.add_argument("--port", type=int, default=3000, help="Port to bind; the next free port is used if taken. Default: 3000.")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind. Default: 127.0.0.1.")
    parser.add_argument("-e", "--encoding", help="Force the input encoding instead of detecting it (e.g. shift_jis)")
    parser.add_argument("--no-open", dest="open_browser", action="store_false", help="Do not open a browser tab")
    parser.add_argument("--verbose", action="store_true", help="Log HTTP requests and debug details to stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_states(args: argparse.Namespace) -> list[SessionState]:
    states = []
    for raw in args.paths:
        config = SessionConfig(
            host=args.host,
            port=args.port,
            encoding=args.encoding,
            open_browser=args.open_browser,
        )
        states.append(SessionState(source_path=Path(raw).expanduser().resolve(), config=config))
    return states


def _bind_all(states: list[SessionState], console: Console) -> list[ThreadingHTTPServer]:
    """Bind one server per file on consecutive ports; every file is ingested before the first bind."""

    results = [state.load() for state in states]
    servers: list[ThreadingHTTPServer] = []
    port = states[0].config.port
    try:
        for state, result in zip(states, results):
            state.config.port = port
            server = create_server(state)
            servers.append(server)
            if port:
                port = server.server_address[1] + 1
            console.print(
                Panel.fit(
                    f"[bold]{result.title}[/bold]  mode={result.mode}  encoding={result.encoding}\n"
                    f"Serving {server_url(server)}\nSubmit in the browser (or close the tab) to finish.",
                    title="annotab",
                )
            )
    except ServerStartError:
        for server in servers:
            server.server_close()
        raise
    return servers


def _emit_records(
    states: list[SessionState], records: list[SessionRecord | None], stdout: TextIO, console: Console
) -> None:
    submitted = []
    for state, record in zip(states, records):
        if record is None:
            logger.warning("Session for %s ended without a record.", state.source_path.name)
        else:
            submitted.append(record)
    if not submitted:
        return
    stdout.write(dump_records(submitted) + "\n")
    stdout.flush()
    for record in submitted:
        render_record_summary(console, record)


def run_sessions(states: list[SessionState], stdout: TextIO, console: Console) -> int:
    servers = _bind_all(states, console)
    for state, server in zip(states, servers):
        if state.config.open_browser:
            webbrowser.open(server_url(server))

    records: list[SessionRecord | None] = [None] * len(states)

    def serve(index: int) -> None:
        records[index] = serve_until_submitted(servers[index], states[index])

    threads = [
        threading.Thread(target=serve, args=(index,), name=f"serve:{state.source_path.name}", daemon=True)
        for index, state in enumerate(states)
    ]
    for thread in threads:
        thread.start()
    try:
        for thread in threads:
            while thread.is_alive():
                thread.join(0.2)
    except KeyboardInterrupt:
        for state, server in zip(states, servers):
            state.begin_shutdown(None)
            threading.Thread(target=server.shutdown, name="shutdown", daemon=True).start()
        for thread in threads:
            thread.join(timeout=2)
        _emit_records(states, records, stdout, console)
        raise
    _emit_records(states, records, stdout, console)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)
    console = Console(file=sys.stderr)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, console=console)

    states = build_states(args)
    try:
        return run_sessions(states, sys.stdout, console)
    except (IngestError, ServerStartError) as error:
        print(f"[error] {error}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nStopping server.", file=sys.stderr)
        return 130
