"""Pipeline runner: evaluator → reactor chain, one sequential run per event."""

import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from overwatch.errors import OverwatchError
from overwatch.evaluator import RegexEvaluator
from overwatch.events import IoEvent


@dataclass
class ChainOutcome:
    """What happened to one matched event."""

    event_uuid: str
    completed: list[str] = field(default_factory=list)
    failed: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.failed is None


class PipelineRunner:
    """Receives events, filters them and runs the bound chain.

    Events are handed to a thread pool so a slow chain does not hold up the
    watcher. Within one event the reactors run strictly in order, and the
    first failure stops the rest of that event's chain.
    """

    def __init__(self, evaluator: RegexEvaluator, reactors: list, workers: int = 4,
                 dry_run: bool = False):
        self._evaluator = evaluator
        self._reactors = list(reactors)
        self._dry_run = dry_run
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chain")
        self._log = logging.getLogger("overwatch.runner")
        self._lock = threading.Lock()
        self._start_time = time.time()
        self._events_seen = 0
        self._events_matched = 0
        self._chains_succeeded = 0
        self._chains_failed = 0
        self._last_event_time = None

    @property
    def reactor_ids(self) -> list[str]:
        return [r.id for r in self._reactors]

    def submit(self, event: IoEvent) -> Future:
        """Queue *event* for evaluation on the worker pool."""
        return self._executor.submit(self._handle_logged, event)

    def _handle_logged(self, event: IoEvent) -> ChainOutcome | None:
        # futures from submit() are not awaited
        try:
            return self.handle(event)
        except Exception:
            self._log.exception("Failed to handle %s %s", event.event_type, event.full_path)
            return None

    def handle(self, event: IoEvent) -> ChainOutcome | None:
        """Evaluate *event* and run the chain if it matches."""
        with self._lock:
            self._events_seen += 1
            self._last_event_time = time.time()

        if not self._evaluator.matches(event):
            self._log.debug("No match: %s %s", event.event_type, event.full_path)
            return None

        with self._lock:
            self._events_matched += 1
        self._log.info("Event %s: %s %s", event.uuid, event.event_type, event.full_path)
        return self.run_chain(event)

    def run_chain(self, event: IoEvent) -> ChainOutcome:
        outcome = ChainOutcome(event.uuid)
        for reactor in self._reactors:
            try:
                reactor.apply(event)
            except OverwatchError as e:
                self._log.error("Reactor %s failed for %s (%s): %s",
                                reactor.id, event.uuid, event.full_path, e)
                outcome.failed, outcome.error = reactor.id, e
                break
            except Exception as e:
                self._log.exception("Reactor %s raised for %s (%s)",
                                    reactor.id, event.uuid, event.full_path)
                outcome.failed, outcome.error = reactor.id, e
                break
            outcome.completed.append(reactor.id)

        with self._lock:
            if outcome.ok:
                self._chains_succeeded += 1
            else:
                self._chains_failed += 1
        if outcome.ok:
            self._log.info("Event %s: chain complete (%s)", event.uuid, ", ".join(outcome.completed))
        return outcome

    def close(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
        for reactor in self._reactors:
            reactor.close()
        self._log.info("Runner stopped. Seen %d events, matched %d, failed %d.",
                       self._events_seen, self._events_matched, self._chains_failed)

    # --- Status ---

    def uptime(self) -> float:
        return time.time() - self._start_time

    def status(self) -> dict:
        with self._lock:
            return {
                "uptime_seconds": self.uptime(),
                "events_seen": self._events_seen,
                "events_matched": self._events_matched,
                "chains_succeeded": self._chains_succeeded,
                "chains_failed": self._chains_failed,
                "last_event_time": self._last_event_time,
                "reactors": self.reactor_ids,
                "dry_run": self._dry_run,
            }


# ---------------------------------------------------------------------------
# Health server: lightweight HTTP health check endpoint
# ---------------------------------------------------------------------------

class HealthServer:
    """Minimal HTTP server for health checks and status."""

    def __init__(self, port: int, runner: PipelineRunner, host: str = "0.0.0.0"):
        self._port = port
        self._host = host
        self._runner = runner
        self._server = None
        self._thread = None

    @property
    def port(self) -> int:
        return self._server.server_address[1] if self._server else self._port

    def start(self):
        """Start the health server in a background thread."""
        from http.server import BaseHTTPRequestHandler, HTTPServer

        runner = self._runner

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                if self.path == "/health":
                    self._respond(200, {"status": "ok", "uptime": runner.uptime()})
                elif self.path == "/status":
                    self._respond(200, runner.status())
                else:
                    self._respond(404, {"error": "not found"})

            def _respond(self, code, data):
                body = json.dumps(data, default=str).encode("utf-8")
                self.send_response(code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format, *args):
                pass  # Suppress access logs

        self._server = HTTPServer((self._host, self._port), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self):
        if self._server:
            self._server.shutdown()
            self._server.server_close()
