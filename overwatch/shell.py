"""Persistent shell workers and the shared pool handle used by shell reactors.

A worker is one long-lived ``/bin/bash -s`` process. Commands are written to
its stdin followed by a marker line that reports ``$?``, so the exit status of
every command is known without spawning a new process per command.
"""

import logging
import os
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass

from overwatch.errors import ExecutionFailure
from overwatch.events import ulid


@dataclass
class CommandResult:
    command: str
    exit_code: int
    output: str


# ---------------------------------------------------------------------------
# Shell worker: one persistent bash process
# ---------------------------------------------------------------------------

class ShellWorker:
    """A persistent shell process that runs commands one at a time."""

    def __init__(self, command: str = "/bin/bash", args=("-s",), cwd: str = "./",
                 uid: int = None, gid: int = None, max_history: int = 10):
        kwargs = {}
        if uid is not None and uid != os.getuid():
            kwargs["user"] = uid
        if gid is not None and gid != os.getgid():
            kwargs["group"] = gid

        self._proc = subprocess.Popen(
            [command, *args],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
            cwd=cwd,
            **kwargs,
        )
        self._marker = f"__overwatch_{ulid()}__"
        self.history: deque[CommandResult] = deque(maxlen=max_history)
        self.last_used = time.monotonic()

    @property
    def pid(self) -> int:
        return self._proc.pid

    def is_valid(self) -> bool:
        return self._proc.poll() is None

    def run(self, command: str) -> CommandResult:
        """Run one command and wait for its exit status."""
        if not self.is_valid():
            raise ExecutionFailure(command, "Shell worker is not running")

        script = f"{command}\n__rc=$?; printf '\\n%s %s\\n' {self._marker} \"$__rc\"\n"
        try:
            self._proc.stdin.write(script)
            self._proc.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            raise ExecutionFailure(command, f"Shell worker unavailable ({e})") from e

        lines = []
        while True:
            line = self._proc.stdout.readline()
            if not line:
                raise ExecutionFailure(command, "Shell worker exited", output="".join(lines))
            if line.startswith(self._marker + " "):
                exit_code = int(line.split()[1])
                break
            lines.append(line)

        output = "".join(lines)
        # printf above starts with a newline of its own
        if output.endswith("\n"):
            output = output[:-1]

        result = CommandResult(command, exit_code, output)
        self.history.append(result)
        self.last_used = time.monotonic()
        return result

    def close(self):
        if self._proc.stdin and not self._proc.stdin.closed:
            try:
                self._proc.stdin.close()
            except OSError:
                pass
        try:
            self._proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._proc.kill()
            self._proc.wait()
        if self._proc.stdout:
            self._proc.stdout.close()


# ---------------------------------------------------------------------------
# Shell pool: bounded set of workers with idle recycling
# ---------------------------------------------------------------------------

class ShellPool:
    """Bounded pool of ShellWorkers.

    At most ``size`` command batches run at once; further callers block until
    a worker is checked back in. Workers idle for longer than
    ``idle_timeout_ms`` are closed by a background reaper and respawned on
    demand.
    """

    def __init__(self, size: int = 1, idle_timeout_ms: int = 300000,
                 worker_factory=ShellWorker, **worker_kwargs):
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self._size = size
        self._idle_timeout = idle_timeout_ms / 1000.0
        self._worker_factory = worker_factory
        self._worker_kwargs = worker_kwargs
        self._slots = threading.BoundedSemaphore(size)
        self._idle: list = []
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._log = logging.getLogger("overwatch.shell")

        self._reaper = threading.Thread(target=self._reap_loop, name="shell-reaper", daemon=True)
        self._reaper.start()

    def execute(self, commands: list[str]) -> list[CommandResult]:
        """Run *commands* in order on one worker; stop at the first failure."""
        if self._closed.is_set():
            raise ExecutionFailure(commands[0] if commands else "", "Shell pool is closed")

        worker = self._checkout(commands[0] if commands else "")
        results = []
        try:
            for command in commands:
                self._log.debug("[pid %s] %s", worker.pid, command)
                result = worker.run(command)
                results.append(result)
                if result.exit_code != 0:
                    self._log.error("Shell command failed (rc=%d): %s", result.exit_code, result.output[:500])
                    raise ExecutionFailure(
                        command, f"Command exited {result.exit_code}",
                        exit_code=result.exit_code, output=result.output,
                    )
                if result.output:
                    self._log.debug("Shell output: %s", result.output[:500])
        finally:
            self._checkin(worker)
        return results

    def close(self):
        self._closed.set()
        with self._lock:
            idle, self._idle = self._idle, []
        for worker in idle:
            worker.close()
        self._log.info("Shell pool closed")

    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    def _checkout(self, command: str):
        self._slots.acquire()
        with self._lock:
            while self._idle:
                worker = self._idle.pop()
                if worker.is_valid():
                    return worker
                worker.close()
        try:
            worker = self._worker_factory(**self._worker_kwargs)
        except (OSError, subprocess.SubprocessError) as e:
            self._slots.release()
            raise ExecutionFailure(command, f"Could not start shell worker ({e})") from e
        self._log.info("Started shell worker pid %s", worker.pid)
        return worker

    def _checkin(self, worker):
        try:
            if self._closed.is_set() or not worker.is_valid():
                worker.close()
                return
            worker.last_used = time.monotonic()
            with self._lock:
                self._idle.append(worker)
        finally:
            self._slots.release()

    def _reap_loop(self):
        interval = max(min(self._idle_timeout / 2, 30.0), 0.05)
        while not self._closed.wait(interval):
            self.reap_idle()

    def reap_idle(self):
        """Close workers that have been idle past the timeout."""
        cutoff = time.monotonic() - self._idle_timeout
        with self._lock:
            expired = [w for w in self._idle if w.last_used <= cutoff]
            self._idle = [w for w in self._idle if w.last_used > cutoff]
        for worker in expired:
            self._log.debug("Recycling idle shell worker pid %s", worker.pid)
            worker.close()


# ---------------------------------------------------------------------------
# Pool handle: the one shared pool, built lazily, shared by reference
# ---------------------------------------------------------------------------

class ShellPoolHandle:
    """Lazily builds a single ShellPool and hands the same one to everyone.

    Shell reactors ``retain()`` the handle when constructed and ``release()``
    it on shutdown; the pool closes when the last reference goes away.
    """

    def __init__(self, settings: dict = None, factory=ShellPool):
        self._settings = dict(settings or {})
        self._factory = factory
        self._pool = None
        self._refs = 0
        self._lock = threading.Lock()
        self._log = logging.getLogger("overwatch.shell")

    @classmethod
    def from_config(cls, shell_cfg: dict, factory=ShellPool) -> "ShellPoolHandle":
        return cls({
            "size": shell_cfg.get("pool_size", 1),
            "idle_timeout_ms": shell_cfg.get("idle_timeout_ms", 300000),
            "command": shell_cfg.get("command", "/bin/bash"),
            "cwd": shell_cfg.get("cwd", "./"),
            "uid": shell_cfg.get("uid"),
            "gid": shell_cfg.get("gid"),
            "max_history": shell_cfg.get("max_history", 10),
        }, factory=factory)

    def instance(self):
        with self._lock:
            if self._pool is None:
                self._log.info("Creating shell pool (size=%s, uid=%s, gid=%s, cwd=%s)",
                               self._settings.get("size"), self._settings.get("uid"),
                               self._settings.get("gid"), self._settings.get("cwd"))
                self._pool = self._factory(**self._settings)
            return self._pool

    def retain(self) -> "ShellPoolHandle":
        with self._lock:
            self._refs += 1
        return self

    def release(self):
        with self._lock:
            self._refs -= 1
            if self._refs > 0 or self._pool is None:
                return
            pool, self._pool = self._pool, None
        pool.close()

    @property
    def references(self) -> int:
        return self._refs

    def execute(self, commands: list[str]) -> list[CommandResult]:
        return self.instance().execute(commands)
