# server_manager.py
import atexit
import contextlib
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections import deque

import requests

logger = logging.getLogger(__name__)


class ServerManager:
    """
    Run the FastAPI app under uvicorn as a child process.

    The child gets its own process group so stop() can take down uvicorn
    and anything it spawned (Playwright drivers included). stdout/stderr
    are kept in a bounded ring buffer for the UI's log tab.
    """

    def __init__(
        self,
        app_path: str = "portalscraper.web:server",
        host: str = "127.0.0.1",
        port: int = 5174,
        health_probe_path: str = "/api/health",
        log_max_lines: int = 2000,
        env: dict | None = None,
    ):
        self.app_path = app_path
        self.host = host
        self.port = port
        self.health_probe_path = health_probe_path
        self.env = {**os.environ, **(env or {})}

        self._proc: subprocess.Popen | None = None
        self._log_buf = deque(maxlen=log_max_lines)
        self._lock = threading.RLock()

        atexit.register(self.stop)

    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def command(self) -> list[str]:
        return [
            sys.executable,
            "-m",
            "uvicorn",
            self.app_path,
            "--host",
            self.host,
            "--port",
            str(self.port),
        ]

    def start(self, wait_ready_timeout: float = 20.0) -> None:
        with self._lock:
            if self.is_managed_running():
                return
            cmd = self.command()
            popen_kwargs = {
                "stdout": subprocess.PIPE,
                "stderr": subprocess.STDOUT,
                "bufsize": 1,
                "text": True,
                "env": self.env,
            }
            if os.name == "posix":
                popen_kwargs["start_new_session"] = True
            else:
                popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]

            self._append_log(f"$ {' '.join(cmd)}")
            self._proc = subprocess.Popen(cmd, **popen_kwargs)
            threading.Thread(
                target=self._read_stdout,
                args=(self._proc,),
                name="uvicorn-log-reader",
                daemon=True,
            ).start()

        self._wait_until_ready(wait_ready_timeout)

    def stop(self, kill_timeout: float = 5.0) -> None:
        with self._lock:
            proc, self._proc = self._proc, None
        if proc is None or proc.poll() is not None:
            return

        self._append_log("Stopping server...")
        self._signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=kill_timeout)
        except subprocess.TimeoutExpired:
            self._append_log("Force killing server...")
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))

    def is_managed_running(self) -> bool:
        with self._lock:
            return self._proc is not None and self._proc.poll() is None

    def is_http_up(self, timeout: float = 1.2) -> bool:
        try:
            r = requests.get(self.base_url() + self.health_probe_path, timeout=timeout)
        except requests.RequestException:
            return False
        return r.ok

    def ensure_running(self, wait_ready_timeout: float = 20.0) -> None:
        # An externally started server counts as running.
        if self.is_http_up():
            return
        if not self.is_managed_running():
            self.start(wait_ready_timeout=wait_ready_timeout)

    def tail_logs(self, n: int = 500) -> str:
        with self._lock:
            return "\n".join(list(self._log_buf)[-n:])

    def clear_logs(self) -> None:
        with self._lock:
            self._log_buf.clear()

    def _signal(self, proc: subprocess.Popen, sig: int) -> None:
        try:
            if os.name == "posix":
                os.killpg(os.getpgid(proc.pid), sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except (OSError, ProcessLookupError):
            logger.exception("Error signalling managed server (pid=%s)", proc.pid)

    def _read_stdout(self, proc: subprocess.Popen) -> None:
        if not proc.stdout:
            return
        for line in iter(proc.stdout.readline, ""):
            self._append_log(line.rstrip("\n"))
        with contextlib.suppress(OSError):
            proc.stdout.close()

    def _append_log(self, line: str) -> None:
        with self._lock:
            self._log_buf.append(f"[{time.strftime('%H:%M:%S')}] {line}")

    def _wait_until_ready(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not self.is_managed_running():
                self._append_log("Server exited before becoming ready.")
                return
            if self.is_http_up(timeout=0.8):
                self._append_log("Server is ready.")
                return
            time.sleep(0.25)
        self._append_log("Server did not become ready within timeout.")
