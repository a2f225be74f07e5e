#!/usr/bin/env python3
"""
Start the Apply Trace server for local development.
"""
import argparse
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path

import requests

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class DevServer:
    def __init__(self, host: str = "0.0.0.0", port: int = 8000, reload: bool = True):
        self.process = None
        self.project_root = Path(__file__).parent
        self.host = host
        self.port = port
        self.reload = reload

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.port}"

    def check_prerequisites(self):
        """Check that the package and a configuration file are in place."""
        if not (self.project_root / "apply_trace_app" / "backend" / "main.py").exists():
            logger.error("Backend main.py not found")
            return False

        if not (self.project_root / ".env").exists():
            logger.warning("No .env file found; copy .env.example and fill in the Google and Gemini settings")

        return True

    def setup_environment(self):
        """Development defaults; values already set in the environment win."""
        env = os.environ.copy()
        for key, value in {
            "ENVIRONMENT": "development",
            "SITE_URL": self.base_url,
            "API_DOCS_ENABLED": "true",
            "LOG_LEVEL": "INFO",
        }.items():
            env.setdefault(key, value)
        return env

    def start(self, env):
        logger.info("Starting server...")
        command = [
            sys.executable, "-m", "uvicorn", "apply_trace_app.backend.main:app",
            "--host", self.host, "--port", str(self.port),
        ]
        if self.reload:
            command.append("--reload")

        try:
            self.process = subprocess.Popen(
                command,
                cwd=self.project_root,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            logger.error("Failed to start server: %s", e)
            return False

        def read_output():
            for line in iter(self.process.stdout.readline, ""):
                print(f"[SERVER] {line.rstrip()}")

        threading.Thread(target=read_output, daemon=True).start()
        return True

    def wait_until_healthy(self, timeout: float = 30.0):
        """Poll the health endpoint until the server answers."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.process.poll() is not None:
                logger.error("Server exited with code %s", self.process.returncode)
                return False
            try:
                response = requests.get(f"{self.base_url}/api/health", timeout=2)
                if response.status_code == 200:
                    logger.info("Apply Trace is ready: %s", self.base_url)
                    logger.info("API docs: %s/docs", self.base_url)
                    return True
            except requests.RequestException:
                pass
            time.sleep(1)

        logger.warning("Server did not become healthy within %.0fs", timeout)
        return False

    def cleanup(self):
        if self.process and self.process.poll() is None:
            logger.info("Shutting down server...")
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()

    def run(self):
        if not self.check_prerequisites():
            return False
        if not self.start(self.setup_environment()):
            return False
        if not self.wait_until_healthy():
            self.cleanup()
            return False

        try:
            self.process.wait()
        except KeyboardInterrupt:
            pass
        finally:
            self.cleanup()
        return True


def main():
    parser = argparse.ArgumentParser(description="Run Apply Trace locally")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload")
    args = parser.parse_args()

    server = DevServer(host=args.host, port=args.port, reload=not args.no_reload)
    signal.signal(signal.SIGTERM, lambda signum, frame: (server.cleanup(), sys.exit(0)))
    sys.exit(0 if server.run() else 1)


if __name__ == "__main__":
    main()
