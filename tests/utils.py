# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Common utilities for tufclient tests"""

import argparse
import errno
import logging
import os
import queue
import socket
import subprocess
import sys
import threading
import time
import unittest
from typing import IO, Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# May be used to reliably read other files in tests dir regardless of cwd
TESTS_DIR = os.path.dirname(os.path.realpath(__file__))

# Used when forming URLs on the client side
TEST_HOST_ADDRESS = "127.0.0.1"

# Expected first stdout line of a test server
PORT_MESSAGE = "bind succeeded, server port is: "

DataSet = Dict[str, Any]


def run_sub_tests_with_dataset(
    dataset: DataSet,
) -> Callable[[Callable], Callable]:
    """Decorator running the test once per dataset item, each in its own
    unittest subTest"""

    def real_decorator(
        function: Callable[[unittest.TestCase, Any], None],
    ) -> Callable[[unittest.TestCase], None]:
        def wrapper(test_cls: unittest.TestCase) -> None:
            for case, data in dataset.items():
                with test_cls.subTest(case=case):
                    test_cls.case_name = case.replace(" ", "_")
                    function(test_cls, data)

        return wrapper

    return real_decorator


class TestServerProcessError(Exception):
    """The test server process did not start as expected."""


def wait_for_server(host: str, port: int, timeout: int = 10) -> None:
    """Block until host:port accepts connections.

    Raises TimeoutError if that does not happen within timeout seconds.
    """
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError(f"Could not connect to {host}:{port}")
        try:
            with socket.create_connection((host, port), timeout=remaining):
                return
        except socket.timeout:
            continue
        except OSError as e:
            # ECONNREFUSED is expected while the server is not started
            if e.errno != errno.ECONNREFUSED:
                logger.warning("Unexpected error waiting for server: %s", e)
            time.sleep(0.01)


def configure_test_logging(argv: List[str]) -> None:
    """Configure logger level for a certain test file"""
    # parse arguments but only handle '-v': argv may contain
    # other things meant for unittest argument parser
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args, _ = parser.parse_known_args(argv)

    if args.verbose <= 1:
        # 0 and 1 both mean ERROR: this way '-v' makes unittest print test
        # names without increasing log level
        loglevel = logging.ERROR
    elif args.verbose == 2:
        loglevel = logging.WARNING
    elif args.verbose == 3:
        loglevel = logging.INFO
    else:
        loglevel = logging.DEBUG

    logging.basicConfig(level=loglevel)


class TestServerProcess:
    """Run a test server in a child process.

    The server must print ``PORT_MESSAGE`` followed by its port as the first
    line of output. Later output is collected from a reader thread and
    logged on ``clean()``.

    Args:
        log: Logger used for server output.
        server: Path to the server script.
        timeout: Seconds to wait for the server to start.
        extra_cmd_args: Arguments appended to the server command line.
    """

    def __init__(
        self,
        log: logging.Logger,
        server: str = os.path.join(TESTS_DIR, "simple_server.py"),
        timeout: int = 10,
        extra_cmd_args: Optional[List[str]] = None,
    ):
        self.server = server
        self._logger = log
        self._output: List[str] = []
        self._log_queue: queue.Queue = queue.Queue()
        self.port = -1

        # "-u" keeps the port message from being stuck in a buffer
        command = [sys.executable, "-u", server, *(extra_cmd_args or [])]
        self._process = subprocess.Popen(
            command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT
        )
        reader = threading.Thread(
            target=self._read_output,
            args=(self._process.stdout, self._log_queue),
            daemon=True,
        )
        reader.start()

        try:
            self._wait_for_port(timeout)
            wait_for_server("localhost", self.port, timeout)
        except Exception:
            self.clean()
            raise

        self._logger.info("%s serving on %d", self.server, self.port)

    @staticmethod
    def _read_output(stream: IO, line_queue: queue.Queue) -> None:
        while True:
            line = stream.readline().decode("utf-8")
            line_queue.put(line)
            if len(line) == 0:
                # server process has exited
                stream.close()
                break

    def _wait_for_port(self, timeout: int) -> None:
        try:
            line = self._log_queue.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"{self.server} did not start") from e

        if len(line) == 0:
            raise TestServerProcessError(
                f"{self.server} exited with code {self._process.poll()}"
            )
        if not line.startswith(PORT_MESSAGE):
            self._output.append(line)
            raise TestServerProcessError(
                f"{self.server} did not print the port message first"
            )
        self.port = int(line[len(PORT_MESSAGE) :])

    def flush_log(self) -> None:
        """Log the server output collected so far."""
        while True:
            try:
                line = self._log_queue.get(block=False)
            except queue.Empty:
                break
            if len(line) > 0:
                self._output.append(line)

        if self._output:
            message = [f"Test server ({self.server}) output:\n", *self._output]
            self._logger.info("| ".join(message))
            self._output = []

    def is_process_running(self) -> bool:
        return self._process.poll() is None

    def clean(self) -> None:
        """Log pending output and kill the server process."""
        self.flush_log()
        if self.is_process_running():
            self._logger.info("Server process %d terminated", self._process.pid)
            self._process.kill()
            self._process.wait()


def cleanup_dir(path: str) -> None:
    """Delete all files inside a directory"""
    for filename in os.listdir(path):
        os.remove(os.path.join(path, filename))
