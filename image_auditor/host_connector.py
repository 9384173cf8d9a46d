"""Host connector - runs commands and copies files locally or over SSH."""
import os
import random
import shlex
import shutil
import subprocess
import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from .models import Host, HostKind

LOCAL_ADDRESS = "localhost"

# Fixed PATH for every child process so docker/ssh/trivy resolve to system binaries.
SAFE_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

DEFAULT_CONNECT_TIMEOUT = 5


class HostConnector:
    """Dispatches commands to the local machine or to a remote host via ssh."""

    def __init__(self, connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
                 ssh_options: Optional[list] = None, debug: bool = False):
        self.connect_timeout = connect_timeout
        self.ssh_options = list(ssh_options or [])
        self.debug = debug
        self._env = dict(os.environ, PATH=SAFE_PATH)

    # ------------------------------------------------------------------ public

    def classify(self, address: str) -> Host:
        if address == LOCAL_ADDRESS:
            return Host(address=address, kind=HostKind.LOCAL, reachable=True)
        host = Host(address=address, kind=HostKind.REMOTE, reachable=False)
        host.reachable = self._can_connect(address)
        return host

    def run(self, host: Host, argv: list) -> Tuple[str, int]:
        """Run ``argv`` on the host; returns (stdout, returncode)."""
        if host.is_local:
            cmd = list(argv)
        else:
            cmd = self._ssh_command(host.address, shlex.join(argv), no_stdin=True)
        return self._exec(cmd)

    def copy_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        if host.is_local:
            try:
                shutil.copyfile(local_path, remote_path)
                return True
            except OSError as exc:
                self._warn(f"copy {local_path} -> {remote_path} failed: {exc}")
                return False

        with open(local_path, "rb") as f:
            payload = f.read()
        cmd = self._ssh_command(host.address, f"cat > {shlex.quote(remote_path)}")
        _, rc = self._exec(cmd, input_bytes=payload)
        return rc == 0

    @contextmanager
    def remote_copy(self, host: Host, local_path: str) -> Iterator[str]:
        """Yield a path to ``local_path`` that commands on ``host`` can read.

        Remote copies live in /tmp and are removed on exit, even on error.
        """
        if host.is_local:
            yield local_path
            return

        remote_path = f"/tmp/trivy_html_{int(time.time())}_{random.randint(0, 32767)}.tpl"
        try:
            if not self.copy_file(host, local_path, remote_path):
                self._warn(f"{host.address}: could not copy {local_path} to {remote_path}")
            yield remote_path
        finally:
            self.run(host, ["rm", "-f", remote_path])

    # ----------------------------------------------------------------- helpers

    def _ssh_command(self, address: str, command: str, no_stdin: bool = False) -> list:
        cmd = ["ssh"]
        if no_stdin:
            cmd.append("-n")
        cmd.extend(self.ssh_options)
        cmd.extend([address, command])
        return cmd

    def _can_connect(self, address: str) -> bool:
        cmd = ["ssh", "-n", "-o", "BatchMode=yes",
               "-o", f"ConnectTimeout={self.connect_timeout}"]
        cmd.extend(self.ssh_options)
        cmd.extend([address, "echo ok"])
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, env=self._env,
                                  timeout=self.connect_timeout + 5)
            return proc.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    def _exec(self, cmd: list, input_bytes: Optional[bytes] = None) -> Tuple[str, int]:
        if self.debug:
            print(f"      $ {shlex.join(cmd)}", file=sys.stderr)
        try:
            proc = subprocess.run(cmd, input=input_bytes, capture_output=True, env=self._env)
        except FileNotFoundError:
            self._warn(f"not found: {cmd[0]}")
            return "", -1
        except OSError as exc:
            self._warn(f"{cmd[0]} failed: {exc}")
            return "", -1
        stdout = (proc.stdout or b"").decode("utf-8", errors="replace")
        return stdout, proc.returncode

    @staticmethod
    def _warn(message: str) -> None:
        print(f"[WARN] {message}", file=sys.stderr)
