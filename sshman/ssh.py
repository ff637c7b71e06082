from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from .errors import ConnectionFailedError, IncompleteRecordError, MissingCapabilityError
from .models import AuthMethod, Server

log = logging.getLogger(__name__)

PROBE_COMMAND = "echo 'Connection successful'"
# Extra time on top of ConnectTimeout for auth and the probe command itself
TIMEOUT_GRACE = 5.0


@dataclass
class ProbeResult:
    ok: bool
    exit_code: int
    output: str
    elapsed_ms: float


def has_ssh(which=shutil.which) -> bool:
    """Check if SSH client is available."""
    return which("ssh") is not None


def has_sshpass(which=shutil.which) -> bool:
    return which("sshpass") is not None


def build_command(server: Server, timeout: int = 10, remote: str | None = None, tty: bool = False) -> list[str]:
    """Build the ssh argv for a server. Password records are not handled here."""
    cmd = [
        "ssh",
        "-o",
        f"ConnectTimeout={timeout}",
        # Host keys are not verified; first connections must not prompt
        "-o",
        "StrictHostKeyChecking=no",
        "-p",
        str(server.port),
    ]
    if tty:
        cmd.append("-t")
    if server.auth_method is AuthMethod.KEY:
        cmd += ["-i", str(Path(server.key_path).expanduser())]
    cmd.append(f"{server.user}@{server.host}")
    if remote:
        cmd.append(remote)
    return cmd


def _with_password(cmd: list[str], server: Server) -> tuple[list[str], dict[str, str]]:
    env = dict(os.environ)
    env["SSHPASS"] = server.password
    return ["sshpass", "-e", *cmd], env


def probe_connection(
    server: Server,
    *,
    timeout: int = 10,
    verbose: bool = False,
    runner=subprocess.run,
    which=shutil.which,
) -> ProbeResult:
    """Run a one-shot ``ssh`` to the server and check it exits cleanly.

    Raises IncompleteRecordError when host/user or credentials are missing,
    MissingCapabilityError when a password record cannot be tested because
    sshpass is absent, and ConnectionFailedError on non-zero exit or timeout.
    Captured output is attached to the error only when ``verbose`` is set.
    """
    if not server.is_complete:
        raise IncompleteRecordError(f"Server '{server.name}' not found or incomplete configuration")

    method = server.auth_method
    if method is None:
        raise IncompleteRecordError(f"Server '{server.name}' has neither a key path nor a password")

    cmd = build_command(server, timeout=timeout, remote=PROBE_COMMAND)
    env = None
    if method is AuthMethod.KEY:
        # Never fall back to an interactive password prompt
        cmd[1:1] = ["-o", "BatchMode=yes"]
    else:
        if not has_sshpass(which):
            raise MissingCapabilityError("sshpass not installed, cannot test password authentication")
        cmd, env = _with_password(cmd, server)

    log.debug("Probe: %s", shlex.join(cmd))
    start = time.perf_counter()
    try:
        proc = runner(cmd, capture_output=True, text=True, timeout=timeout + TIMEOUT_GRACE, env=env)
    except subprocess.TimeoutExpired as e:
        output = _text(e.stdout) + _text(e.stderr)
        raise ConnectionFailedError("Connection timed out", details=output if verbose else None) from e
    except OSError as e:
        raise ConnectionFailedError(f"SSH execution error: {e}", details=str(e) if verbose else None) from e
    elapsed = (time.perf_counter() - start) * 1000

    output = (proc.stdout or "") + (proc.stderr or "")
    if proc.returncode != 0:
        raise ConnectionFailedError(
            "Connection failed",
            exit_code=proc.returncode,
            details=output if verbose else None,
        )
    return ProbeResult(ok=True, exit_code=0, output=output, elapsed_ms=elapsed)


def _text(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def connect(server: Server, *, runner=subprocess.call, which=shutil.which) -> int:
    """Open an interactive session. Returns the ssh exit code."""
    if not has_ssh(which):
        return 127

    remote = None
    if server.default_dir:
        remote = f"cd {shlex.quote(server.default_dir)} && exec $SHELL -l"
    cmd = build_command(server, remote=remote, tty=bool(remote))
    env = None
    if server.auth_method is AuthMethod.PASSWORD and has_sshpass(which):
        cmd, env = _with_password(cmd, server)

    log.debug("Connect: %s", shlex.join(cmd))
    try:
        return runner(cmd, env=env)  # noqa: S603
    except KeyboardInterrupt:
        return 130
    except OSError as e:
        log.error("SSH execution error: %s", e)
        return 1
