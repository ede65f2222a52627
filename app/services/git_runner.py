"""Run git as an asyncio subprocess with a hard wall-clock bound; scope SSH keys to a temp file."""

import asyncio
import logging
import os
import shlex
import signal
import tempfile
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager

logger = logging.getLogger(__name__)

GIT_BINARY = "git"


class GitCommandError(Exception):
    """git exited non-zero. message is git's stderr (may contain secrets; redact before surfacing)."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        self.message = message
        self.returncode = returncode
        super().__init__(message)


class GitTimeoutError(Exception):
    """git did not finish within the allotted time and was killed."""

    def __init__(self, message: str, timeout: float) -> None:
        self.message = message
        self.timeout = timeout
        super().__init__(message)


def build_git_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Process environment for git: never prompt for credentials on a terminal."""
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    if extra:
        env.update(extra)
    return env


def _kill_process_group(pid: int) -> None:
    try:
        os.killpg(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


async def run_git(
    args: Sequence[str],
    *,
    cwd: str | None = None,
    timeout: float,
    config: Sequence[tuple[str, str]] = (),
    env: Mapping[str, str] | None = None,
) -> str:
    """
    Run `git -c k=v ... <args>` and return stdout.

    Raises GitTimeoutError when timeout elapses (git and every process it spawned are killed,
    then git is reaped),
    GitCommandError on a non-zero exit.
    """
    cmd = [GIT_BINARY]
    for key, value in config:
        cmd.extend(["-c", f"{key}={value}"])
    cmd.extend(args)

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=build_git_env(env),
        # Own process group so a timeout also kills git-remote-https / ssh children.
        start_new_session=True,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_process_group(proc.pid)
        await proc.wait()
        raise GitTimeoutError(
            f"git {args[0] if args else ''} timed out after {timeout:g}s", timeout
        ) from None

    out = stdout.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        err = stderr.decode("utf-8", errors="replace").strip() or out.strip()
        raise GitCommandError(err or f"git exited with code {proc.returncode}", proc.returncode)
    return out


@contextmanager
def ephemeral_ssh_key(private_key: str) -> Iterator[str]:
    """
    Write private_key to a uniquely named 0600 temp file and yield its path.

    The file is removed on every exit path, including exceptions and cancellation.
    """
    fd, path = tempfile.mkstemp(prefix="ssh-key-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            # OpenSSH rejects keys without a trailing newline.
            fh.write(private_key if private_key.endswith("\n") else private_key + "\n")
        os.chmod(path, 0o600)
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete SSH key file %s: %s", path, e)


def build_ssh_command(key_path: str, connect_timeout: int = 10) -> str:
    """core.sshCommand value: use only the given key, no host-key prompts, no interactive auth."""
    return " ".join(
        [
            "ssh",
            "-i",
            shlex.quote(key_path),
            "-o StrictHostKeyChecking=no",
            "-o UserKnownHostsFile=/dev/null",
            f"-o ConnectTimeout={int(connect_timeout)}",
            "-o BatchMode=yes",
            "-o IdentitiesOnly=yes",
        ]
    )
