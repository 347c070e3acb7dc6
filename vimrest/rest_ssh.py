"""
Remote execution over multiplexed OpenSSH connections.

One control master is kept per destination. A session is leased for the
duration of a single remote command and handed back afterwards, so a
destination never has two commands in flight.
"""
from __future__ import annotations

import asyncio
import contextlib
import os
import shlex
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from vimrest.rest_datatypes import TransportError
from vimrest.rest_store import SSH_CONFIG, SSH_KEY, SSH_PORT, SSH_TO

logger = structlog.get_logger(__name__)


def _as_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace").replace("\r", "")


@dataclass(frozen=True)
class SshTarget:
    destination: str
    config_file: Optional[str] = None
    key_file: Optional[str] = None
    port: Optional[int] = None

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> Optional["SshTarget"]:
        """Builds a target from the reserved environment keys, None when sshTo is unset."""
        if SSH_TO not in settings:
            return None
        values: Dict[str, Any] = {}
        for key in (SSH_TO, SSH_CONFIG, SSH_KEY):
            if key in settings:
                if not isinstance(settings[key], str):
                    raise TransportError(f"{key} was not a string")
                values[key] = settings[key]
        port = settings.get(SSH_PORT)
        if port is not None:
            # bool is a subclass of int, so check it first
            if isinstance(port, bool) or not isinstance(port, (int, str)):
                raise TransportError(f"{SSH_PORT} was not a number")
            try:
                port = int(port)
            except ValueError as e:
                raise TransportError(f"{SSH_PORT} was not a number") from e
        return cls(
            destination=values[SSH_TO],
            config_file=values.get(SSH_CONFIG),
            key_file=values.get(SSH_KEY),
            port=port,
        )

    def connect_options(self) -> List[str]:
        args: List[str] = []
        if self.config_file:
            args += ["-F", os.path.expanduser(self.config_file)]
        if self.key_file:
            args += ["-i", os.path.expanduser(self.key_file)]
        if self.port is not None:
            args += ["-p", str(self.port)]
        return args


class SshSession:
    """A control-master connection to one destination."""

    def __init__(self, target: SshTarget, control_dir: str, program: str = "ssh"):
        self.target = target
        self.program = program
        self.control_dir = control_dir
        self.control_path = os.path.join(control_dir, "master")
        self.closed = False

    @classmethod
    async def connect(cls, target: SshTarget, program: str = "ssh") -> "SshSession":
        control_dir = tempfile.mkdtemp(prefix="vim-rest-ssh-")
        session = cls(target, control_dir, program)
        log_path = os.path.join(control_dir, "master.log")
        args = [
            "-E", log_path,
            "-S", session.control_path,
            "-M", "-f", "-N",
            "-o", "ControlPersist=yes",
            "-o", "BatchMode=yes",
            *target.connect_options(),
            target.destination,
        ]
        logger.info("ssh.connect", destination=target.destination)
        try:
            # The backgrounded master keeps inherited pipes open, so nothing is piped here
            proc = await asyncio.create_subprocess_exec(
                program, *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            shutil.rmtree(control_dir, ignore_errors=True)
            raise TransportError(f"{program}: command not found") from e
        except OSError as e:
            shutil.rmtree(control_dir, ignore_errors=True)
            raise TransportError(str(e)) from e
        status = await proc.wait()
        if status != 0:
            try:
                with open(log_path, "r", encoding="utf-8", errors="replace") as f:
                    message = f.read()
            except OSError:
                message = f"{program} exited with status {status}"
            shutil.rmtree(control_dir, ignore_errors=True)
            raise TransportError(message)
        return session

    async def _exec(self, remote_command: str) -> Tuple[str, str]:
        if self.closed:
            raise TransportError(f"session to {self.target.destination} is closed")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.program, "-S", self.control_path, self.target.destination, remote_command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TransportError(f"{self.program}: command not found") from e
        except OSError as e:
            raise TransportError(str(e)) from e
        stdout, stderr = await proc.communicate()
        err = _as_text(stderr)
        if proc.returncode != 0:
            raise TransportError(err)
        return _as_text(stdout), err

    async def command(self, program: str, args: List[str]) -> Tuple[str, str]:
        """Runs `program args...` remotely; arguments are quoted for the remote shell."""
        return await self._exec(shlex.join([program, *args]))

    async def raw(self, command_line: str) -> str:
        """Runs an unquoted command line so the remote shell expands it."""
        out, _ = await self._exec(command_line)
        return out

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            proc = await asyncio.create_subprocess_exec(
                self.program, "-S", self.control_path, "-O", "exit", self.target.destination,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await proc.wait()
        except OSError:
            logger.warning("ssh.close_failed", destination=self.target.destination)
        finally:
            shutil.rmtree(self.control_dir, ignore_errors=True)
        logger.info("ssh.closed", destination=self.target.destination)


Connector = Callable[[SshTarget], Awaitable[Any]]


class SessionPool:
    """Open sessions keyed by destination.

    Invariant: a destination is never leased twice at the same time. A
    session whose command fails is closed instead of being handed back.
    """

    def __init__(self, connect: Optional[Connector] = None, program: str = "ssh"):
        self.program = program
        self._connect = connect or (lambda target: SshSession.connect(target, program))
        self._sessions: Dict[str, Any] = {}
        self._leased: set[str] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def is_leased(self, destination: str) -> bool:
        return destination in self._leased

    @contextlib.asynccontextmanager
    async def lease(self, target: SshTarget):
        key = target.destination
        assert key not in self._leased, f"session to {key} is already leased"
        session = self._sessions.pop(key, None)
        if session is None:
            session = await self._connect(target)
        self._leased.add(key)
        logger.debug("ssh.lease", destination=key)
        try:
            yield session
        except BaseException:
            self._leased.discard(key)
            await session.close()
            raise
        self._leased.discard(key)
        self._sessions[key] = session

    async def close_all(self) -> None:
        """Closes every pooled session exactly once."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()

    async def __aenter__(self) -> "SessionPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()
