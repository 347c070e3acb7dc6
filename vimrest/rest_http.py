import asyncio
import base64
import re
from typing import Any, List, Optional, Tuple

import structlog

from vimrest.rest_datatypes import Request, TransportError
from vimrest.rest_serialize import serialize, try_deserialize
from vimrest.rest_ssh import SessionPool, SshTarget
from vimrest.rest_store import EnvironmentStore
from vimrest.rest_template import TemplateEngine

logger = structlog.get_logger(__name__)

BASIC_AUTH_RE = re.compile(r"^(Authorization:\s+Basic\s+)([^:]+:[^:]+)$")


def handle_basic_auth(header: str) -> str:
    """
    Encodes the user:pass part of a literal `Authorization: Basic user:pass`
    header. Any other header is returned unchanged.
    """
    def _encode(m: re.Match) -> str:
        token = base64.b64encode(m.group(2).encode("utf-8")).decode("ascii")
        return f"{m.group(1)}{token}"
    return BASIC_AUTH_RE.sub(_encode, header, count=1)


def classify_response(stdout: str, stderr: str, *, verbose: bool = False) -> Tuple[str, Any]:
    """
    Splits raw client output into the rendered text and the captured value.

    - no header/body boundary -> (whole text, "")
    - body is not JSON        -> (headers + body, body text)
    - body is JSON            -> (headers + pretty JSON, parsed value)

    In verbose mode the diagnostic stream (stderr) stands in for the headers.
    """
    if verbose:
        headers, body = stderr, stdout
    else:
        headers, sep, body = stdout.partition("\n\n")
        if not sep:
            return stdout, ""
    is_json, value = try_deserialize(body)
    if not is_json:
        return f"{headers}\n\n{body}", body
    return f"{headers}\n\n{serialize(value, pretty=True)}", value


class CurlExecutor:
    """Runs the HTTP client locally, or on the remote host when sshTo is set."""

    def __init__(self, store: EnvironmentStore, sessions: Optional[SessionPool] = None,
                 program: str = "curl"):
        self.store = store
        self.sessions = sessions
        self.program = program

    async def run(self, args: List[str]) -> Tuple[str, str]:
        """Returns (stdout, stderr) with carriage returns removed."""
        target = SshTarget.from_settings(self.store.ssh_settings())
        if target is not None and self.sessions is not None:
            async with self.sessions.lease(target) as session:
                return await session.command(self.program, args)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.program, *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TransportError(f"{self.program}: command not found") from e
        except OSError as e:
            raise TransportError(str(e)) from e
        stdout, stderr = await proc.communicate()
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise TransportError(err)
        return (
            stdout.decode("utf-8", errors="replace").replace("\r", ""),
            err.replace("\r", ""),
        )


class HttpClient:
    """Builds the client argument list from a Request and runs it."""

    def __init__(self, templates: TemplateEngine, executor):
        self.templates = templates
        self.executor = executor

    @property
    def program(self) -> str:
        return getattr(self.executor, "program", "curl")

    async def build_args(self, request: Request, *, verbose: bool = False) -> List[str]:
        """Substitutes every field and assembles the arguments, program name excluded."""
        url = await self.templates.parse_selectors(request.url)
        headers = [handle_basic_auth(await self.templates.parse_selectors(h)) for h in request.headers]
        forms = [await self.templates.parse_selectors(f) for f in request.multipart_forms]
        data = None
        if request.data is not None:
            data = await self.templates.parse_selectors(request.data)

        args = ["-k"]
        if verbose:
            args.append("-v")
        elif not request.options:
            args.append("--include")
        args += [url, "-X", request.method]
        for header in headers:
            args += ["-H", header]
        if data is not None:
            args += ["-d", data]
        for form in forms:
            args += ["-F", form]
        args += list(request.options)
        return args

    async def make_request(self, request: Request, *, debug: bool = False,
                           verbose: bool = False) -> Tuple[str, Any]:
        """
        Returns (rendered response, captured value).
        In debug mode nothing is executed: the command line is returned with an empty value.
        """
        args = await self.build_args(request, verbose=verbose)
        logger.info("http.request", method=request.method, url=request.url, debug=debug, verbose=verbose)
        if debug:
            return " ".join([self.program, *args]), ""
        try:
            stdout, stderr = await self.executor.run(args)
        except TransportError as e:
            logger.warning("http.transport_failed", method=request.method, error=str(e))
            raise
        return classify_response(stdout, stderr, verbose=verbose)
