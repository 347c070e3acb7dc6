# rest_runtime.py

from dataclasses import dataclass
from typing import List, Literal, Optional

import structlog

from vimrest.rest_config import RestConfig
from vimrest.rest_http import CurlExecutor, HttpClient
from vimrest.rest_interpreter import Interpreter
from vimrest.rest_selector import SelectorEvaluator
from vimrest.rest_ssh import SessionPool
from vimrest.rest_store import EnvironmentStore, JsonFileBackend
from vimrest.rest_template import TemplateEngine

logger = structlog.get_logger(__name__)


def split_lines(source: str) -> List[str]:
    """Splits on line feeds only. A final line feed ends the last line rather than starting an empty one."""
    if source.endswith("\n"):
        source = source[:-1]
    return source.split("\n")


@dataclass
class ExecutionResult:
    """The structured result of running a document."""
    status: Literal['success', 'error']
    output: str = ""
    error_message: Optional[str] = None

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return f"InternalError: {self.error_message or 'Unknown error'}"


class RestRunner:
    """Wires the store, sessions, templates, HTTP client and interpreter together.

    Use as an async context manager so remote sessions are closed on every
    exit path.
    """

    def __init__(self, config: Optional[RestConfig] = None, *,
                 store: Optional[EnvironmentStore] = None,
                 executor=None,
                 sessions: Optional[SessionPool] = None):
        self.config = config or RestConfig()
        self.store = store if store is not None else EnvironmentStore(JsonFileBackend(self.config.env_file))
        self.sessions = sessions if sessions is not None else SessionPool(program=self.config.ssh_program)
        self.selectors = SelectorEvaluator(self.store, self.sessions)
        self.templates = TemplateEngine(
            self.selectors, self.store, max_passes=self.config.max_substitution_passes,
        )
        self.executor = executor if executor is not None else CurlExecutor(
            self.store, self.sessions, program=self.config.curl_program,
        )
        self.http = HttpClient(self.templates, self.executor)
        self.interpreter = Interpreter(self.templates, self.http, self.store)

    async def handle_document(self, source: str) -> ExecutionResult:
        """The main entry point: run every fold and return the rewritten document.

        Fold-level failures are part of the output; only unexpected exceptions
        produce an error result.
        """
        try:
            output = await self.interpreter.parse_input(split_lines(source))
        except Exception as e:
            logger.exception("runtime.failed")
            return ExecutionResult(status='error', error_message=str(e))
        return ExecutionResult(status='success', output=output)

    async def aclose(self) -> None:
        await self.sessions.close_all()

    async def __aenter__(self) -> "RestRunner":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
