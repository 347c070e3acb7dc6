"""
Resolves a single selector against the environment document.

A selector is either a jq program (`.baseUrl`, `.urls[0]`, `.i < 5`) run
against the environment, or an environment variable reference (`$HOME`)
read from this process, or from the remote host when `sshTo` is set.
"""
import os
import re
from typing import Any, Dict, Mapping, Optional

import jq
import structlog

from vimrest.rest_datatypes import SubstitutionError
from vimrest.rest_ssh import SessionPool, SshTarget
from vimrest.rest_store import EnvironmentStore

logger = structlog.get_logger(__name__)

ENV_VAR_RE = re.compile(r"^\$(.*)$")


class SelectorEvaluator:
    """Evaluates selectors; jq programs are compiled once per selector text."""

    def __init__(self, store: EnvironmentStore, sessions: Optional[SessionPool] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.store = store
        self.sessions = sessions
        self.environ = environ if environ is not None else os.environ
        self._programs: Dict[str, Any] = {}

    async def evaluate(self, selector: str) -> Any:
        """Returns the selected value. A null result is an error naming the selector."""
        m = ENV_VAR_RE.match(selector)
        if m:
            return await self.get_env_var(selector, m.group(1))
        return self.query(selector)

    def query(self, selector: str) -> Any:
        try:
            program = self._programs.get(selector)
            if program is None:
                program = jq.compile(selector)
                self._programs[selector] = program
            results = program.input_value(self.store.document).all()
        except ValueError as e:
            raise SubstitutionError(selector, str(e)) from e
        if len(results) > 1:
            raise SubstitutionError(selector, f"selector returned {len(results)} values at {selector}")
        # jq yields null for a missing key or an out-of-bounds index
        if not results or results[0] is None:
            raise SubstitutionError(selector)
        return results[0]

    async def get_env_var(self, selector: str, name: str) -> str:
        """Local variables default to ""; with sshTo set, the remote shell echoes it."""
        target = SshTarget.from_settings(self.store.ssh_settings())
        if target is not None and self.sessions is not None:
            async with self.sessions.lease(target) as session:
                out = await session.raw(f"echo {selector}")
            return out.replace("\n", "")
        return self.environ.get(name, "")
