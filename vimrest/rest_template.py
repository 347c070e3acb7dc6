"""
`{{...}}` substitution and variable assignment.

Only innermost spans (no braces inside) are matched. After one pass the
result is scanned again, so `{{.obj.{{.arr[0]}}}}` first resolves the inner
span and then the span it produced. The loop runs until no span is left:
a value that itself contains `{{...}}` keeps it going, and without
`max_passes` it never stops.
"""
import re
from typing import Optional

import structlog

from vimrest.rest_datatypes import ParseError, SubstitutionError
from vimrest.rest_selector import SelectorEvaluator
from vimrest.rest_serialize import deserialize, stringify
from vimrest.rest_store import EnvironmentStore

logger = structlog.get_logger(__name__)

SELECTOR_RE = re.compile(r"\{\{([^{}]+)\}\}")
ASSIGN_RE = re.compile(r"@([^ ]+)\s*=\s*(.+)")


class TemplateEngine:
    def __init__(self, selectors: SelectorEvaluator, store: EnvironmentStore,
                 max_passes: Optional[int] = None):
        self.selectors = selectors
        self.store = store
        self.max_passes = max_passes

    async def _substitute_once(self, text: str) -> str:
        parts = []
        pos = 0
        for m in SELECTOR_RE.finditer(text):
            value = await self.selectors.evaluate(m.group(1))
            parts.append(text[pos:m.start()])
            parts.append(stringify(value))
            pos = m.end()
        parts.append(text[pos:])
        return "".join(parts)

    async def parse_selectors(self, text: str) -> str:
        """Replaces every selector span until none is left."""
        passes = 0
        while SELECTOR_RE.search(text):
            if self.max_passes is not None and passes >= self.max_passes:
                raise SubstitutionError(text, f"substitution did not settle after {passes} passes: {text}")
            text = await self._substitute_once(text)
            passes += 1
        if passes:
            logger.debug("template.substituted", passes=passes)
        return text

    async def define_var(self, var_line: str) -> str:
        """Parses `@name = value`, stores the JSON value and returns the echoed line."""
        m = ASSIGN_RE.search(var_line)
        if not m:
            raise ParseError(f"cannot parse line: {var_line}")
        name, raw_value = m.group(1), m.group(2)
        value = await self.parse_selectors(raw_value)
        self.store.set_var(name, deserialize(value))
        return f"@{name} = {value}"
