"""
While loops over fold blocks.

    ###{ while {{.i < 5}}
    @i = {{.i + 1}}
    ###} endwhile

The whole block is captured as text and handed back to the interpreter once
per iteration while the condition substitutes to `true`. Only the last
iteration's rendering is kept.
"""
import re
from typing import Iterator, List, Tuple

import structlog

from vimrest.rest_datatypes import (
    END_FOLD, STALE_DIVIDER, START_FOLD_RE, Fold, RestError, ensure_newline, format_error,
)

logger = structlog.get_logger(__name__)

WHILE_START_RE = re.compile(r"^###\{\s*while\s+(.*?)(?: ?executed(?: \((?:ERROR|SUCCESS)\))?)?$")
WHILE_END_RE = re.compile(r"^###\}\s*endwhile\b")


class WhileLoop:
    def __init__(self, condition: str, block: List[str]):
        self.condition = condition
        self.block = block
        self.output = ""
        self.error = False
        self.iterations = 0

    @classmethod
    def collect(cls, first_line: str, lines: Iterator[str]) -> "WhileLoop":
        """Reads lines up to the matching `###} endwhile`, counting nested loops."""
        m = WHILE_START_RE.match(first_line)
        condition = m.group(1) if m else ""
        block = [first_line]
        depth = 1
        for raw in lines:
            line = raw.rstrip()
            block.append(line)
            if WHILE_START_RE.match(line):
                depth += 1
            elif WHILE_END_RE.match(line):
                depth -= 1
                if depth == 0:
                    break
        return cls(condition, block)

    async def run(self, interpreter) -> None:
        while True:
            try:
                verdict = await interpreter.templates.parse_selectors(self.condition)
            except RestError as e:
                self.error = True
                self.output = self._synthetic(f"{format_error(e)}\n")
                logger.warning("while.condition_failed", condition=self.condition, error=str(e))
                return
            if verdict != "true":
                break
            self.output = await interpreter.parse_input(iter(self.block), ignore_first_while=True)
            self.iterations += 1
            first = self.output.split("\n", 1)[0]
            if first.endswith("executed (ERROR)"):
                self.error = True
                break
        logger.debug("while.finished", condition=self.condition, iterations=self.iterations, error=self.error)
        if self.iterations == 0:
            self.output = self._synthetic("")

    def _body(self) -> Tuple[List[str], str]:
        """Block lines between the markers, without the loop's own stale output."""
        has_end = len(self.block) > 1 and WHILE_END_RE.match(self.block[-1]) is not None
        inner = self.block[1:-1] if has_end else self.block[1:]
        end_marker = self.block[-1] if has_end else ""
        body = []
        depth = 0
        for line in inner:
            if START_FOLD_RE.match(line):
                depth += 1
            elif line.startswith(END_FOLD):
                depth -= 1
            elif depth == 0 and line.startswith(STALE_DIVIDER):
                break
            body.append(line)
        return body, end_marker

    def _synthetic(self, output: str) -> str:
        """A top-level rendering for a loop that never ran its block."""
        m = START_FOLD_RE.match(self.block[0])
        fold = Fold.open(m.group(1), m.group(2)) if m else Fold.open(None, None)
        body, end_marker = self._body()
        for line in body:
            fold.feed_raw(line)
        fold.end_marker = end_marker
        fold.output = output
        fold.error = self.error
        return fold.compile_return()

    def compile_for_parent(self, parent_output: str) -> Tuple[str, str]:
        """Reshapes the top-level rendering into a nested (input, output) pair."""
        lines = self.output.split("\n")
        header = next((i for i, line in enumerate(lines) if line.startswith(STALE_DIVIDER)), None)
        end_marker = lines[-1]
        if header is None:
            return ensure_newline(self.output), ""
        ret = "".join(f"{line}\n" for line in lines[:header]) + f"{end_marker}\n"
        out = ""
        if parent_output and not parent_output.endswith("\n"):
            out += "\n"
        out += "###" + lines[header][len(STALE_DIVIDER):] + "\n"
        out += "".join(f"{line}\n" for line in lines[header + 1:-1])
        out += "###\n"
        return ret, out
