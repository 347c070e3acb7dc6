"""
The fold interpreter.

Reads the document line by line, keeps an explicit stack of open folds,
runs their variable assignments and requests, and writes the document back
with each fold's result rendered after its input.
"""
from typing import Iterable, Iterator, List

import structlog

from vimrest.rest_datatypes import (
    END_FOLD, STALE_DIVIDER, START_FOLD_RE,
    Fold, RestError, ensure_newline, format_error, match_method,
)
from vimrest.rest_http import HttpClient
from vimrest.rest_store import EnvironmentStore
from vimrest.rest_template import TemplateEngine
from vimrest.rest_while import WHILE_START_RE, WhileLoop

logger = structlog.get_logger(__name__)


class Interpreter:
    """Executes folds; one instance serves a whole run, including loop iterations."""

    def __init__(self, templates: TemplateEngine, http: HttpClient, store: EnvironmentStore):
        self.templates = templates
        self.http = http
        self.store = store

    async def parse_input(self, lines: Iterable[str], ignore_first_while: bool = False) -> str:
        """
        Processes every line and returns the rewritten document.

        Text outside folds passes through unchanged. When `ignore_first_while`
        is set, the first while-start line is read as a plain fold start; the
        while loop uses this to run its own block.
        """
        source: Iterator[str] = iter(lines)
        out = ""
        stack: List[Fold] = []
        first_while = True

        for raw in source:
            line = raw.rstrip()

            start_while = WHILE_START_RE.match(line) is not None
            if start_while and not (ignore_first_while and first_while):
                first_while = False
                loop = WhileLoop.collect(line, source)
                await loop.run(self)
                if stack:
                    fold = stack[-1]
                    if not fold.made_request:
                        await self.make_request(fold)
                    nest_ret, nest_out = loop.compile_for_parent(fold.output)
                    fold.ret += nest_ret
                    fold.output += nest_out
                    fold.error = fold.error or loop.error
                else:
                    if out:
                        out += "\n"
                    out += loop.output
                continue
            elif start_while:
                first_while = False

            m = START_FOLD_RE.match(line)
            if m:
                if stack:
                    # the parent's request runs before any nested fold
                    parent = stack[-1]
                    if not parent.made_request:
                        await self.make_request(parent)
                elif out:
                    # previous end marker doesn't end with a newline
                    out += "\n"
                fold = Fold.open(m.group(1), m.group(2), depth=len(stack))
                stack.append(fold)
                logger.debug("interpreter.fold.opened", title=fold.title.strip(), depth=fold.depth)
                continue

            if not stack:
                if out:
                    out += "\n"
                out += line
                continue

            fold = stack[-1]
            if line.startswith(STALE_DIVIDER):
                fold.old_output_started = True
                continue
            if line.startswith(END_FOLD):
                fold.end_marker = line
                out += await self._close(stack)
                continue
            if fold.old_output_started:
                continue

            fold.feed_raw(line)
            if fold.error:
                continue
            await self._interpret(fold, line)

        # End of input: close whatever is still open with default end markers
        while stack:
            out += await self._close(stack)
        return out

    async def _close(self, stack: List[Fold]) -> str:
        """Pops the innermost fold; merges it into its parent or renders it."""
        fold = stack.pop()
        if not fold.made_request:
            await self.make_request(fold)
        logger.debug("interpreter.fold.closed", title=fold.title.strip(), depth=fold.depth, error=fold.error)
        if stack:
            parent = stack[-1]
            nest_ret, nest_out = fold.compile_for_parent(parent.output)
            parent.ret += nest_ret
            parent.output += nest_out
            parent.error = parent.error or fold.error
            return ""
        return fold.compile_return()

    async def _interpret(self, fold: Fold, line: str) -> None:
        if line.startswith("@"):
            try:
                res_line = await self.templates.define_var(line)
            except RestError as e:
                fold.error = True
                res_line = format_error(e)
            fold.output = ensure_newline(fold.output) + res_line + "\n"
        elif line.startswith("#"):
            fold.parse_flags(line)
        elif not fold.request_started and not line:
            # blank lines before the request appear in the output
            fold.output += "\n"
        elif not fold.request_started:
            method, sep, url = line.partition(" ")
            if not sep:
                fold.error = True
                fold.output = ensure_newline(fold.output) + f"Could not parse line: {line}\n"
            else:
                fold.made_request = False
                fold.method = match_method(method)
                fold.url = url
            fold.request_started = True
        elif not fold.request_body_started and line:
            fold.headers.append(line)
        elif not fold.request_body_started:
            fold.request_body_started = True
        else:
            fold.request_body += line

    async def make_request(self, fold: Fold) -> None:
        """Issues the fold's request once its inputs are complete."""
        if not fold.request_started or fold.error:
            return
        fold.made_request = True
        try:
            response, value = await self.http.make_request(
                fold.build_request(), debug=fold.is_debug, verbose=fold.is_verbose,
            )
            if fold.response_variable:
                self.store.set_var(fold.response_variable, value)
        except RestError as e:
            fold.error = True
            fold.output += f"{format_error(e)}\n"
            return
        fold.output += response
