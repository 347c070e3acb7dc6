"""
Defines the core data types for the vim-rest-client runtime.

This module provides the error kinds raised by every layer, the immutable
`Request` value handed to the HTTP layer, and the `Fold` record the
interpreter keeps for every open `###{ ... ###}` block.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

# =================================================================
# Error kinds
# =================================================================

class RestError(Exception):
    """Base class for every error that is rendered into the document."""
    pass


class ParseError(RestError):
    """A line does not have the shape its position requires."""
    pass


class SubstitutionError(RestError):
    """A `{{...}}` selector could not be resolved."""
    def __init__(self, expression: str, message: Optional[str] = None):
        super().__init__(message or f"failed to get resource at {expression}")
        self.expression = expression


class JsonError(RestError):
    """An assignment value is not valid JSON after substitution."""
    pass


class TransportError(RestError):
    """The HTTP client or the remote session failed."""
    pass


class StoreError(RestError):
    """The environment could not be modified or persisted."""
    pass


class ConfigError(RestError):
    """The configuration file or an override is invalid."""
    pass


def format_error(error: BaseException) -> str:
    """Text embedded into the document for a failed operation."""
    return str(error)


# =================================================================
# Line grammar
# =================================================================

START_FOLD_RE = re.compile(r"^(###\{\s*(.*))$")
EXECUTED_RE = re.compile(r" ?executed( \((ERROR|SUCCESS)\))?$")
END_FOLD = "###}"
STALE_DIVIDER = "##########"
DEFAULT_START_MARKER = "###{"

# Flags are comment lines like: # @flag_name
RESPONSE_VAR_RE = re.compile(r"^#\s*@name\s*([^ ]+)")
MULTI_FORM_RE = re.compile(r"^#\s*@form\s*(.+=.+)")
DEBUG_RE = re.compile(r"^#\s*@debug")
VERBOSE_RE = re.compile(r"^#\s*@verbose")
OPTIONS_RE = re.compile(r"^#\s*@options\s+(.+)")


def ensure_newline(text: str) -> str:
    """Adds a newline unless `text` is empty or already ends with one."""
    if text and not text.endswith("\n"):
        return text + "\n"
    return text


def match_method(token: str) -> str:
    """Normalizes a request verb; unknown verbs are passed through upper-cased."""
    return token.upper()


# =================================================================
# Request
# =================================================================

@dataclass(frozen=True)
class Request:
    """A request as written in the fold, before substitution.

    Every field is a template; substitution happens only when the request
    is executed.
    """
    method: str
    url: str
    headers: Tuple[str, ...] = ()
    data: Optional[str] = None
    multipart_forms: Tuple[str, ...] = ()
    options: Tuple[str, ...] = ()


# =================================================================
# Fold
# =================================================================

@dataclass
class Fold:
    """State for executing the content of a single fold.

    `ret` accumulates the echoed input, `output` the rendered result.
    Rendering happens at most once (`compiled`).
    """
    ret: str = ""
    output: str = ""
    title: str = ""
    start_marker: str = ""
    end_marker: str = ""
    error: bool = False
    first_line: bool = True
    old_output_started: bool = False
    compiled: bool = False
    depth: int = 0

    # request related state
    request_started: bool = False
    request_body_started: bool = False
    response_variable: str = ""
    made_request: bool = False
    method: str = "GET"
    url: str = ""
    headers: List[str] = field(default_factory=list)
    multipart_forms: List[str] = field(default_factory=list)
    options: List[str] = field(default_factory=list)
    request_body: str = ""
    is_debug: bool = False
    is_verbose: bool = False

    @classmethod
    def open(cls, marker: Optional[str], title: Optional[str], depth: int = 0) -> "Fold":
        """Creates a fold from the captures of a start-marker line."""
        fold = cls(depth=depth)
        if title:
            no_exec = EXECUTED_RE.sub("", title, count=1)
            if no_exec:
                fold.title = f"{no_exec} "
        if marker is not None:
            fold.start_marker = EXECUTED_RE.sub("", marker, count=1)
        else:
            fold.start_marker = DEFAULT_START_MARKER
        fold.first_line = False
        return fold

    @property
    def status(self) -> str:
        return "ERROR" if self.error else "SUCCESS"

    @property
    def result_label(self) -> str:
        return "ERROR" if self.error else "RESULT"

    def closing_marker(self) -> str:
        return self.end_marker or END_FOLD

    def feed_raw(self, line: str) -> None:
        """Records one input line for the echoed part of the rendering."""
        self.ret = ensure_newline(self.ret)
        self.ret += line + "\n"

    def parse_flags(self, line: str) -> None:
        # @name <name> stores the response under <name>
        m = RESPONSE_VAR_RE.match(line)
        if m:
            self.response_variable = m.group(1)
        # @form <name>=<value> or <name>=@<file path>
        m = MULTI_FORM_RE.match(line)
        if m:
            self.multipart_forms.append(m.group(1))
        if DEBUG_RE.match(line):
            self.is_debug = True
        if VERBOSE_RE.match(line):
            self.is_verbose = True
        m = OPTIONS_RE.match(line)
        if m:
            self.options.extend(m.group(1).split())

    def build_request(self) -> Request:
        return Request(
            method=self.method,
            url=self.url,
            headers=tuple(self.headers),
            data=self.request_body if self.request_body_started else None,
            multipart_forms=tuple(self.multipart_forms),
            options=tuple(self.options),
        )

    def compile_return(self) -> str:
        """Renders a top-level fold: echoed input, divider, result, end marker.

        Returns an empty string when the fold was already rendered.
        """
        if self.compiled:
            return ""
        self.compiled = True
        out = f"{self.start_marker} executed ({self.status})\n"
        out += ensure_newline(self.ret)
        out += f"{STALE_DIVIDER} {self.title}{self.result_label}\n"
        self.output = ensure_newline(self.output) + self.closing_marker()
        return out + self.output

    def compile_for_parent(self, parent_output: str) -> Tuple[str, str]:
        """Renders a nested fold as an (input, output) pair for its parent.

        The output part uses a single `###` header so it reads differently
        from a top-level result section.
        """
        if self.compiled:
            return "", ""
        self.compiled = True
        ret = f"{self.start_marker} executed ({self.status})\n"
        ret += self.ret
        ret += self.closing_marker() + "\n"
        out = ""
        if parent_output and not parent_output.endswith("\n"):
            out += "\n"
        out += f"### {self.title}{self.result_label}\n"
        self.output = ensure_newline(self.output)
        out += self.output
        out += "###\n"
        return ret, out
