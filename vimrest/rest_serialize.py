from __future__ import annotations

import json
from typing import Any

# YAML is only used for the configuration file
import yaml

from vimrest.rest_datatypes import ConfigError, JsonError


# --------------------------
# Helpers
# --------------------------

def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


# --------------------------
# Public API
# --------------------------

def deserialize(text: str) -> Any:
    """
    Strict JSON decoding for assignment values and env files.
    NaN/Infinity are rejected; errors surface as JsonError with the decoder message.
    """
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except ValueError as e:
        raise JsonError(str(e)) from e


def serialize(value: Any, *, pretty: bool = True) -> str:
    """
    JSON text for a value.
    - pretty: 2-space indented (response bodies, env file)
    - compact: canonical form without whitespace (substituted values)
    """
    if pretty:
        return json.dumps(value, ensure_ascii=False, indent=2)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def stringify(value: Any) -> str:
    """Text substituted for a selector: strings raw, everything else as compact JSON."""
    if isinstance(value, str):
        return value
    return serialize(value, pretty=False)


def try_deserialize(text: str) -> tuple[bool, Any]:
    """Returns (True, value) when text is JSON, (False, None) otherwise."""
    try:
        return True, deserialize(text)
    except JsonError:
        return False, None


def load_yaml(text: str, *, source: str = "<config>") -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {source}: {e}") from e


__all__ = [
    "deserialize",
    "serialize",
    "stringify",
    "try_deserialize",
    "load_yaml",
]
