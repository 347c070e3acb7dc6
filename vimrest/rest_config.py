from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from vimrest.rest_datatypes import ConfigError
from vimrest.rest_serialize import load_yaml

# TODO: derive the env file from the document name (like .file.rest.json)
ENV_FILE = ".env.json"
CONFIG_FILE = ".vim-rest-client.yaml"

# Environment variable -> config field
ENV_OVERRIDES = {
    "VIM_REST_ENV_FILE": "env_file",
    "VIM_REST_LOG_LEVEL": "log_level",
    "VIM_REST_CURL": "curl_program",
    "VIM_REST_SSH": "ssh_program",
}


@dataclass(frozen=True)
class RestConfig:
    env_file: str = ENV_FILE
    curl_program: str = "curl"
    ssh_program: str = "ssh"
    log_level: str = "WARNING"
    json_logs: bool = False
    # None keeps substitution unbounded
    max_substitution_passes: Optional[int] = None


def _normalize(data: Mapping[str, Any], source: str) -> dict:
    known = {f.name for f in fields(RestConfig)}
    out = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in known:
            raise ConfigError(f"unknown config key {key!r} in {source}")
        out[name] = value
    passes = out.get("max_substitution_passes")
    if passes is not None and (isinstance(passes, bool) or not isinstance(passes, int) or passes < 1):
        raise ConfigError(f"max-substitution-passes must be a positive integer in {source}")
    return out


def load_config(path: Optional[str] = None, *, environ: Optional[Mapping[str, str]] = None,
                **overrides: Any) -> RestConfig:
    """
    Builds the configuration from, lowest to highest precedence:
    defaults, the YAML file, VIM_REST_* environment variables, keyword overrides.
    Overrides set to None are ignored.
    """
    env = os.environ if environ is None else environ
    path = path or env.get("VIM_REST_CONFIG") or CONFIG_FILE
    config = RestConfig()

    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as f:
            data = load_yaml(f.read(), source=path)
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigError(f"{path} must contain a mapping")
        config = replace(config, **_normalize(data, path))

    from_env = {field: env[var] for var, field in ENV_OVERRIDES.items() if env.get(var)}
    config = replace(config, **from_env)

    explicit = _normalize({k: v for k, v in overrides.items() if v is not None}, "overrides")
    return replace(config, **explicit)
