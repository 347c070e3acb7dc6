from vimrest.rest_config import RestConfig, load_config
from vimrest.rest_runtime import ExecutionResult, RestRunner
from vimrest.rest_store import EnvironmentStore, JsonFileBackend, MemoryBackend

__all__ = [
    "RestConfig",
    "load_config",
    "ExecutionResult",
    "RestRunner",
    "EnvironmentStore",
    "JsonFileBackend",
    "MemoryBackend",
]
