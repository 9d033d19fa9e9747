"""
Runtime settings, read once from the environment.
"""

import os
from dataclasses import dataclass

_TRUE = ("1", "true", "yes", "on")


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE


@dataclass(frozen=True)
class Settings:
    profiling: bool = False
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls):
        return cls(
            profiling=_env_flag("EASYCL_PROFILING"),
            log_level=os.environ.get("EASYCL_LOG_LEVEL", "WARNING").upper(),
        )


APP_CONFIG = Settings.from_env()
