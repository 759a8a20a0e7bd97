from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping


Scope = Literal["system", "user"]
Backend = Literal["dbus", "systemctl"]

# Substrings that mark a unit as something a developer usually cares about.
DEFAULT_DEV_KEYWORDS: tuple[str, ...] = (
    "docker",
    "mongo",
    "postgres",
    "mysql",
    "redis",
    "nginx",
    "apache",
    "node",
    "python",
    "go",
    "java",
    "php",
    "ruby",
    "rust",
    "app",
    "api",
    "service",
    "web",
    "worker",
    "db",
)

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(ValueError):
    """Raised when an SVCDASH_* environment variable holds an unusable value."""


@dataclass(frozen=True)
class Settings:
    scope: Scope = "system"
    backend: Backend = "dbus"
    dev_keywords: tuple[str, ...] = DEFAULT_DEV_KEYWORDS
    log_capacity: int = 1000
    journal_lines: int = 100
    refresh_seconds: float = 10.0
    status_seconds: float = 4.0
    call_timeout: float = 15.0
    log_file: Path | None = None
    log_level: str = "INFO"

    @property
    def user_scope(self) -> bool:
        return self.scope == "user"


def default_log_file(environ: Mapping[str, str]) -> Path:
    state_home = environ.get("XDG_STATE_HOME", "").strip()
    if state_home:
        base = Path(state_home)
    else:
        base = Path(environ.get("HOME") or Path.home()) / ".local" / "state"
    return base / "svcdash" / "svcdash.log"


def parse_keywords(raw: str) -> tuple[str, ...]:
    # split on comma, strip whitespace, lower-case, de-dupe while preserving order
    seen: set[str] = set()
    out: list[str] = []
    for part in raw.split(","):
        kw = part.strip().lower()
        if kw and kw not in seen:
            seen.add(kw)
            out.append(kw)
    return tuple(out)


def _choice(environ: Mapping[str, str], var: str, default: str, allowed: set[str]) -> str:
    value = environ.get(var, "").strip().lower() or default
    if value not in allowed:
        opts = "|".join(sorted(allowed))
        raise ConfigError(f"{var}={value!r} is not one of {opts}")
    return value


def _number(environ: Mapping[str, str], var: str, default: float, *, minimum: float = 0) -> float:
    raw = environ.get(var, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{var}={raw!r} is not a number") from None
    if value < minimum:
        raise ConfigError(f"{var} must be >= {minimum:g}, got {raw}")
    return value


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from SVCDASH_* variables (defaults for anything unset)."""
    env = os.environ if environ is None else environ

    scope = _choice(env, "SVCDASH_SCOPE", "system", {"system", "user"})
    backend = _choice(env, "SVCDASH_BACKEND", "dbus", {"dbus", "systemctl"})

    raw_keywords = env.get("SVCDASH_DEV_KEYWORDS")
    keywords = DEFAULT_DEV_KEYWORDS if raw_keywords is None else parse_keywords(raw_keywords)

    level = (env.get("SVCDASH_LOG_LEVEL", "").strip() or "INFO").upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"SVCDASH_LOG_LEVEL={level!r} is not a logging level")

    log_file_raw = env.get("SVCDASH_LOG_FILE", "").strip()
    log_file = Path(log_file_raw).expanduser() if log_file_raw else default_log_file(env)

    return Settings(
        scope=scope,  # type: ignore[arg-type]
        backend=backend,  # type: ignore[arg-type]
        dev_keywords=keywords,
        log_capacity=int(_number(env, "SVCDASH_LOG_CAPACITY", 1000, minimum=1)),
        journal_lines=int(_number(env, "SVCDASH_JOURNAL_LINES", 100)),
        refresh_seconds=_number(env, "SVCDASH_REFRESH_SECONDS", 10.0),
        status_seconds=_number(env, "SVCDASH_STATUS_SECONDS", 4.0),
        call_timeout=_number(env, "SVCDASH_CALL_TIMEOUT", 15.0, minimum=0.1),
        log_file=log_file,
        log_level=level,
    )
