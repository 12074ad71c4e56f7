"""
Environment - .env loading and typed environment lookups.
"""

import os
from pathlib import Path
from typing import Optional, Callable, TypeVar, Dict


T = TypeVar("T")

TRUE_VALUES = frozenset({"true", "1", "yes", "on"})


def _candidate_env_files() -> list:
    return [Path.cwd() / ".env", Path(__file__).resolve().parents[2] / ".env"]


def parse_env_file(path: Path) -> Dict[str, str]:
    """
    Read KEY=VALUE pairs from a dotenv file.

    Blank lines, comments and lines without '=' are ignored. A leading
    'export ' and matching outer quotes are stripped.
    """
    values: Dict[str, str] = {}

    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, _, value = line.partition("=")
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()

        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]

        values[key] = value

    return values


def load_environment(env_file: Optional[str] = None) -> Optional[Path]:
    """
    Load a .env file into os.environ without overriding existing variables.

    Args:
        env_file: Explicit path; otherwise ./.env, then the project root

    Returns:
        The file that was loaded, or None
    """
    candidates = [Path(env_file)] if env_file else _candidate_env_files()

    for path in candidates:
        if path.is_file():
            for key, value in parse_env_file(path).items():
                os.environ.setdefault(key, value)
            return path

    return None


def get_env(
    key: str,
    default: Optional[str] = None,
    required: bool = False
) -> Optional[str]:
    """
    Get an environment variable.

    Raises:
        EnvironmentError: If required and unset or empty
    """
    value = os.getenv(key, default)

    if required and not value:
        raise EnvironmentError(f"Required environment variable not set: {key}")

    return value


def _get_typed(key: str, default: T, convert: Callable[[str], T]) -> T:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return convert(value.strip())
    except ValueError:
        return default


def get_env_int(key: str, default: int = 0) -> int:
    """Integer variable; falls back to default when unset or malformed."""
    return _get_typed(key, default, int)


def get_env_float(key: str, default: float = 0.0) -> float:
    """Float variable; falls back to default when unset or malformed."""
    return _get_typed(key, default, float)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Boolean variable: true/1/yes/on (any case) is True."""
    return _get_typed(key, default, lambda v: v.lower() in TRUE_VALUES)
