"""Reading and writing ``~/.conductor``.

``config.json`` holds settings with camelCase keys and never secrets. API
keys and the gateway token live in ``.env`` next to it (mode 600). When
loading, a real environment variable beats ``.env``, which beats the file.
"""

import json
import os
import re
import stat
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from conductor.config.schema import BUILTIN_PROVIDERS, Config

CONFIG_DIR = Path.home() / ".conductor"

# Dict-valued settings whose keys belong to the user (env vars, HTTP headers).
_OPAQUE_KEYS = frozenset({"env", "headers"})

GATEWAY_TOKEN_VAR = "CONDUCTOR_GATEWAY__AUTH_TOKEN"


def get_config_path() -> Path:
    return CONFIG_DIR / "config.json"


def get_env_path() -> Path:
    return CONFIG_DIR / ".env"


def builtin_provider_env_var(name: str) -> str:
    return f"CONDUCTOR_PROVIDERS__{name.upper()}__API_KEY"


def custom_provider_env_var(name: str) -> str:
    slug = re.sub(r"[\s-]+", "_", name.strip()).upper()
    return f"CONDUCTOR_CUSTOM_PROVIDER_{slug}_API_KEY"


def _owner_only(path: Path) -> None:
    try:
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    except OSError as e:
        logger.debug(f"chmod 600 failed for {path}: {e}")


def _load_dotenv(env_path: Path) -> dict[str, str]:
    """``KEY=value`` lines. Blank lines and ``#`` comments are skipped, quotes unwrapped."""
    if not env_path.exists():
        return {}
    values: dict[str, str] = {}
    for raw in env_path.read_text(encoding="utf-8").splitlines():
        key, sep, value = raw.strip().partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or key.startswith("#"):
            continue
        if len(value) > 1 and value[0] == value[-1] == '"':
            value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        elif len(value) > 1 and value[0] == value[-1] == "'":
            value = value[1:-1]
        values[key] = value
    return values


def _dump_dotenv(values: dict[str, str], env_path: Path) -> None:
    lines = ["# conductor secrets. Do not commit this file.", ""]
    for key in sorted(values):
        value = values[key]
        if re.search(r"[\s\"'#]", value):
            value = '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
        lines.append(f"{key}={value}")
    env_path.parent.mkdir(parents=True, exist_ok=True)
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    _owner_only(env_path)


def load_config(config_path: Path | None = None, env_path: Path | None = None) -> Config:
    """Build the effective config. A broken ``config.json`` falls back to defaults."""
    path = config_path or get_config_path()
    for key, value in _load_dotenv(env_path or get_env_path()).items():
        os.environ.setdefault(key, value)

    config = None
    if path.exists():
        try:
            config = Config(**convert_keys(json.loads(path.read_text(encoding="utf-8"))))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable config {path}: {e}")
    config = config or Config()

    _apply_env_secrets(config)
    return config


def save_config(config: Config, config_path: Path | None = None, env_path: Path | None = None) -> None:
    """Write ``config.json`` with secrets blanked and merge the secrets into ``.env``."""
    path = config_path or get_config_path()
    env_path = env_path or get_env_path()

    secrets = _collect_secrets(config)
    if secrets:
        _dump_dotenv({**_load_dotenv(env_path), **secrets}, env_path)

    public = config.model_copy(deep=True)
    for name in BUILTIN_PROVIDERS:
        getattr(public.providers, name).api_key = ""
    for custom in public.providers.custom:
        custom.api_key = ""
    public.gateway.auth_token = ""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(convert_to_camel(public.model_dump()), indent=2), encoding="utf-8")
    _owner_only(path)


def _collect_secrets(config: Config) -> dict[str, str]:
    found: dict[str, str] = {}
    for name in BUILTIN_PROVIDERS:
        key = getattr(config.providers, name).api_key
        if key:
            found[builtin_provider_env_var(name)] = key
    for custom in config.providers.custom:
        if custom.name.strip() and custom.api_key:
            found[custom_provider_env_var(custom.name)] = custom.api_key
    if config.gateway.auth_token:
        found[GATEWAY_TOKEN_VAR] = config.gateway.auth_token
    return found


def _apply_env_secrets(config: Config) -> None:
    for name in BUILTIN_PROVIDERS:
        key = os.environ.get(builtin_provider_env_var(name))
        if key:
            getattr(config.providers, name).api_key = key
    for custom in config.providers.custom:
        key = os.environ.get(custom_provider_env_var(custom.name)) if custom.name.strip() else None
        if key:
            custom.api_key = key
    token = os.environ.get(GATEWAY_TOKEN_VAR)
    if token:
        config.gateway.auth_token = token


def _rekey(data: Any, rename) -> Any:
    if isinstance(data, list):
        return [_rekey(item, rename) for item in data]
    if not isinstance(data, dict):
        return data
    return {
        rename(key): value if key in _OPAQUE_KEYS else _rekey(value, rename)
        for key, value in data.items()
    }


def convert_keys(data: Any) -> Any:
    """camelCase keys -> snake_case, for pydantic."""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case keys -> camelCase, for config.json."""
    return _rekey(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
