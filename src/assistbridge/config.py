from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .model import CONTEXT_MODES, ContextMode

# Environment variable names for secrets
ENV_OPENAI_API_KEY = "OPENAI_API_KEY"
ENV_ASSISTANT_ID = "ASSISTBRIDGE_ASSISTANT_ID"
ENV_ZENDESK_SUBDOMAIN = "ZENDESK_SUBDOMAIN"
ENV_ZENDESK_EMAIL = "ZENDESK_EMAIL"
ENV_ZENDESK_API_TOKEN = "ZENDESK_API_TOKEN"

LOCAL_CONFIG_NAME = Path(".assistbridge") / "assistbridge.toml"
HOME_CONFIG_PATH = Path.home() / ".assistbridge" / "assistbridge.toml"

DEFAULT_TIMEOUT_S = 180.0
DEFAULT_POLL_INTERVAL_S = 1.0
DEFAULT_STATE_FILENAME = "assistbridge_state.json"


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class ZendeskSettings:
    subdomain: str
    email: str
    api_token: str


@dataclass(frozen=True, slots=True)
class BridgeSettings:
    assistant_id: str
    openai_api_key: str
    context: ContextMode = "thread"
    prefix: str = ""
    prefix_reply: bool = False
    prefix_dm: bool = False
    blacklist: tuple[str, ...] = ()
    whitelist: tuple[str, ...] = ()
    room_blacklist: tuple[str, ...] = ()
    room_whitelist: tuple[str, ...] = ()
    ignore_media: bool = False
    timeout_s: float = DEFAULT_TIMEOUT_S
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    threads: bool = True
    rich_text: bool = True
    state_path: Path = field(default_factory=lambda: Path(DEFAULT_STATE_FILENAME))
    identity_api_url: str | None = None
    zendesk: ZendeskSettings | None = None


def _config_candidates() -> list[Path]:
    candidates = [Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH]
    if candidates[0] == candidates[1]:
        return [candidates[0]]
    return candidates


def _read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_config(path: str | Path | None = None) -> tuple[dict, Path]:
    if path:
        cfg_path = Path(path).expanduser()
        return _read_config(cfg_path), cfg_path

    for candidate in _config_candidates():
        if candidate.is_file():
            return _read_config(candidate), candidate

    raise ConfigError("Missing assistbridge config.")


def _env_value(name: str) -> str | None:
    value = os.environ.get(name)
    if value and value.strip():
        return value.strip()
    return None


def _get_str(
    config: dict[str, Any],
    key: str,
    config_path: Path,
    *,
    env: str | None = None,
    default: str | None = None,
    required: bool = False,
    strip: bool = True,
) -> str | None:
    if env is not None:
        env_value = _env_value(env)
        if env_value is not None:
            return env_value
    value = config.get(key)
    if value is None:
        if required:
            hint = f"Set {env} environment variable or add" if env else "Add"
            raise ConfigError(f"Missing `{key}`. {hint} `{key}` to {config_path}.")
        return default
    if not isinstance(value, str):
        raise ConfigError(f"Invalid `{key}` in {config_path}; expected a string.")
    if strip:
        value = value.strip()
    if required and not value.strip():
        raise ConfigError(
            f"Invalid `{key}` in {config_path}; expected a non-empty string."
        )
    return value


def _get_bool(
    config: dict[str, Any], key: str, config_path: Path, *, default: bool
) -> bool:
    value = config.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"Invalid `{key}` in {config_path}; expected a boolean.")
    return value


def _get_seconds(
    config: dict[str, Any], key: str, config_path: Path, *, default: float
) -> float:
    value = config.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"Invalid `{key}` in {config_path}; expected a number.")
    if value <= 0:
        raise ConfigError(f"Invalid `{key}` in {config_path}; expected a positive number.")
    return float(value)


def split_suffix_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item for item in value.split() if item)


def _parse_zendesk(config: dict[str, Any], config_path: Path) -> ZendeskSettings | None:
    raw = config.get("zendesk", {})
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid `zendesk` in {config_path}; expected a table.")
    subdomain = _get_str(raw, "subdomain", config_path, env=ENV_ZENDESK_SUBDOMAIN)
    email = _get_str(raw, "email", config_path, env=ENV_ZENDESK_EMAIL)
    api_token = _get_str(raw, "api_token", config_path, env=ENV_ZENDESK_API_TOKEN)
    if not subdomain and not email and not api_token:
        return None
    if not (subdomain and email and api_token):
        raise ConfigError(
            f"Incomplete `zendesk` settings in {config_path}; "
            "expected subdomain, email and api_token."
        )
    return ZendeskSettings(subdomain=subdomain, email=email, api_token=api_token)


def parse_settings(config: dict[str, Any], config_path: Path) -> BridgeSettings:
    assistant_id = _get_str(
        config, "assistant_id", config_path, env=ENV_ASSISTANT_ID, required=True
    )
    api_key = _get_str(
        config, "openai_api_key", config_path, env=ENV_OPENAI_API_KEY, required=True
    )
    context = _get_str(config, "context", config_path, default="thread")
    if context not in CONTEXT_MODES:
        raise ConfigError(
            f"Invalid `context` in {config_path}; expected one of "
            f"{', '.join(CONTEXT_MODES)}."
        )
    state_path = Path(
        _get_str(config, "state_path", config_path, default=DEFAULT_STATE_FILENAME)
    ).expanduser()
    if not state_path.is_absolute():
        state_path = config_path.parent / state_path
    identity_api_url = _get_str(config, "identity_api_url", config_path) or None

    return BridgeSettings(
        assistant_id=assistant_id,
        openai_api_key=api_key,
        context=context,
        prefix=_get_str(config, "prefix", config_path, default="", strip=False)
        or "",
        prefix_reply=_get_bool(config, "prefix_reply", config_path, default=False),
        prefix_dm=_get_bool(config, "prefix_dm", config_path, default=False),
        blacklist=split_suffix_list(_get_str(config, "blacklist", config_path)),
        whitelist=split_suffix_list(_get_str(config, "whitelist", config_path)),
        room_blacklist=split_suffix_list(
            _get_str(config, "room_blacklist", config_path)
        ),
        room_whitelist=split_suffix_list(
            _get_str(config, "room_whitelist", config_path)
        ),
        ignore_media=_get_bool(config, "ignore_media", config_path, default=False),
        timeout_s=_get_seconds(
            config, "timeout_s", config_path, default=DEFAULT_TIMEOUT_S
        ),
        poll_interval_s=_get_seconds(
            config, "poll_interval_s", config_path, default=DEFAULT_POLL_INTERVAL_S
        ),
        threads=_get_bool(config, "threads", config_path, default=True),
        rich_text=_get_bool(config, "rich_text", config_path, default=True),
        state_path=state_path,
        identity_api_url=identity_api_url.rstrip("/") if identity_api_url else None,
        zendesk=_parse_zendesk(config, config_path),
    )


def load_settings(path: str | Path | None = None) -> tuple[BridgeSettings, Path]:
    config, config_path = load_config(path)
    return parse_settings(config, config_path), config_path
