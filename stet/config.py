from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import yaml


DEFAULT_DATA_DIR = os.path.join(os.path.expanduser("~"), ".local", "share", "stet")
ENV_KEYS = ("OURA_CLIENT_ID", "OURA_CLIENT_SECRET", "PLANTA_APP_CODE")


# -----------------------------
# Config model
# -----------------------------
@dataclass
class Config:
    data_dir: str = DEFAULT_DATA_DIR
    db_path: str = ""
    log_path: str = ""
    oura_token_path: str = ""
    planta_token_path: str = ""
    oura_client_id: str = ""
    oura_client_secret: str = ""
    planta_app_code: str = ""
    oura_poll_seconds: float = 20.0
    planta_poll_seconds: float = 4 * 60 * 60
    journal_debounce_seconds: float = 0.5
    auth_timeout_seconds: float = 300.0
    callback_port: int = 8089
    theme: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.data_dir = os.path.expanduser(self.data_dir)
        if not self.db_path:
            self.db_path = os.path.join(self.data_dir, "data.db")
        if not self.log_path:
            self.log_path = os.path.join(self.data_dir, "debug.log")
        if not self.oura_token_path:
            self.oura_token_path = os.path.join(self.data_dir, "oura_tokens.json")
        if not self.planta_token_path:
            self.planta_token_path = os.path.join(self.data_dir, "planta_tokens.json")


def is_placeholder(value: Optional[str]) -> bool:
    """Empty values and template placeholders ("your_client_id") count as missing."""
    v = (value or "").strip()
    return not v or v.startswith("your_")


def load_dotenv(path: str = ".env", keys: Iterable[str] = ENV_KEYS) -> Dict[str, str]:
    """Copy KEY=value pairs for the given keys from a .env file into os.environ.

    Variables already present in the environment win. Returns what was read.
    """
    found: Dict[str, str] = {}
    if not os.path.isfile(path):
        return found
    wanted = set(keys)
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            k, v = line.split('=', 1)
            k = k.strip()
            if k.startswith("export "):
                k = k[len("export "):].strip()
            v = v.strip().strip('"').strip("'")
            if k in wanted and v:
                found[k] = v
                os.environ.setdefault(k, v)
    return found


_NUMERIC = {
    "oura_poll_seconds": float,
    "planta_poll_seconds": float,
    "journal_debounce_seconds": float,
    "auth_timeout_seconds": float,
    "callback_port": int,
}
_STRINGS = ("data_dir", "db_path", "log_path", "oura_token_path", "planta_token_path",
            "oura_client_id", "oura_client_secret", "planta_app_code")


def load_config(path: Optional[str] = None, env: Optional[Dict[str, str]] = None,
                data_dir: Optional[str] = None) -> Config:
    raw: dict = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config: {path} must contain a mapping")
    kwargs: Dict[str, object] = {}
    for key in _STRINGS:
        if raw.get(key):
            kwargs[key] = str(raw[key])
    for key, conv in _NUMERIC.items():
        if raw.get(key) is not None:
            kwargs[key] = conv(raw[key])
    theme = raw.get("theme")
    if isinstance(theme, dict):
        kwargs["theme"] = {str(k): str(v) for k, v in theme.items() if isinstance(v, str)}
    if data_dir:
        kwargs["data_dir"] = data_dir

    env = os.environ if env is None else env
    if env.get("OURA_CLIENT_ID"):
        kwargs["oura_client_id"] = env["OURA_CLIENT_ID"]
    if env.get("OURA_CLIENT_SECRET"):
        kwargs["oura_client_secret"] = env["OURA_CLIENT_SECRET"]
    if env.get("PLANTA_APP_CODE"):
        kwargs["planta_app_code"] = env["PLANTA_APP_CODE"]
    return Config(**kwargs)
