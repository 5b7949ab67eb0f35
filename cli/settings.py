"""
pygpasswd Settings
==================
Site configuration, resolved once at startup.

Source, first match wins:
  1. JSON file named by $PYGPASSWD_CONFIG
  2. /etc/pygpasswd.json, if it exists
  3. PYGPASSWD_<FIELD> environment variables, for keys the file leaves out
  4. built-in defaults

Example:
  {
    "group_path": "/etc/group",
    "gshadow_path": "/etc/gshadow",
    "first_member_is_admin": false,
    "lock_timeout": 15
  }

Every value is type-checked: "false" and "no" parse as False, while a
value that is neither boolean nor boolean-like is an error. Unknown keys
are an error too, so a typo cannot silently leave a policy at its default.
"""

import json
import os
from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from transactions.errors import ConfigError

CONFIG_ENV = "PYGPASSWD_CONFIG"
DEFAULT_CONFIG_PATH = "/etc/pygpasswd.json"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """pygpasswd site configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PYGPASSWD_",
        extra="forbid",
        validate_assignment=True,
    )

    group_path: str = Field(default="/etc/group", min_length=1)
    gshadow_path: str = Field(default="/etc/gshadow", min_length=1)
    passwd_path: Optional[str] = None        # None: system user database
    shadow_enabled: Optional[bool] = None    # None: present iff gshadow exists
    # Legacy policy: the first listed member administers the group.
    # Known to be unsafe on systems where that member is an ordinary user.
    first_member_is_admin: bool = False
    password_retries: int = Field(default=3, ge=1,
                                  description="New-password attempts before giving up")
    lock_timeout: float = Field(default=0.0, ge=0,
                                description="Seconds to wait for a busy database lock")
    crypt_scheme: str = "sha512_crypt"
    crypt_rounds: Optional[int] = Field(default=None, ge=1)
    nscd_path: str = "nscd"
    log_level: str = "ERROR"
    log_format: Literal["text", "json"] = "text"
    log_file: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return level

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(_describe(e))

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Settings":
        """Load from `path`, $PYGPASSWD_CONFIG or the default file."""
        if path is None:
            path = os.environ.get(CONFIG_ENV)
        if path is None:
            if not os.path.exists(DEFAULT_CONFIG_PATH):
                return cls.from_dict({})
            path = DEFAULT_CONFIG_PATH

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot read configuration {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"configuration {path} must be a JSON object")
        return cls.from_dict(data)

    def resolve_shadow(self) -> bool:
        """Whether the shadow group database is in use on this system."""
        if self.shadow_enabled is not None:
            return self.shadow_enabled
        return os.path.exists(self.gshadow_path)


def _describe(error: ValidationError) -> str:
    """One-line message naming every rejected key."""
    unknown = []
    invalid = []
    for item in error.errors():
        key = ".".join(str(part) for part in item["loc"]) or "configuration"
        if item["type"] == "extra_forbidden":
            unknown.append(key)
        else:
            invalid.append(f"{key}: {item['msg']}")
    parts = []
    if unknown:
        parts.append(f"unknown configuration key(s): {', '.join(sorted(unknown))}")
    if invalid:
        parts.append(f"invalid configuration value(s): {'; '.join(invalid)}")
    return "; ".join(parts)
