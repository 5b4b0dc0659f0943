"""
Realtime Hub Configuration
--------------------------
Configuration for the realtime hub and its HTTP/WebSocket app.

Can be loaded from a YAML file or from the environment variables used by the
platform's other services (JWT_SECRET, JWT_EXPIRE, WS_CORS_ORIGIN, PORT).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml


DEFAULT_TOKEN_EXPIRE_SEC = 7 * 24 * 3600
DEFAULT_PRIVILEGED_ROLES = ("admin", "government")
DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://localhost:5173")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Any) -> int:
    """
    Parse a duration such as "7d", "12h", "30m", "45s" or "3600" into seconds.

    Raises:
        ValueError: If the value is not a recognised duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    match = _DURATION_RE.match(str(value))
    if match is None:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


_SCALAR_FIELDS = {
    "jwt_secret": str,
    "jwt_algorithm": str,
    "token_expire_sec": int,
    "send_timeout_sec": float,
    "queue_maxsize": int,
    "outbox_maxsize": int,
    "host": str,
    "port": int,
    "environment": str,
}


def _coerce(value: Any, kind: type) -> Any:
    """Convert a scalar to `kind`, rejecting null, bool and lossy conversions."""
    if value is None or isinstance(value, bool):
        raise TypeError(value)
    if kind is str:
        if not isinstance(value, (str, int, float)):
            raise TypeError(value)
        return str(value)
    if isinstance(value, float) and kind is int and not value.is_integer():
        raise ValueError(value)
    if not isinstance(value, (str, int, float)):
        raise TypeError(value)
    return kind(value)


def _coerce_list(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return _split_list(value)
    if value is None or not isinstance(value, (list, tuple, set, frozenset)):
        raise TypeError(value)
    if not all(isinstance(item, str) for item in value):
        raise TypeError(value)
    return tuple(value)


@dataclass(frozen=True)
class RealtimeConfig:
    """
    Immutable configuration for the realtime hub.

    Attributes:
        jwt_secret: Shared HMAC secret used to verify bearer tokens.
        jwt_algorithm: JWT signing algorithm.
        token_expire_sec: Lifetime of tokens issued by issue_token().
        privileged_roles: Roles that join admin_room.
        send_timeout_sec: Upper bound for a single send to one connection.
        queue_maxsize: Capacity of the router channel (0 = unbounded).
        outbox_maxsize: Frames one connection may have waiting before new ones
            are dropped.
        cors_origins: Origins allowed by the HTTP app.
        host: Bind address.
        port: Bind port.
        environment: Deployment environment name (reported by /health).
    """
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    token_expire_sec: int = DEFAULT_TOKEN_EXPIRE_SEC
    privileged_roles: Tuple[str, ...] = DEFAULT_PRIVILEGED_ROLES
    send_timeout_sec: float = 5.0
    queue_maxsize: int = 1000
    outbox_maxsize: int = 256
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS
    host: str = "0.0.0.0"
    port: int = 5000
    environment: str = "development"

    def __post_init__(self) -> None:
        """Coerce and validate configuration at construction time."""
        errors = []
        invalid = set()

        # YAML and env values may arrive as strings, lists or null
        for name, kind in _SCALAR_FIELDS.items():
            value = getattr(self, name)
            try:
                object.__setattr__(self, name, _coerce(value, kind))
            except (TypeError, ValueError):
                errors.append(f"{name} must be {kind.__name__}, got {value!r}")
                invalid.add(name)

        for name in ("privileged_roles", "cors_origins"):
            value = getattr(self, name)
            try:
                object.__setattr__(self, name, _coerce_list(value))
            except TypeError:
                errors.append(f"{name} must be a list of strings, got {value!r}")
                invalid.add(name)

        if "jwt_secret" not in invalid and not self.jwt_secret:
            errors.append("jwt_secret is required")

        if "jwt_algorithm" not in invalid and not self.jwt_algorithm.startswith("HS"):
            errors.append(f"jwt_algorithm must be an HMAC algorithm, got {self.jwt_algorithm}")

        if "token_expire_sec" not in invalid and self.token_expire_sec <= 0:
            errors.append(f"token_expire_sec must be > 0, got {self.token_expire_sec}")

        if "send_timeout_sec" not in invalid and self.send_timeout_sec <= 0:
            errors.append(f"send_timeout_sec must be > 0, got {self.send_timeout_sec}")

        if "queue_maxsize" not in invalid and self.queue_maxsize < 0:
            errors.append(f"queue_maxsize must be >= 0, got {self.queue_maxsize}")

        if "outbox_maxsize" not in invalid and self.outbox_maxsize <= 0:
            errors.append(f"outbox_maxsize must be > 0, got {self.outbox_maxsize}")

        if "port" not in invalid and not (0 < self.port < 65536):
            errors.append(f"port must be in (0, 65536), got {self.port}")

        if errors:
            raise ValueError("RealtimeConfig validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RealtimeConfig":
        """Build from a plain mapping, ignoring unknown keys."""
        known = cls.__dataclass_fields__.keys()
        kwargs: Dict[str, Any] = {k: v for k, v in data.items() if k in known}
        if "token_expire_sec" in kwargs:
            kwargs["token_expire_sec"] = parse_duration(kwargs["token_expire_sec"])
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "RealtimeConfig":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration.

        Returns:
            RealtimeConfig instance.
        """
        with open(yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"{yaml_path}: expected a mapping at top level")

        return cls.from_dict(data)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RealtimeConfig":
        """
        Load configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ).
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {"jwt_secret": env.get("JWT_SECRET", "")}

        if env.get("JWT_ALGORITHM"):
            data["jwt_algorithm"] = env["JWT_ALGORITHM"]
        if env.get("JWT_EXPIRE"):
            data["token_expire_sec"] = parse_duration(env["JWT_EXPIRE"])
        if env.get("PRIVILEGED_ROLES"):
            data["privileged_roles"] = _split_list(env["PRIVILEGED_ROLES"])
        if env.get("WS_CORS_ORIGIN"):
            data["cors_origins"] = _split_list(env["WS_CORS_ORIGIN"])
        if env.get("WS_SEND_TIMEOUT_SEC"):
            data["send_timeout_sec"] = env["WS_SEND_TIMEOUT_SEC"]
        if env.get("WS_OUTBOX_MAXSIZE"):
            data["outbox_maxsize"] = env["WS_OUTBOX_MAXSIZE"]
        if env.get("HOST"):
            data["host"] = env["HOST"]
        if env.get("PORT"):
            data["port"] = env["PORT"]

        environment = env.get("APP_ENV") or env.get("NODE_ENV")
        if environment:
            data["environment"] = environment

        return cls(**data)

    def is_privileged(self, role: str) -> bool:
        """Whether a role joins admin_room."""
        return role in self.privileged_roles
