import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from docvault.errors import ConfigurationError

ENV_PREFIX = "DOCVAULT_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(f"{ENV_PREFIX}{name}")
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}")


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be a number, got {raw!r}"
        ) from None


def _env_str(
    environ: Mapping[str, str], name: str, default: Optional[str] = None
) -> Optional[str]:
    raw = environ.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


@dataclass
class NasSettings:
    enabled: bool = False
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    base_path: str = "/data"
    verify_ssl: bool = True
    ca_file: Optional[str] = None
    connect_timeout: float = 30.0
    max_time: float = 50.0
    session_cache: bool = False
    session_ttl: float = 900.0


@dataclass
class S3Settings:
    enabled: bool = True
    bucket: Optional[str] = None
    region: str = "us-east-1"
    prefix: str = ""
    endpoint_url: Optional[str] = None


@dataclass
class Settings:
    nas: NasSettings = field(default_factory=NasSettings)
    s3: S3Settings = field(default_factory=S3Settings)
    printer_url: Optional[str] = None
    brevo_api_key: Optional[str] = field(default=None, repr=False)
    api_key: Optional[str] = field(default=None, repr=False)
    dev_dir: Optional[Path] = None
    log_level: str = "INFO"

    @property
    def fallback_enabled(self) -> bool:
        return self.nas.enabled and self.s3.enabled

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            environ = os.environ

        nas = NasSettings(
            enabled=_env_bool(environ, "NAS_ENABLED", False),
            url=_env_str(environ, "NAS_URL"),
            username=_env_str(environ, "NAS_USERNAME"),
            password=environ.get(f"{ENV_PREFIX}NAS_PASSWORD") or None,
            base_path=_env_str(environ, "NAS_BASE_PATH", "/data"),
            verify_ssl=_env_bool(environ, "NAS_VERIFY_SSL", True),
            ca_file=_env_str(environ, "NAS_CA_FILE"),
            connect_timeout=_env_float(environ, "NAS_CONNECT_TIMEOUT", 30.0),
            max_time=_env_float(environ, "NAS_MAX_TIME", 50.0),
            session_cache=_env_bool(environ, "SESSION_CACHE", False),
            session_ttl=_env_float(environ, "SESSION_TTL", 900.0),
        )
        s3 = S3Settings(
            enabled=_env_bool(environ, "S3_ENABLED", True),
            bucket=_env_str(environ, "S3_BUCKET"),
            region=_env_str(environ, "S3_REGION", "us-east-1"),
            prefix=_env_str(environ, "S3_PREFIX", ""),
            endpoint_url=_env_str(environ, "S3_ENDPOINT"),
        )
        dev_dir = _env_str(environ, "DEV_DIR")

        settings = cls(
            nas=nas,
            s3=s3,
            printer_url=_env_str(environ, "PRINTER_URL"),
            brevo_api_key=_env_str(environ, "BREVO_API_KEY"),
            api_key=_env_str(environ, "API_KEY"),
            dev_dir=Path(dev_dir).expanduser() if dev_dir else None,
            log_level=_env_str(environ, "LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if not self.nas.enabled and not self.s3.enabled:
            raise ConfigurationError(
                "No storage backend enabled: set DOCVAULT_NAS_ENABLED or DOCVAULT_S3_ENABLED"
            )

        if self.nas.enabled:
            missing = [
                f"{ENV_PREFIX}NAS_{name.upper()}"
                for name in ("url", "username", "password")
                if not getattr(self.nas, name)
            ]
            if missing:
                raise ConfigurationError(
                    f"NAS backend enabled but missing: {', '.join(missing)}"
                )
            if self.nas.session_cache and self.nas.session_ttl <= 0:
                raise ConfigurationError(
                    f"{ENV_PREFIX}SESSION_TTL must be positive when caching is enabled"
                )

        if self.s3.enabled and not self.s3.bucket:
            raise ConfigurationError(
                f"S3 backend enabled but {ENV_PREFIX}S3_BUCKET is not set"
            )
