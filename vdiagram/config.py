import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml

from .reports import Thresholds

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def _normalize_vcenter_host(value: str) -> str:
    """Accept 'vcsa.example.com', 'https://vcsa.example.com/ui' etc. and return the bare host."""
    v = value.strip().rstrip("/")
    if not v:
        raise RuntimeError("vCenter host is empty.")
    if "://" in v:
        v = re.sub(r"(https?):///+", r"\1://", v)
        parsed = urlparse(v)
        if not parsed.hostname:
            raise RuntimeError(f"vCenter host has no hostname: {value!r}")
        return parsed.hostname
    return v.split("/", 1)[0]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise RuntimeError(f"Invalid boolean value for {name}={raw!r} (expected true/false).")


def _yaml_bool(section: Dict[str, Any], key: str, prefix: str, default: bool) -> bool:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().lower() in _TRUE | _FALSE:
        return raw.strip().lower() in _TRUE
    raise RuntimeError(f"{prefix}.{key} must be boolean")


def _yaml_number(section: Dict[str, Any], key: str, prefix: str, default: float) -> float:
    raw = section.get(key, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"{prefix}.{key} must be a number") from exc


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise RuntimeError(f"{name} must be a mapping/object")
    return value


@dataclass
class VCenterSettings:
    host: Optional[str] = None  # e.g. "vcsa-01a.example.com"
    user: Optional[str] = None
    password: Optional[str] = None
    port: int = 443
    verify_ssl: bool = True


@dataclass
class DiagramSettings:
    grouping: str = "VLAN"
    swim_lanes: bool = False
    show_isolated: bool = True
    highlight_gateways: bool = False
    lane_width: int = 2400
    html_labels: bool = True


@dataclass
class Settings:
    vcenter: VCenterSettings
    output_dir: Path
    cache_dir: Path
    use_cached_data: bool
    cache_max_age_hours: Optional[float] = None
    diagram: DiagramSettings = field(default_factory=DiagramSettings)
    thresholds: Thresholds = field(default_factory=Thresholds)
    log_level: str = "INFO"
    log_dir: Optional[Path] = None


def _read_secret_file(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    p = Path(path)
    if not p.is_file():
        logger.warning("Secret file %s does not exist", p)
        return None
    return p.read_text(encoding="utf-8").strip()


def _parse_thresholds(raw: Dict[str, Any]) -> Thresholds:
    defaults = Thresholds()
    return Thresholds(
        **{
            key: _yaml_number(raw, key, "thresholds", getattr(defaults, key))
            for key in defaults.__dataclass_fields__
        }
    )


def _load_settings_from_yaml(path: str) -> Settings:
    """Load settings from a single YAML config file."""
    p = Path(path)
    if not p.is_file():
        raise RuntimeError(f"Config file not found: {path}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except Exception as exc:
        raise RuntimeError(f"Failed to read YAML config: {path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise RuntimeError("YAML config root must be a mapping/object")

    # vCenter connection
    vc = _section(raw, "vcenter")
    host = vc.get("host")
    if host is not None and not isinstance(host, str):
        raise RuntimeError("vcenter.host must be a string")

    password: Optional[str] = None
    if isinstance(vc.get("password"), str) and vc["password"].strip():
        password = vc["password"].strip()
    elif isinstance(vc.get("password_file"), str) and vc["password_file"].strip():
        password = _read_secret_file(vc["password_file"].strip())

    try:
        port = int(vc.get("port", 443))
    except (TypeError, ValueError) as exc:
        raise RuntimeError("vcenter.port must be an integer") from exc

    vcenter = VCenterSettings(
        host=_normalize_vcenter_host(host) if isinstance(host, str) and host.strip() else None,
        user=str(vc["user"]).strip() if vc.get("user") else None,
        password=password,
        port=port,
        verify_ssl=_yaml_bool(vc, "verify_ssl", "vcenter", True),
    )

    # Runtime config
    runtime = _section(raw, "runtime")
    log_level = str(runtime.get("log_level", "INFO"))
    log_dir = Path(str(runtime["log_dir"])) if runtime.get("log_dir") else None

    output_dir = Path(str(runtime.get("output_dir", "output")))
    output_dir.mkdir(parents=True, exist_ok=True)

    cache_dir = Path(str(runtime.get("cache_dir", output_dir / "cache")))
    cache_dir.mkdir(parents=True, exist_ok=True)

    use_cached_data = _yaml_bool(runtime, "use_cached_data", "runtime", False)
    cache_max_age_hours: Optional[float] = None
    if runtime.get("cache_max_age_hours") is not None:
        cache_max_age_hours = _yaml_number(runtime, "cache_max_age_hours", "runtime", 0)

    # Diagram defaults
    d = _section(raw, "diagram")
    try:
        lane_width = int(d.get("lane_width", 2400))
    except (TypeError, ValueError) as exc:
        raise RuntimeError("diagram.lane_width must be an integer (pixels)") from exc
    if lane_width <= 0:
        raise RuntimeError("diagram.lane_width must be greater than 0 (pixels)")
    diagram = DiagramSettings(
        grouping=str(d.get("grouping", "VLAN")),
        swim_lanes=_yaml_bool(d, "swim_lanes", "diagram", False),
        show_isolated=_yaml_bool(d, "show_isolated", "diagram", True),
        highlight_gateways=_yaml_bool(d, "highlight_gateways", "diagram", False),
        lane_width=lane_width,
        html_labels=_yaml_bool(d, "html_labels", "diagram", True),
    )

    return Settings(
        vcenter=vcenter,
        output_dir=output_dir,
        cache_dir=cache_dir,
        use_cached_data=use_cached_data,
        cache_max_age_hours=cache_max_age_hours,
        diagram=diagram,
        thresholds=_parse_thresholds(_section(raw, "thresholds")),
        log_level=log_level,
        log_dir=log_dir,
    )


def load_settings(config_file: Optional[str] = None) -> Settings:
    """Load settings from a YAML file (argument or APP_CONFIG_FILE) or from environment variables."""

    # YAML-first mode (single source of truth)
    app_config_file = config_file or os.getenv("APP_CONFIG_FILE")
    if app_config_file:
        return _load_settings_from_yaml(app_config_file)

    # Environment mode
    host = os.getenv("VCENTER_HOST")

    # Prioritize direct env var over file-based secret
    password = os.getenv("VCENTER_PASSWORD")
    if not password:
        password = _read_secret_file(os.getenv("VCENTER_PASSWORD_FILE"))

    try:
        port = int(os.getenv("VCENTER_PORT", "443"))
    except ValueError as exc:
        raise RuntimeError("VCENTER_PORT must be an integer.") from exc

    vcenter = VCenterSettings(
        host=_normalize_vcenter_host(host) if host and host.strip() else None,
        user=os.getenv("VCENTER_USER"),
        password=password,
        port=port,
        verify_ssl=_env_bool("VCENTER_VERIFY_SSL", default=True),
    )

    output_dir = Path(os.getenv("OUTPUT_DIR", "output"))
    output_dir.mkdir(parents=True, exist_ok=True)

    cache_dir = Path(os.getenv("CACHE_DIR", str(output_dir / "cache")))
    cache_dir.mkdir(parents=True, exist_ok=True)

    log_dir = os.getenv("LOG_DIR")
    max_age = os.getenv("CACHE_MAX_AGE_HOURS")
    try:
        cache_max_age_hours = float(max_age) if max_age else None
    except ValueError as exc:
        raise RuntimeError("CACHE_MAX_AGE_HOURS must be a number of hours.") from exc

    return Settings(
        vcenter=vcenter,
        output_dir=output_dir,
        cache_dir=cache_dir,
        use_cached_data=_env_bool("USE_CACHED_DATA", default=False),
        cache_max_age_hours=cache_max_age_hours,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=Path(log_dir) if log_dir else None,
    )
