# settings.py
import logging
import threading
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from dynaconf import Dynaconf, Validator, loaders
from dynaconf.validator import ValidationError as DynaconfValidationError

from exceptions import ConfigurationError
from interfaces.local import DEFAULT_VPN_PATTERNS

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "config/settings.toml"
ENVVAR_PREFIX = "IPSCAN"
AUTO_SUBNET = "auto"
DEFAULT_PROVIDER = "local"

# Settings attribute -> (section, key) in the TOML file.
SETTINGS_KEYS = {
    "devices_file": ("general", "devices_file"),
    "memory_only": ("general", "memory_only"),
    "lookup_vendors": ("general", "lookup_vendors"),
    "scan_timeout_ms": ("scan", "timeout_ms"),
    "max_concurrent_scans": ("scan", "max_concurrent"),
    "dns_timeout_ms": ("scan", "dns_timeout_ms"),
    "resolve_mac": ("scan", "resolve_mac"),
    "subnet": ("scan", "subnet"),
    "custom_subnet": ("scan", "custom_subnet"),
    "preferred_interface_id": ("interfaces", "preferred_id"),
    "vpn_patterns": ("interfaces", "vpn_patterns"),
    "auto_remove_missing_devices": ("devices", "auto_remove_missing"),
    "missed_scans_before_removal": ("devices", "missed_scans_before_removal"),
    "show_offline_devices": ("devices", "show_offline"),
}

VALIDATORS = [
    Validator("scan.timeout_ms", gte=1),
    Validator("scan.max_concurrent", gte=1),
    Validator("scan.dns_timeout_ms", gte=1),
    Validator("devices.missed_scans_before_removal", gte=1),
]


@dataclass
class Settings:
    devices_file: str = "devices.json"
    memory_only: bool = False
    lookup_vendors: bool = True
    scan_timeout_ms: int = 1000
    max_concurrent_scans: int = 100
    dns_timeout_ms: int = 2000
    resolve_mac: bool = True
    subnet: str = AUTO_SUBNET  # "auto" or "custom"
    custom_subnet: str = ""
    preferred_interface_id: str = ""
    vpn_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_VPN_PATTERNS))
    auto_remove_missing_devices: bool = False
    missed_scans_before_removal: int = 5
    show_offline_devices: bool = True

    @property
    def uses_custom_subnet(self) -> bool:
        return self.subnet.strip().lower() != AUTO_SUBNET and bool(self.custom_subnet.strip())

    def to_sections(self) -> Dict[str, Dict[str, Any]]:
        """Regroups the flat settings into their TOML sections."""
        sections: Dict[str, Dict[str, Any]] = {}
        values = asdict(self)
        for attr, (section, key) in SETTINGS_KEYS.items():
            sections.setdefault(section, {})[key] = values[attr]
        return sections


def coerce_value(attr: str, raw: str) -> Any:
    """Converts a command-line string to the type of the setting's default."""
    default = getattr(Settings(), attr)
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ConfigurationError(f"{attr} expects true/false, got {raw!r}")
    if isinstance(default, int):
        try:
            value = int(raw)
        except ValueError as err:
            raise ConfigurationError(f"{attr} expects an integer, got {raw!r}") from err
        if value < 1:
            raise ConfigurationError(f"{attr} must be at least 1")
        return value
    if isinstance(default, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


class DynaconfSettingsProvider:
    """Loads settings from a TOML file (plus IPSCAN_* environment overrides)."""

    def __init__(self, settings_file: str = DEFAULT_SETTINGS_FILE):
        self.settings_file = Path(settings_file)
        self._lock = threading.Lock()
        self._cache: Optional[Settings] = None
        self.provider_name = DEFAULT_PROVIDER

    def _load_config(self) -> Dynaconf:
        config = Dynaconf(
            settings_files=[str(self.settings_file)],
            envvar_prefix=ENVVAR_PREFIX,
            validators=VALIDATORS,
        )
        try:
            config.validators.validate()
        except DynaconfValidationError as err:
            raise ConfigurationError(f"Invalid settings in {self.settings_file}: {err}") from err
        self.provider_name = config.get("interfaces.provider", DEFAULT_PROVIDER)
        return config

    def get_config(self) -> Dynaconf:
        return self._load_config()

    def get_settings(self) -> Settings:
        with self._lock:
            if self._cache is None:
                self._cache = self._from_config(self._load_config())
                logger.debug(f"Loaded settings from {self.settings_file}")
            return self._cache

    def save_settings(self, settings: Settings) -> None:
        with self._lock:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            sections = settings.to_sections()
            sections["interfaces"]["provider"] = self.provider_name
            loaders.write(str(self.settings_file), sections)
            self._cache = settings
            logger.debug(f"Saved settings to {self.settings_file}")

    def reset_to_defaults(self) -> Settings:
        defaults = Settings()
        self.save_settings(defaults)
        logger.info("Settings reset to defaults")
        return defaults

    def set_value(self, attr: str, raw: str) -> Settings:
        if attr not in SETTINGS_KEYS:
            raise ConfigurationError(f"Unknown setting: {attr}")
        current = self.get_settings()
        values = {f.name: getattr(current, f.name) for f in fields(Settings)}
        values[attr] = coerce_value(attr, raw)
        updated = Settings(**values)
        self.save_settings(updated)
        return updated

    @staticmethod
    def _from_config(config: Dynaconf) -> Settings:
        defaults = Settings()
        values = {}
        for attr, (section, key) in SETTINGS_KEYS.items():
            value = config.get(f"{section}.{key}", getattr(defaults, attr))
            if isinstance(getattr(defaults, attr), list):
                value = [str(v) for v in value]
            values[attr] = value
        return Settings(**values)
