"""
Terminal Fleet Configuration.

Settings are loaded from (highest priority first):
- keyword arguments passed to AppSettings
- the TOML file (fleet_config.toml at the project root, or load_settings(path))
- environment variables / .env / secrets
"""
import tempfile
from pathlib import Path
from typing import Callable, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    InitSettingsSource,
    SecretsSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# Project root holds the default config file.
BASE_DIR = Path(__file__).resolve().parent.parent.parent
TOML_PATH = BASE_DIR / "fleet_config.toml"

TEMP_DIR = Path(tempfile.gettempdir())


class LoggingConfig(BaseModel):
    level: str = "INFO"
    console: bool = True
    log_file: str = str(TEMP_DIR / "terminal_fleet.log")
    format: str = "[%(asctime)s] %(message)s"
    date_format: str = "%Y-%m-%dT%H:%M:%S"


class FetchConfig(BaseModel):
    """Download and retry settings shared by every fetch."""

    max_retries: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=5.0, ge=0)
    timeout_seconds: float = 120.0
    staging_dir: str = str(TEMP_DIR / "terminal_fleet")


class ManifestConfig(BaseModel):
    url: str = ""
    plugin_base_url: str = ""
    config_bundle_url_template: str = ""  # e.g. "https://host/bundles/challenge_{index}.zip"


class FamilyConfig(BaseModel):
    """
    One application family (e.g. MetaTrader 4).

    `base_path` is the install directory of instance 1; instance N > 1 lives
    at "<base_path> N".
    """

    key: str
    display_name: str = ""
    base_path: str
    executable: str
    plugin_subpath: str
    install_timeout_seconds: int = 1800


class ProfileRootConfig(BaseModel):
    """
    Glob pattern matching per-user terminal data directories of a family.
    Environment variables (%APPDATA%, $HOME) are expanded before globbing.
    """

    family: str
    pattern: str


class InstancesConfig(BaseModel):
    max_instances: int = Field(default=10, ge=1)
    default_total: Optional[int] = None


class LaunchConfig(BaseModel):
    settle_seconds: float = Field(default=30.0, ge=0)
    portable_flag: str = "/portable"
    desktop_name_template: str = "Challenge {index}"
    desktop_backend: Literal["powershell", "none"] = "powershell"
    powershell_executable: str = "powershell.exe"


def _default_families() -> List[FamilyConfig]:
    return [
        FamilyConfig(
            key="mt4",
            display_name="MetaTrader 4",
            base_path=r"C:\Program Files (x86)\MetaTrader 4",
            executable="terminal.exe",
            plugin_subpath=r"MQL4\Experts",
        ),
        FamilyConfig(
            key="mt5",
            display_name="MetaTrader 5",
            base_path=r"C:\Program Files\MetaTrader 5",
            executable="terminal64.exe",
            plugin_subpath=r"MQL5\Experts",
        ),
    ]


def _default_profiles() -> List[ProfileRootConfig]:
    return [
        ProfileRootConfig(family="mt4", pattern=r"%APPDATA%\MetaQuotes\Terminal\*\MQL4\Experts"),
        ProfileRootConfig(family="mt5", pattern=r"%APPDATA%\MetaQuotes\Terminal\*\MQL5\Experts"),
    ]


class AppSettings(BaseSettings):
    """
    Main settings class. Uses defaults if the file or keys are missing.
    """

    logging: LoggingConfig = LoggingConfig()
    fetch: FetchConfig = FetchConfig()
    manifest: ManifestConfig = ManifestConfig()
    instances: InstancesConfig = InstancesConfig()
    launch: LaunchConfig = LaunchConfig()
    families: List[FamilyConfig] = Field(default_factory=_default_families)
    profiles: List[ProfileRootConfig] = Field(default_factory=_default_profiles)

    model_config = SettingsConfigDict(
        extra="forbid",
    )

    @field_validator("families")
    @classmethod
    def _unique_family_keys(cls, families: List[FamilyConfig]) -> List[FamilyConfig]:
        keys = [f.key for f in families]
        if len(keys) != len(set(keys)):
            raise ValueError(f"Duplicate family keys: {keys}")
        return families

    def family(self, key: str) -> FamilyConfig:
        for fam in self.families:
            if fam.key == key:
                return fam
        raise KeyError(f"Unknown family: {key}")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: InitSettingsSource,
        env_settings: EnvSettingsSource,
        dotenv_settings: DotEnvSettingsSource,
        file_secret_settings: SecretsSettingsSource,
    ) -> Tuple[Callable, ...]:
        """
        Define the priority order for loading settings sources.
        The TOML file is inserted right after the init kwargs.
        """
        return (
            init_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=_toml_path),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


_toml_path: Path = TOML_PATH
_settings: Optional[AppSettings] = None


def load_settings(toml_path: Optional[Path] = None, **overrides) -> AppSettings:
    """
    Load settings from the given TOML file (default: fleet_config.toml) and
    make them the active settings.

    Raises:
        FileNotFoundError: An explicit toml_path does not exist
    """
    global _toml_path, _settings
    if toml_path is not None and not Path(toml_path).is_file():
        raise FileNotFoundError(f"Config file not found: {toml_path}")
    _toml_path = Path(toml_path) if toml_path else TOML_PATH
    _settings = AppSettings(**overrides)
    return _settings


def get_settings() -> AppSettings:
    """Get the active settings, loading the default file on first access."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings():
    """Forget the active settings (useful for testing)."""
    global _toml_path, _settings
    _toml_path = TOML_PATH
    _settings = None
