from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

DEFAULT_CONFIG_FILENAME = ".mcfetch.json"
DEFAULT_ENV_FILENAME = ".env"
DEFAULT_USER_AGENT = "mcfetch/dev"
DEFAULT_MODRINTH_API = "https://api.modrinth.com/v2"
DEFAULT_CURSEFORGE_API = "https://api.curseforge.com/v1"
DEFAULT_GITHUB_PROXY = "https://gh-proxy.com"

USER_CONFIG_DIR = Path.home() / ".config" / "mcfetch"
USER_CONFIG_FILENAME = "config.json"
USER_CONFIG_PATH = USER_CONFIG_DIR / USER_CONFIG_FILENAME


class ConcurrencyConfig(BaseModel):
    file_detail: int = Field(default=20, ge=1, description="CurseForge file-detail batch size")
    dependency: int = Field(default=10, ge=1, description="Dependency-version batch size")
    server_ping: int = Field(default=20, ge=1, description="Server ping batch size")
    download: int = Field(default=8, ge=1, description="Concurrent downloads")


class FileConfig(BaseModel):
    name: str = "default-instance"
    minecraft_version: Optional[str] = None
    loader: Optional[str] = None
    api_user_agent: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    modrinth_api_base: Optional[str] = None
    curseforge_api_base: Optional[str] = None
    github_proxy_enabled: Optional[bool] = None
    github_proxy_url: Optional[str] = None
    concurrency: Optional[ConcurrencyConfig] = None
    request_timeout: Optional[float] = None
    ping_timeout: Optional[float] = None


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MCFETCH_", extra="ignore")

    instance_root: Optional[Path] = None
    minecraft_version: Optional[str] = None
    loader: Optional[str] = None
    api_user_agent: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    modrinth_api_base: Optional[str] = None
    curseforge_api_base: Optional[str] = None
    github_proxy_enabled: Optional[bool] = None
    github_proxy_url: Optional[str] = None
    download_concurrency: Optional[int] = None
    request_timeout: Optional[float] = None
    ping_timeout: Optional[float] = None


class FetchConfig(BaseModel):
    instance_root: Path
    name: str = "default-instance"
    minecraft_version: Optional[str] = None
    loader: Optional[str] = None
    api_user_agent: str = DEFAULT_USER_AGENT
    curseforge_api_key: Optional[str] = None
    modrinth_api_base: str = DEFAULT_MODRINTH_API
    curseforge_api_base: str = DEFAULT_CURSEFORGE_API
    github_proxy_enabled: bool = True
    github_proxy_url: str = DEFAULT_GITHUB_PROXY
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    request_timeout: float = 30.0
    ping_timeout: float = 5.0


class UserConfig(BaseModel):
    """Per-user defaults kept outside any instance."""

    instance_root: Optional[Path] = None
    curseforge_api_key: Optional[str] = None


ModelT = TypeVar("ModelT", bound=BaseModel)


def _coerce_path(base: Path, value: Path | str) -> Path:
    path = value if isinstance(value, Path) else Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _read_model(path: Path, model: Type[ModelT]) -> ModelT:
    if not path.is_file():
        return model()
    try:
        return model.model_validate_json(path.read_text(encoding="utf-8"))
    except ModelValidationError as exc:
        raise ConfigError(f"Invalid config in {path}: {exc}") from exc


def load_user_config() -> UserConfig:
    return _read_model(USER_CONFIG_PATH, UserConfig)


def save_user_config(cfg: UserConfig) -> Path:
    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    USER_CONFIG_PATH.write_text(cfg.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
    return USER_CONFIG_PATH


def find_instance_root(start: Path) -> Optional[Path]:
    """Nearest directory at or above ``start`` holding an instance config file."""

    for candidate in (start, *start.parents):
        if (candidate / DEFAULT_CONFIG_FILENAME).is_file():
            return candidate
    return None


def _instance_root(root: Path | None, user_cfg: UserConfig) -> Path:
    if root is not None:
        return Path(root).expanduser().resolve()
    cwd = Path.cwd().resolve()
    found = find_instance_root(cwd)
    if found is not None:
        return found
    if user_cfg.instance_root is not None:
        return Path(user_cfg.instance_root).expanduser().resolve()
    return cwd


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return "(not set)"
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"


def describe_config(cfg: FetchConfig) -> List[Tuple[str, str]]:
    """Label/value rows for displaying a resolved configuration."""

    proxy = cfg.github_proxy_url if cfg.github_proxy_enabled else "disabled"
    limits = cfg.concurrency
    return [
        ("Instance", f"{cfg.name} ({cfg.instance_root})"),
        ("Minecraft version", cfg.minecraft_version or "(not set)"),
        ("Loader", cfg.loader or "(vanilla)"),
        ("Modrinth API", cfg.modrinth_api_base),
        ("CurseForge API", cfg.curseforge_api_base),
        ("CurseForge key", mask_secret(cfg.curseforge_api_key)),
        ("GitHub proxy", proxy),
        (
            "Concurrency",
            f"download={limits.download} file_detail={limits.file_detail} "
            f"dependency={limits.dependency} server_ping={limits.server_ping}",
        ),
        ("Timeouts", f"request={cfg.request_timeout:g}s ping={cfg.ping_timeout:g}s"),
    ]


def load_config(root: Path | None = None) -> FetchConfig:
    """Resolve the instance configuration.

    Precedence is environment (including the instance ``.env``), then the
    instance ``.mcfetch.json``, then the user config, then defaults.
    """

    user_cfg = load_user_config()
    instance_root = _instance_root(root, user_cfg)
    env_file = instance_root / DEFAULT_ENV_FILENAME
    env_settings = EnvSettings(
        _env_file=env_file if env_file.exists() else None,
    )

    if env_settings.instance_root:
        instance_root = _coerce_path(instance_root, env_settings.instance_root)

    file_cfg = _read_model(instance_root / DEFAULT_CONFIG_FILENAME, FileConfig)

    concurrency = file_cfg.concurrency or ConcurrencyConfig()
    if env_settings.download_concurrency is not None:
        concurrency.download = env_settings.download_concurrency

    return FetchConfig(
        instance_root=instance_root,
        name=file_cfg.name,
        minecraft_version=env_settings.minecraft_version or file_cfg.minecraft_version,
        loader=env_settings.loader or file_cfg.loader,
        api_user_agent=env_settings.api_user_agent or file_cfg.api_user_agent or DEFAULT_USER_AGENT,
        curseforge_api_key=env_settings.curseforge_api_key
        or file_cfg.curseforge_api_key
        or user_cfg.curseforge_api_key,
        modrinth_api_base=env_settings.modrinth_api_base or file_cfg.modrinth_api_base or DEFAULT_MODRINTH_API,
        curseforge_api_base=env_settings.curseforge_api_base
        or file_cfg.curseforge_api_base
        or DEFAULT_CURSEFORGE_API,
        github_proxy_enabled=_first(env_settings.github_proxy_enabled, file_cfg.github_proxy_enabled, True),
        github_proxy_url=env_settings.github_proxy_url or file_cfg.github_proxy_url or DEFAULT_GITHUB_PROXY,
        concurrency=concurrency,
        request_timeout=_first(env_settings.request_timeout, file_cfg.request_timeout, 30.0),
        ping_timeout=_first(env_settings.ping_timeout, file_cfg.ping_timeout, 5.0),
    )
