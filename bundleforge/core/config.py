"""
Configuration management for bundleforge.

Two layers of configuration exist:

* ``Config`` holds process-wide settings (logging, tool locations, dev server
  tuning) with environment variable overrides.
* ``BuildTarget`` is the immutable description of one build invocation. It is
  loaded from ``bundleforge.json`` (camelCase keys) in the project root,
  overlaid with environment variables and CLI flags, and then validated against
  the filesystem before any stage runs.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel, to_snake

from .exceptions import ConfigError

# Load .env file if it exists (looks in cwd and parent directories)
load_dotenv()

CONFIG_FILENAME = "bundleforge.json"
ENV_PREFIX = "BUNDLEFORGE_"

BuildMode = Literal["development", "production"]


class ToolsConfig(BaseModel):
    """External tools configuration."""

    wasm_pack_path: Path | None = Field(default=None, description="Custom wasm-pack path")
    tsc_path: Path | None = Field(default=None, description="Custom tsc path")
    esbuild_path: Path | None = Field(default=None, description="Custom esbuild path")
    compile_timeout_seconds: int = Field(default=600, ge=10, description="Toolchain timeout")
    bundle_timeout_seconds: int = Field(default=300, ge=10, description="Bundler timeout")


class DevServerConfig(BaseModel):
    """Development server tuning."""

    host: str = Field(default="127.0.0.1", description="Interface to bind")
    poll_interval_seconds: float = Field(default=0.5, gt=0, description="Watcher poll interval")
    debounce_seconds: float = Field(default=0.2, ge=0, description="Quiet period before rebuilding")
    livereload_path: str = Field(default="/__bundleforge/livereload", description="WebSocket path")


class Config(BaseModel):
    """Root process configuration for bundleforge."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    cache_dir: Path = Field(default=Path(".bundleforge"), description="Cache directory")
    use_prefect: bool = Field(default=True, description="Run one-shot builds as a Prefect flow")
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    devserver: DevServerConfig = Field(default_factory=DevServerConfig)

    model_config = {"extra": "ignore"}

    @classmethod
    def from_env(cls) -> Config:
        """Create configuration from environment variables."""
        return cls(
            log_level=os.environ.get(f"{ENV_PREFIX}LOG_LEVEL", "INFO").upper(),  # type: ignore
            cache_dir=Path(os.environ.get(f"{ENV_PREFIX}CACHE_DIR", ".bundleforge")),
            use_prefect=os.environ.get(f"{ENV_PREFIX}USE_PREFECT", "true").lower() == "true",
            tools=ToolsConfig(
                wasm_pack_path=_optional_path(os.environ.get("WASM_PACK_PATH")),
                tsc_path=_optional_path(os.environ.get("TSC_PATH")),
                esbuild_path=_optional_path(os.environ.get("ESBUILD_PATH")),
            ),
            devserver=DevServerConfig(
                host=os.environ.get(f"{ENV_PREFIX}HOST", "127.0.0.1"),
                poll_interval_seconds=float(os.environ.get(f"{ENV_PREFIX}POLL_INTERVAL", "0.5")),
            ),
        )


def _optional_path(value: str | None) -> Path | None:
    return Path(value).expanduser() if value else None


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.from_env()


class BuildTarget(BaseModel):
    """Immutable description of one build invocation.

    Field names accept both snake_case and the camelCase spelling used in
    ``bundleforge.json``. Relative paths are resolved against ``root``.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    root: Path = Field(default_factory=Path.cwd, description="Project root")
    entry: Path = Field(default=Path("js/index.ts"), description="Entry module")
    output_dir: Path = Field(default=Path("dist"), description="Output directory")
    output_filename: str = Field(default="index.js", description="Entry bundle file name")
    mode: BuildMode = Field(default="production", description="Build mode")
    static_asset_dirs: tuple[Path, ...] = Field(
        default=(Path("static"),), description="Static asset directories, in layering order"
    )
    crate_dir: Path = Field(default=Path("."), description="Rust crate directory")
    staging_dir: Path | None = Field(
        default=None, description="Glue/binary staging directory (default <crateDir>/pkg)"
    )
    dev_server_port: int = Field(default=3000, ge=1, le=65535, description="Dev server port")
    resolve_extensions: tuple[str, ...] = Field(
        default=(".tsx", ".ts", ".js"), description="Extension resolution priority"
    )
    compress: bool = Field(default=True, description="Gzip dev server responses")

    @field_validator("resolve_extensions")
    @classmethod
    def _normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("at least one extension is required")
        normalized = tuple(ext if ext.startswith(".") else f".{ext}" for ext in value)
        if len(set(normalized)) != len(normalized):
            raise ValueError("extensions must be unique")
        return normalized

    @field_validator("output_filename")
    @classmethod
    def _plain_filename(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value:
            raise ValueError("output filename must be a plain file name")
        return value

    def _abs(self, path: Path) -> Path:
        # normalized, not resolved: the dev server output is a symlink
        return path if path.is_absolute() else Path(os.path.normpath(self.root / path))

    @property
    def entry_path(self) -> Path:
        return self._abs(self.entry)

    @property
    def output_path(self) -> Path:
        return self._abs(self.output_dir)

    @property
    def crate_path(self) -> Path:
        return self._abs(self.crate_dir)

    @property
    def staging_path(self) -> Path:
        if self.staging_dir is not None:
            return self._abs(self.staging_dir)
        return self.crate_path / "pkg"

    @property
    def asset_paths(self) -> list[Path]:
        return [self._abs(p) for p in self.static_asset_dirs]

    @property
    def is_development(self) -> bool:
        return self.mode == "development"

    def with_overrides(self, **overrides: Any) -> BuildTarget:
        """Return a copy with non-None overrides applied and re-validated."""
        data = self.model_dump()
        data.update(_snake_keys({k: v for k, v in overrides.items() if v is not None}))
        return build_target_from_mapping(data)

    def validate_inputs(self) -> None:
        """Check the filesystem contract consumed by a build.

        Raises:
            ConfigError: If the entry module or the crate manifest is missing,
                or if the output directory would overwrite an input tree.
        """
        if not self.entry_path.is_file():
            raise ConfigError(
                message=f"Entry module not found: {self.entry_path}",
                option="entry",
                path=str(self.entry_path),
            )
        manifest = self.crate_path / "Cargo.toml"
        if not manifest.is_file():
            raise ConfigError(
                message=f"Crate manifest not found: {manifest}",
                option="crateDir",
                path=str(manifest),
            )
        output = self.output_path
        for guarded in (self.root.resolve(), self.crate_path, *self.asset_paths):
            if output == guarded or output in guarded.parents:
                raise ConfigError(
                    message=f"Output directory {output} would replace input tree {guarded}",
                    option="outputDir",
                    path=str(output),
                )
        for guarded in self.asset_paths:
            if guarded in output.parents:
                raise ConfigError(
                    message=f"Output directory {output} is inside static asset directory {guarded}",
                    option="outputDir",
                    path=str(output),
                )


def build_target_from_mapping(data: dict[str, Any]) -> BuildTarget:
    """Validate a raw mapping into a BuildTarget, mapping failures to ConfigError."""
    try:
        return BuildTarget.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        option = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ConfigError(
            message=first.get("msg", str(e)),
            option=option,
            cause=e,
        ) from e


def _snake_keys(data: dict[str, Any]) -> dict[str, Any]:
    # camelCase and snake_case spellings of one option must collapse to one key
    return {to_snake(key): value for key, value in data.items()}


def _env_overrides() -> dict[str, Any]:
    """Read BuildTarget overrides from BUNDLEFORGE_* environment variables."""
    overrides: dict[str, Any] = {}
    scalar = {
        "ENTRY": "entry",
        "OUTPUT_DIR": "outputDir",
        "MODE": "mode",
        "CRATE_DIR": "crateDir",
        "DEV_SERVER_PORT": "devServerPort",
    }
    for env_name, key in scalar.items():
        value = os.environ.get(f"{ENV_PREFIX}{env_name}")
        if value:
            overrides[key] = value
    listed = {"STATIC_ASSET_DIRS": "staticAssetDirs", "RESOLVE_EXTENSIONS": "resolveExtensions"}
    for env_name, key in listed.items():
        value = os.environ.get(f"{ENV_PREFIX}{env_name}")
        if value:
            overrides[key] = [part.strip() for part in value.split(",") if part.strip()]
    return overrides


def load_build_target(
    root: Path | None = None,
    config_file: Path | None = None,
    **overrides: Any,
) -> BuildTarget:
    """Load the build target for a project.

    Precedence, lowest first: defaults, ``bundleforge.json``, environment,
    explicit ``overrides`` (CLI flags). ``None`` overrides are ignored.

    Args:
        root: Project root. Defaults to the config file's directory or cwd.
        config_file: Explicit config file. Must exist when given.
        **overrides: snake_case or camelCase BuildTarget fields.

    Returns:
        A validated, frozen BuildTarget.

    Raises:
        ConfigError: On an unreadable config file or invalid values.
    """
    if config_file is not None and not config_file.is_file():
        raise ConfigError(
            message=f"Config file not found: {config_file}",
            path=str(config_file),
        )
    if root is None:
        root = config_file.parent if config_file is not None else Path.cwd()
    root = root.resolve()
    path = config_file or root / CONFIG_FILENAME

    data: dict[str, Any] = {}
    if path.is_file():
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(message=f"Cannot read {path}: {e}", path=str(path), cause=e) from e
        if not isinstance(loaded, dict):
            raise ConfigError(message=f"{path} must contain a JSON object", path=str(path))
        data.update(_snake_keys(loaded))

    data.update(_snake_keys(_env_overrides()))
    data.update(_snake_keys({k: v for k, v in overrides.items() if v is not None}))
    data["root"] = root
    return build_target_from_mapping(data)
