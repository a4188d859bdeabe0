"""Configuration settings for wasm_release.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > pipeline file >
env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TARGET = "wasm32-unknown-unknown"
DEFAULT_GITHUB_API_URL = "https://api.github.com"

BindingsTarget = Literal["web", "bundler", "nodejs", "no-modules", "deno"]
BuildProfile = Literal["release", "dev", "profiling"]


def _default_scrub_env_vars() -> list[str]:
    """Return the credential variables hidden from toolchain subprocesses."""
    return [
        "GITHUB_TOKEN",
        "WASM_RELEASE_GITHUB_TOKEN",
        "NPM_TOKEN",
        "NODE_AUTH_TOKEN",
        "CARGO_REGISTRY_TOKEN",
    ]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the WASM_RELEASE_
    prefix. The GitHub connection fields also accept the variables GitHub
    Actions injects (GITHUB_TOKEN, GITHUB_REPOSITORY, GITHUB_API_URL).
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="WASM_RELEASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths
    work_dir: Path | None = Field(
        default=None,
        description="Parent directory for build environments (system temp if not set)",
    )
    keep_build_env: bool = Field(
        default=False,
        description="Keep the build environment after the run for debugging",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Toolchain
    target: str = Field(
        default=DEFAULT_TARGET,
        description="Rust target triple to compile for",
    )
    bindings_target: BindingsTarget = Field(
        default="web",
        description="wasm-pack --target for the generated JS bindings",
    )
    profile: BuildProfile = Field(
        default="release",
        description="wasm-pack build profile",
    )
    wasm_pack_version: str = Field(
        default="latest",
        description="wasm-pack version to provision ('latest' or X.Y.Z)",
    )
    wasm_pack_install: Literal["download", "cargo"] = Field(
        default="download",
        description="How to install wasm-pack when it is not already available",
    )
    isolate_cargo_home: bool = Field(
        default=True,
        description="Point CARGO_HOME inside the build environment",
    )
    scrub_env_vars: list[str] = Field(
        default_factory=_default_scrub_env_vars,
        description="Environment variables removed from toolchain subprocesses",
    )

    # Timeouts (in seconds)
    provision_timeout: int = Field(
        default=900,
        ge=1,
        description="Timeout for toolchain provisioning commands",
    )
    compile_timeout: int = Field(
        default=3600,
        ge=1,
        description="Timeout for wasm-pack build",
    )
    pack_timeout: int = Field(
        default=600,
        ge=1,
        description="Timeout for wasm-pack pack",
    )
    http_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for each HTTP request",
    )

    # Release endpoint
    github_api_url: str = Field(
        default=DEFAULT_GITHUB_API_URL,
        validation_alias=AliasChoices("WASM_RELEASE_GITHUB_API_URL", "GITHUB_API_URL"),
        description="GitHub REST API base URL",
    )
    github_repository: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "WASM_RELEASE_GITHUB_REPOSITORY", "GITHUB_REPOSITORY"
        ),
        description="owner/name of the repository that receives releases",
    )
    github_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("WASM_RELEASE_GITHUB_TOKEN", "GITHUB_TOKEN"),
        description="Token used to create releases and upload assets",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    The release token is always masked.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_GITHUB_API_URL",
    "DEFAULT_TARGET",
    "BindingsTarget",
    "BuildProfile",
    "Settings",
    "get_settings",
    "print_settings_json",
]
