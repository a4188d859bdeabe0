"""Pydantic models for the crate manifest and the pipeline file.

CrateManifest is the validated subset of Cargo.toml the pipeline relies
on: the package identity that ends up in the npm package, the archive
filename and the release tag. PipelineFileSchema validates the optional
wasm-release.yaml that pins per-project pipeline options.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wasm_release.config import BindingsTarget, BuildProfile

# https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string
SEMVER_PATTERN = re.compile(
    r"(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?"
)
CRATE_NAME_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_\-]*")
NPM_SCOPE_PATTERN = re.compile(r"[a-z0-9][a-z0-9._\-]*")

ARCHIVE_EXTENSION = "tgz"


def check_scope(scope: str) -> str:
    """Return an npm scope without its leading '@'.

    Raises:
        ValueError: If the scope is not a valid npm scope.
    """
    bare = scope.lstrip("@")
    if not NPM_SCOPE_PATTERN.fullmatch(bare):
        raise ValueError(f"scope must be a valid npm scope, got '{scope}'")
    return bare


class CrateManifest(BaseModel):
    """Package identity read from Cargo.toml.

    Attributes:
        name: Crate name; wasm-pack uses it verbatim as the npm package name.
        version: Semantic version, used verbatim in the archive filename.
        description: Optional package description.
        license: Optional SPDX license expression.
        repository: Optional repository URL.
        crate_types: ``[lib] crate-type`` entries.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Crate name")
    version: str = Field(description="Semantic version")
    description: str | None = Field(default=None)
    license: str | None = Field(default=None)
    repository: str | None = Field(default=None)
    crate_types: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is a usable crate/npm package name."""
        if not CRATE_NAME_PATTERN.fullmatch(v):
            raise ValueError(
                f"name must match {CRATE_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version is a semantic version."""
        if not SEMVER_PATTERN.fullmatch(v):
            raise ValueError(f"version must be a semantic version, got '{v}'")
        return v

    @field_validator("crate_types")
    @classmethod
    def validate_crate_types(cls, v: list[str]) -> list[str]:
        """A WebAssembly module can only come from a cdylib."""
        if v and "cdylib" not in v:
            raise ValueError(
                "[lib] crate-type must include 'cdylib' to build a WebAssembly "
                f"module, got {v}"
            )
        return v

    def package_name(self, scope: str | None = None) -> str:
        """Return the npm package name wasm-pack generates.

        Args:
            scope: Optional npm scope (without '@').

        Returns:
            ``name`` or ``@scope/name``.
        """
        if scope:
            return f"@{scope}/{self.name}"
        return self.name

    def archive_filename(self, scope: str | None = None) -> str:
        """Return the tarball filename npm pack produces for this package.

        Scoped packages are flattened the way npm does it:
        ``@scope/name`` becomes ``scope-name``.

        Args:
            scope: Optional npm scope (without '@').

        Returns:
            ``<package>-<version>.tgz``.
        """
        return f"{self.archive_prefix(scope)}{self.version}.{ARCHIVE_EXTENSION}"

    def archive_prefix(self, scope: str | None = None) -> str:
        """Return the ``<package>-`` prefix shared by every archive of this package."""
        package = self.package_name(scope).lstrip("@").replace("/", "-")
        return f"{package}-"


class PipelineFileSchema(BaseModel):
    """Schema for the optional wasm-release.yaml pipeline file.

    Every field is optional; unset fields fall back to settings.
    """

    model_config = ConfigDict(extra="forbid")

    target: str | None = Field(default=None, description="Rust target triple")
    bindings_target: BindingsTarget | None = Field(
        default=None, description="wasm-pack --target"
    )
    profile: BuildProfile | None = Field(default=None, description="Build profile")
    scope: str | None = Field(default=None, description="npm scope without '@'")
    wasm_pack_version: str | None = Field(default=None)
    selector: str | None = Field(
        default=None, description="Glob selecting archives to publish"
    )
    output_dir: str | None = Field(
        default=None, description="Final artifact layer directory"
    )

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v: str | None) -> str | None:
        """Validate scope is a bare npm scope."""
        if v is None:
            return v
        return check_scope(v)


__all__ = [
    "ARCHIVE_EXTENSION",
    "CRATE_NAME_PATTERN",
    "NPM_SCOPE_PATTERN",
    "SEMVER_PATTERN",
    "CrateManifest",
    "PipelineFileSchema",
    "check_scope",
]
