"""Shared fixtures: crate source trees, package tarballs and a fake toolchain.

The fake toolchain stands in for rustup, cargo and wasm-pack by patching
subprocess.run. wasm-pack build writes a pkg/ directory the way the real
tool does and wasm-pack pack writes an npm-style tarball next to it.
"""

import gzip
import io
import json
import subprocess
import tarfile
import tomllib
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from pydantic import SecretStr

from wasm_release.config import Settings


def write_crate(
    root: Path,
    name: str = "fazer",
    version: str = "0.1.0",
    crate_types: tuple[str, ...] = ("cdylib",),
) -> Path:
    """Write a minimal Rust crate and return its root."""
    root.mkdir(parents=True, exist_ok=True)
    crate_type_list = ", ".join(f'"{t}"' for t in crate_types)
    (root / "Cargo.toml").write_text(
        f"""[package]
name = "{name}"
version = "{version}"
edition = "2021"
description = "A test crate"
license = "MIT"

[lib]
crate-type = [{crate_type_list}]

[dependencies]
wasm-bindgen = "0.2"
""",
        encoding="utf-8",
    )
    (root / "src").mkdir(exist_ok=True)
    (root / "src" / "lib.rs").write_text(
        "use wasm_bindgen::prelude::*;\n", encoding="utf-8"
    )
    return root


def default_package_json(name: str, version: str) -> dict[str, Any]:
    """Return the package.json wasm-pack generates for a web target."""
    stem = name.rsplit("/", 1)[-1].replace("-", "_")
    return {
        "name": name,
        "type": "module",
        "version": version,
        "files": [f"{stem}_bg.wasm", f"{stem}.js", f"{stem}.d.ts"],
        "module": f"{stem}.js",
        "types": f"{stem}.d.ts",
        "sideEffects": ["./snippets/*"],
    }


def write_pkg_dir(pkg_dir: Path, package_json: dict[str, Any]) -> None:
    """Write the files wasm-pack build produces."""
    pkg_dir.mkdir(parents=True, exist_ok=True)
    stem = package_json["name"].rsplit("/", 1)[-1].replace("-", "_")
    (pkg_dir / f"{stem}_bg.wasm").write_bytes(b"\x00asm\x01\x00\x00\x00")
    (pkg_dir / f"{stem}.js").write_text("export default function init() {}\n")
    (pkg_dir / f"{stem}.d.ts").write_text("export default function init(): void;\n")
    (pkg_dir / "package.json").write_text(json.dumps(package_json, indent=2))


def write_package_tarball(
    path: Path,
    files: dict[str, bytes],
    root: str = "package",
) -> Path:
    """Write an npm-style tarball with every file under ``root/``.

    The output depends only on the inputs: member and gzip header
    timestamps are fixed, as they are in npm's own tarballs.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with (
        gzip.GzipFile(path, "wb", mtime=0) as gz,
        tarfile.open(fileobj=gz, mode="w") as tar,
    ):
        for name, data in files.items():
            info = tarfile.TarInfo(name=f"{root}/{name}" if root else name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


def make_package_files(package_json: dict[str, Any]) -> dict[str, bytes]:
    """Return the file set of a well-formed package for a package.json."""
    stem = package_json["name"].rsplit("/", 1)[-1].replace("-", "_")
    return {
        "package.json": json.dumps(package_json).encode(),
        f"{stem}_bg.wasm": b"\x00asm\x01\x00\x00\x00",
        f"{stem}.js": b"export default function init() {}\n",
        f"{stem}.d.ts": b"export default function init(): void;\n",
    }


class FakeToolchain:
    """subprocess.run replacement simulating rustup, cargo and wasm-pack.

    Attributes:
        calls: Every command that was run.
        wasm_pack_version: Reported by ``wasm-pack --version``; None means
            wasm-pack is not installed.
        failures: Maps "rustup", "cargo", "build" or "pack" to
            (exit code, output) to make that tool fail.
        package_version: Overrides the version written to package.json.
        produce_archive: Set False to make pack succeed without an archive.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.wasm_pack_version: str | None = "0.13.1"
        self.failures: dict[str, tuple[int, str]] = {}
        self.package_version: str | None = None
        self.produce_archive = True

    def commands(self, tool: str) -> list[list[str]]:
        """Return the recorded invocations of one tool or subcommand."""
        return [c for c in self.calls if tool in (c[0], c[1] if len(c) > 1 else "")]

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        self.calls.append(list(cmd))

        if kwargs.get("capture_output"):
            if self.wasm_pack_version is None:
                raise FileNotFoundError(cmd[0])
            return subprocess.CompletedProcess(
                cmd, 0, stdout=f"wasm-pack {self.wasm_pack_version}\n", stderr=""
            )

        log = kwargs.get("stdout")
        key = cmd[1] if cmd[0] == "wasm-pack" else cmd[0]
        if key in self.failures:
            returncode, output = self.failures[key]
            if log is not None:
                log.write(output)
            return subprocess.CompletedProcess(cmd, returncode)

        if key == "build":
            self._build(cmd, Path(kwargs["cwd"]))
        elif key == "cargo":
            self._cargo_install(cmd)
        elif key == "pack":
            self._pack(Path(cmd[2]))
        if log is not None:
            log.write(f"[INFO]: {' '.join(cmd)} done\n")
        return subprocess.CompletedProcess(cmd, 0)

    def _build(self, cmd: list[str], cwd: Path) -> None:
        with (cwd / "Cargo.toml").open("rb") as f:
            package = tomllib.load(f)["package"]
        name = package["name"]
        if "--scope" in cmd:
            name = f"@{cmd[cmd.index('--scope') + 1]}/{name}"
        version = self.package_version or package["version"]
        out_dir = cmd[cmd.index("--out-dir") + 1]
        write_pkg_dir(cwd / out_dir, default_package_json(name, version))

    def _cargo_install(self, cmd: list[str]) -> None:
        if "--version" in cmd:
            self.wasm_pack_version = cmd[cmd.index("--version") + 1]
        else:
            self.wasm_pack_version = "0.13.1"

    def _pack(self, pkg_dir: Path) -> None:
        if not self.produce_archive:
            return
        package_json = json.loads((pkg_dir / "package.json").read_text())
        archive = (
            package_json["name"].lstrip("@").replace("/", "-")
            + f"-{package_json['version']}.tgz"
        )
        files = {
            p.name: p.read_bytes()
            for p in sorted(pkg_dir.iterdir())
            if p.is_file() and not p.name.endswith(".tgz")
        }
        write_package_tarball(pkg_dir / archive, files)


@pytest.fixture
def fazer_source(tmp_path: Path) -> Path:
    """Source tree of the fazer 0.1.0 crate."""
    return write_crate(tmp_path / "fazer")


@pytest.fixture
def fake_toolchain() -> Iterator[FakeToolchain]:
    """Patch subprocess.run with a FakeToolchain."""
    fake = FakeToolchain()
    with patch("subprocess.run", side_effect=fake):
        yield fake


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the host environment."""
    return Settings(
        work_dir=tmp_path / "work",
        github_api_url="https://api.github.com",
        github_repository="owner/fazer",
        github_token=SecretStr("test-token"),
        wasm_pack_install="download",
        _env_file=None,
    )


LINUX_TRIPLE = "x86_64-unknown-linux-musl"


def make_wasm_pack_tarball(
    version: str = "0.13.1",
    triple: str = LINUX_TRIPLE,
    binary_name: str = "wasm-pack",
    extra_member: str | None = None,
) -> bytes:
    """Build a wasm-pack release tarball in memory."""
    buffer = io.BytesIO()
    folder = f"wasm-pack-v{version}-{triple}"
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, data in (
            (f"{folder}/{binary_name}", b"#!/bin/sh\necho wasm-pack\n"),
            (f"{folder}/LICENSE-MIT", b"MIT"),
        ):
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        if extra_member:
            info = tarfile.TarInfo(name=extra_member)
            info.size = 1
            tar.addfile(info, io.BytesIO(b"x"))
    return buffer.getvalue()
