"""Tests for the CLI.

Pipeline commands run against the fake toolchain; settings are patched so
the host environment never leaks into a test.
"""

import json
from unittest.mock import patch

import httpx
import pytest
import respx
from conftest import write_crate
from typer.testing import CliRunner

from wasm_release import __version__
from wasm_release.cli import EXIT_FAILURE, EXIT_TEMPFAIL, app

runner = CliRunner()

API = "https://api.github.com/repos/owner/fazer"


@pytest.fixture
def cli_settings(settings):
    """Patch the CLI's settings loader with isolated settings."""
    with patch("wasm_release.cli.get_settings", return_value=settings):
        yield settings


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "WebAssembly" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout

    @pytest.mark.parametrize(
        "command", ["run", "build", "provision", "publish", "check-tag", "manifest"]
    )
    def test_command_help(self, command) -> None:
        """Every command should have help."""
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_shows_sections(self, cli_settings) -> None:
        """CLI config should show every section."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Build environment:" in result.stdout
        assert "Toolchain:" in result.stdout
        assert "Timeouts (seconds):" in result.stdout
        assert "Releases:" in result.stdout
        assert "owner/fazer" in result.stdout
        assert "(set)" in result.stdout

    def test_config_json_masks_token(self, cli_settings) -> None:
        """CLI config --json should output JSON without the token."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["target"] == "wasm32-unknown-unknown"
        assert data["github_repository"] == "owner/fazer"
        assert "test-token" not in result.stdout


class TestCLIManifest:
    """Test CLI manifest command."""

    def test_manifest_json(self, cli_settings, fazer_source) -> None:
        """Should show the package identity and archive name."""
        result = runner.invoke(app, ["manifest", "-s", str(fazer_source), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["name"] == "fazer"
        assert data["version"] == "0.1.0"
        assert data["archive"] == "fazer-0.1.0.tgz"

    def test_manifest_scoped(self, cli_settings, fazer_source) -> None:
        """A scope should flatten into the archive name."""
        result = runner.invoke(
            app, ["manifest", "-s", str(fazer_source), "--scope", "@acme"]
        )
        assert result.exit_code == 0
        assert "@acme/fazer" in result.stdout
        assert "acme-fazer-0.1.0.tgz" in result.stdout

    def test_build_metadata_rejected(self, cli_settings, tmp_path) -> None:
        """A version with build metadata cannot name an archive."""
        source = write_crate(tmp_path / "meta", version="1.0.0+build.1")
        result = runner.invoke(app, ["manifest", "-s", str(source)])
        assert result.exit_code == EXIT_FAILURE

    def test_missing_manifest(self, cli_settings, tmp_path) -> None:
        """A missing Cargo.toml should exit 1."""
        result = runner.invoke(app, ["manifest", "-s", str(tmp_path)])
        assert result.exit_code == EXIT_FAILURE

    def test_invalid_scope(self, cli_settings, fazer_source) -> None:
        """A scope npm would reject should exit 1."""
        result = runner.invoke(
            app, ["manifest", "-s", str(fazer_source), "--scope", "Bad Scope"]
        )
        assert result.exit_code == EXIT_FAILURE
        assert "Bad Scope" in result.stdout


class TestCLICheckTag:
    """Test CLI check-tag command."""

    def test_release_tag(self, cli_settings, fazer_source) -> None:
        """A matching release tag should exit 0."""
        result = runner.invoke(
            app,
            [
                "check-tag",
                "--ref",
                "refs/tags/v0.1.0",
                "-s",
                str(fazer_source),
                "--json",
            ],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["release"] is True
        assert data["tag"] == "v0.1.0"
        assert data["matches_manifest"] is True

    def test_branch(self, cli_settings) -> None:
        """A branch ref is not a release."""
        result = runner.invoke(app, ["check-tag", "--ref", "refs/heads/main"])
        assert result.exit_code == 0
        assert "is not a release tag" in result.stdout

    def test_mismatch(self, cli_settings, fazer_source) -> None:
        """A tag that does not match Cargo.toml should exit 1."""
        result = runner.invoke(
            app, ["check-tag", "--ref", "refs/tags/v0.2.0", "-s", str(fazer_source)]
        )
        assert result.exit_code == EXIT_FAILURE
        assert "does not match" in result.stdout

    def test_malformed_tag(self, cli_settings) -> None:
        """A version-like tag that does not parse should exit 1."""
        result = runner.invoke(
            app, ["check-tag", "--ref", "refs/tags/v0.1.0+build.1", "--json"]
        )
        assert result.exit_code == EXIT_FAILURE
        data = json.loads(result.stdout)
        assert data["release"] is False
        assert data["error_code"] == "malformed_tag"

    def test_ref_from_environment(self, cli_settings) -> None:
        """GITHUB_REF should be used when --ref is not given."""
        result = runner.invoke(
            app, ["check-tag", "--json"], env={"GITHUB_REF": "refs/tags/v2.0.0-rc.1"}
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["version"] == "2.0.0-rc.1"
        assert data["prerelease"] is True


class TestCLIRun:
    """Test CLI run and build commands."""

    @respx.mock
    def test_branch_build_json(
        self, cli_settings, fazer_source, fake_toolchain, tmp_path
    ) -> None:
        """A branch push should build and skip publishing with exit 0."""
        output_dir = tmp_path / "dist"
        result = runner.invoke(
            app,
            [
                "-q",
                "run",
                "-s",
                str(fazer_source),
                "-o",
                str(output_dir),
                "--ref",
                "refs/heads/main",
                "--json",
            ],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["state"] == "done"
        assert data["stages"][-1]["status"] == "skipped"
        assert (output_dir / "fazer-0.1.0.tgz").is_file()
        assert respx.calls.call_count == 0

    def test_version_mismatch_exits_1(
        self, cli_settings, fazer_source, fake_toolchain, tmp_path
    ) -> None:
        """A tag that does not match Cargo.toml should fail preflight."""
        result = runner.invoke(
            app,
            [
                "run",
                "-s",
                str(fazer_source),
                "-o",
                str(tmp_path / "dist"),
                "--ref",
                "refs/tags/v0.2.0",
            ],
        )

        assert result.exit_code == EXIT_FAILURE
        assert "Failed at stage preflight" in result.stdout
        assert fake_toolchain.calls == []

    @respx.mock
    def test_malformed_tag_exits_1(
        self, cli_settings, fazer_source, fake_toolchain, tmp_path
    ) -> None:
        """A malformed release tag should fail preflight, not build."""
        output_dir = tmp_path / "dist"
        result = runner.invoke(
            app,
            [
                "run",
                "-s",
                str(fazer_source),
                "-o",
                str(output_dir),
                "--ref",
                "refs/tags/v01.0.0",
            ],
        )

        assert result.exit_code == EXIT_FAILURE
        assert "Failed at stage preflight" in result.stdout
        assert fake_toolchain.calls == []
        assert respx.calls.call_count == 0
        assert not output_dir.exists()

    def test_invalid_scope_exits_1(
        self, cli_settings, fazer_source, fake_toolchain, tmp_path
    ) -> None:
        """An invalid --scope should fail preflight like one from the file."""
        result = runner.invoke(
            app,
            [
                "run",
                "-s",
                str(fazer_source),
                "-o",
                str(tmp_path / "dist"),
                "--scope",
                "Acme",
            ],
        )

        assert result.exit_code == EXIT_FAILURE
        assert "Failed at stage preflight" in result.stdout
        assert fake_toolchain.calls == []

    def test_compile_failure_shows_output(
        self, cli_settings, fazer_source, fake_toolchain, tmp_path
    ) -> None:
        """A failed build should print the compiler output."""
        fake_toolchain.failures["build"] = (1, "error: expected one of `;`\n")

        result = runner.invoke(
            app,
            ["run", "-s", str(fazer_source), "-o", str(tmp_path / "dist")],
        )

        assert result.exit_code == EXIT_FAILURE
        assert "Failed at stage compiling" in result.stdout
        assert "error: expected one of `;`" in result.stdout

    @respx.mock
    def test_transient_publish_failure_exits_75(
        self, cli_settings, fazer_source, fake_toolchain, tmp_path
    ) -> None:
        """A transient publishing failure should exit with EX_TEMPFAIL."""
        respx.get(f"{API}/releases/tags/v0.1.0").mock(
            side_effect=httpx.ConnectError("connection reset")
        )

        result = runner.invoke(
            app,
            [
                "run",
                "-s",
                str(fazer_source),
                "-o",
                str(tmp_path / "dist"),
                "--ref",
                "refs/tags/v0.1.0",
            ],
        )

        assert result.exit_code == EXIT_TEMPFAIL

    @respx.mock
    def test_build_never_publishes(
        self, cli_settings, fazer_source, fake_toolchain, tmp_path
    ) -> None:
        """build should not publish even when GITHUB_REF is a release tag."""
        result = runner.invoke(
            app,
            ["build", "-s", str(fazer_source), "-o", str(tmp_path / "dist")],
            env={"GITHUB_REF": "refs/tags/v0.1.0"},
        )

        assert result.exit_code == 0, result.output
        assert (tmp_path / "dist" / "fazer-0.1.0.tgz").is_file()
        assert respx.calls.call_count == 0


class TestCLIProvision:
    """Test CLI provision command."""

    def test_provision(self, cli_settings, fake_toolchain) -> None:
        """Should report the target and wasm-pack version."""
        result = runner.invoke(app, ["provision"])
        assert result.exit_code == 0, result.output
        assert "wasm32-unknown-unknown" in result.stdout
        assert "wasm-pack 0.13.1 found" in result.stdout

    def test_provision_failure(self, cli_settings, fake_toolchain) -> None:
        """A failing rustup should exit 1 with its output."""
        fake_toolchain.failures["rustup"] = (1, "error: component download failed\n")
        result = runner.invoke(app, ["provision"])
        assert result.exit_code == EXIT_FAILURE
        assert "component download failed" in result.stdout


class TestCLIPublish:
    """Test CLI publish command."""

    @respx.mock
    def test_no_release_tag(self, cli_settings, fazer_source) -> None:
        """Without a release tag publish should be a no-op."""
        result = runner.invoke(
            app,
            ["publish", "-s", str(fazer_source), "--ref", "refs/heads/main", "--json"],
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["published"] is False
        assert respx.calls.call_count == 0

    @respx.mock
    def test_malformed_tag(self, cli_settings, fazer_source) -> None:
        """A malformed release tag should exit 1 without touching the API."""
        result = runner.invoke(
            app,
            ["publish", "-s", str(fazer_source), "--ref", "refs/tags/v1.2.x"],
        )
        assert result.exit_code == EXIT_FAILURE
        assert "not a valid release version" in " ".join(result.stdout.split())
        assert respx.calls.call_count == 0

    @respx.mock
    def test_publishes_existing_archive(
        self, cli_settings, fazer_source, tmp_path
    ) -> None:
        """Should upload an archive already in the output directory."""
        output_dir = tmp_path / "dist"
        output_dir.mkdir()
        (output_dir / "fazer-0.1.0.tgz").write_bytes(b"tarball")
        release = {
            "id": 1,
            "tag_name": "v0.1.0",
            "upload_url": (
                "https://uploads.github.com/repos/owner/fazer/releases/1/assets"
                "{?name,label}"
            ),
        }
        respx.get(f"{API}/releases/tags/v0.1.0").mock(
            return_value=httpx.Response(200, json=release)
        )
        respx.get(
            host="api.github.com", path="/repos/owner/fazer/releases/1/assets"
        ).mock(return_value=httpx.Response(200, json=[]))
        respx.post(
            host="uploads.github.com", path="/repos/owner/fazer/releases/1/assets"
        ).mock(return_value=httpx.Response(201, json={"id": 5}))

        result = runner.invoke(
            app,
            [
                "-q",
                "publish",
                "-s",
                str(fazer_source),
                "-o",
                str(output_dir),
                "--ref",
                "refs/tags/v0.1.0",
                "--json",
            ],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["published"] is True
        assert data["uploaded"] == ["fazer-0.1.0.tgz"]

    def test_empty_output_dir(self, cli_settings, fazer_source, tmp_path) -> None:
        """Publishing with nothing to publish should exit 1."""
        result = runner.invoke(
            app,
            [
                "publish",
                "-s",
                str(fazer_source),
                "-o",
                str(tmp_path / "dist"),
                "--ref",
                "refs/tags/v0.1.0",
            ],
        )
        assert result.exit_code == EXIT_FAILURE
        assert "matched no archives" in " ".join(result.stdout.split())
