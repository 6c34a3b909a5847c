"""Tests for the build service.

Docker is mocked: the fake container run writes the binary cargo would
have produced into the mounted source tree.
"""

import json
import struct
from unittest.mock import patch

import pytest

from crossdeploy.builds.artifacts import EF_ARM_ABI_FLOAT_HARD, EF_ARM_ABI_FLOAT_SOFT
from crossdeploy.builds.cache import DependencyRegistryCache
from crossdeploy.builds.service import (
    cargo_output_path,
    compile_source,
    default_artifact_path,
)
from crossdeploy.config import Settings
from crossdeploy.errors import BuildFailure, CacheUnavailableError, ImageNotFoundError
from crossdeploy.process import ProcessResult
from crossdeploy.toolchain.models import ToolchainImageRecord
from crossdeploy.types import BuildMode

SERVICE = "crossdeploy.builds.service"
TRIPLE = "armv7-unknown-linux-gnueabihf"
EM_ARM = 40


def make_elf(flags: int) -> bytes:
    """Build a minimal little-endian ELF32 ARM header."""
    ident = b"\x7fELF\x01\x01\x01" + b"\x00" * 9
    header = struct.pack("<16sHHIIIIIHHHHHH", ident, 2, EM_ARM, 1, 0, 0, 0, flags, 52, 0, 0, 0, 0, 0)
    return header + b"\x00" * 64


@pytest.fixture
def image() -> ToolchainImageRecord:
    return ToolchainImageRecord(
        tag="pidj/x-compiler:rpi3-raspbian-v1-0123456789ab",
        target_name="rpi3-raspbian-v1",
        target_triple=TRIPLE,
        fingerprint="sha256:" + "0" * 64,
        state="ready",
    )


@pytest.fixture
def source_dir(tmp_path):
    path = tmp_path / "src"
    path.mkdir()
    (path / "Cargo.toml").write_text('[package]\nname = "pidj"\n')
    return path


@pytest.fixture
def settings(tmp_path, source_dir):
    return Settings(
        cache_dir=tmp_path / "cache",
        cargo_home=tmp_path / "cargo",
        db_url="sqlite:///:memory:",
        source_dir=source_dir,
    )


@pytest.fixture
def cache(settings):
    return DependencyRegistryCache(settings.cargo_home)


def fake_cargo(source_dir, flags=EF_ARM_ABI_FLOAT_HARD, profile="debug"):
    """Return a run_container stand-in that writes cargo's output binary."""

    def _run(run, stage, log_path=None, timeout=None):
        binary = cargo_output_path(source_dir, TRIPLE, profile, "pidj")
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_bytes(make_elf(0x05000000 | flags))
        return ProcessResult(exit_code=0, command="docker run", tail="")

    return _run


class TestCompileSource:
    """Tests for compile_source function."""

    def test_build_produces_artifact(self, image, source_dir, cache, settings, tmp_path):
        """Should compile, copy the binary out and write a manifest."""
        output = tmp_path / "out" / "pidj"
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(f"{SERVICE}.run_container", side_effect=fake_cargo(source_dir)) as mock_run,
        ):
            artifact = compile_source(image, source_dir, cache, output, settings)

        assert artifact is not None
        assert artifact.path == output
        assert output.is_file()
        assert artifact.float_abi == "hard"
        assert artifact.target_triple == TRIPLE

        run = mock_run.call_args.args[0]
        assert run.image == image.tag
        assert run.command == ["cargo", "build", "--target", TRIPLE]
        assert mock_run.call_args.args[1] == "compile"
        assert mock_run.call_args.kwargs["log_path"] == settings.cache_dir / "logs" / "compile.log"

        manifest = json.loads((tmp_path / "out" / "pidj.manifest.json").read_text())
        assert manifest["image_tag"] == image.tag
        assert manifest["target_name"] == "rpi3-raspbian-v1"

    def test_output_at_cargo_path(self, image, source_dir, cache, settings):
        """No copy is made when the output is cargo's own path."""
        output = default_artifact_path(settings, TRIPLE)
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(f"{SERVICE}.run_container", side_effect=fake_cargo(source_dir)),
        ):
            artifact = compile_source(image, source_dir, cache, output, settings)

        assert artifact is not None
        assert artifact.path == output

    def test_cache_prepared(self, image, source_dir, cache, settings, tmp_path):
        """The dependency cache should exist before the container runs."""

        def check_cache(run, stage, log_path=None, timeout=None):
            assert (settings.cargo_home / "registry").is_dir()
            assert (settings.cargo_home / "git").is_dir()
            return fake_cargo(source_dir)(run, stage)

        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(f"{SERVICE}.run_container", side_effect=check_cache),
        ):
            compile_source(image, source_dir, cache, tmp_path / "pidj", settings)

    def test_fix_mode(self, image, source_dir, cache, settings, tmp_path):
        """Fix mode should run cargo fix and return no artifact."""
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(
                f"{SERVICE}.run_container",
                return_value=ProcessResult(exit_code=0, command="docker run", tail=""),
            ) as mock_run,
        ):
            result = compile_source(
                image, source_dir, cache, tmp_path / "pidj", settings, mode=BuildMode.FIX
            )

        assert result is None
        run = mock_run.call_args.args[0]
        assert run.command == ["cargo", "fix", "--target", TRIPLE, "--allow-dirty"]
        assert mock_run.call_args.args[1] == "fix"

    def test_missing_image(self, image, source_dir, cache, settings, tmp_path):
        """A missing image is fatal before anything runs."""
        with (
            patch(f"{SERVICE}.image_exists", return_value=False),
            patch(f"{SERVICE}.run_container") as mock_run,
        ):
            with pytest.raises(ImageNotFoundError):
                compile_source(image, source_dir, cache, tmp_path / "pidj", settings)

        mock_run.assert_not_called()

    def test_unusable_cache(self, image, source_dir, settings, tmp_path):
        """An unusable cache is fatal before anything runs."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file")
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(f"{SERVICE}.run_container") as mock_run,
        ):
            with pytest.raises(CacheUnavailableError):
                compile_source(
                    image,
                    source_dir,
                    DependencyRegistryCache(blocker),
                    tmp_path / "pidj",
                    settings,
                )

        mock_run.assert_not_called()

    def test_compile_failure_propagates(self, image, source_dir, cache, settings, tmp_path):
        """Compile failures should propagate unchanged."""
        failure = BuildFailure(stage="compile", diagnostic="error[E0308]", exit_code=101)
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(f"{SERVICE}.run_container", side_effect=failure),
        ):
            with pytest.raises(BuildFailure) as exc_info:
                compile_source(image, source_dir, cache, tmp_path / "pidj", settings)

        assert exc_info.value is failure
        assert not (tmp_path / "pidj").exists()

    def test_missing_binary(self, image, source_dir, cache, settings, tmp_path):
        """A clean exit without a binary is an artifact failure."""
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(
                f"{SERVICE}.run_container",
                return_value=ProcessResult(exit_code=0, command="docker run", tail=""),
            ),
        ):
            with pytest.raises(BuildFailure) as exc_info:
                compile_source(image, source_dir, cache, tmp_path / "pidj", settings)

        assert exc_info.value.stage == "artifact"

    def test_release_profile(self, image, source_dir, cache, tmp_path, settings):
        """Release builds look for the binary under target/<triple>/release."""
        release = settings.model_copy(update={"build_profile": "release"})
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(
                f"{SERVICE}.run_container",
                side_effect=fake_cargo(source_dir, profile="release"),
            ) as mock_run,
        ):
            artifact = compile_source(image, source_dir, cache, tmp_path / "pidj", release)

        assert artifact is not None
        assert mock_run.call_args.args[0].command[-1] == "--release"


class TestVerifyAbi:
    """Tests for the opt-in post-build float ABI check."""

    def test_hard_float_spec_gives_hard_float_binary(
        self, image, source_dir, cache, settings, tmp_path
    ):
        """A hard-float build passes verification."""
        strict = settings.model_copy(update={"verify_abi": True})
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(f"{SERVICE}.run_container", side_effect=fake_cargo(source_dir)),
        ):
            artifact = compile_source(
                image, source_dir, cache, tmp_path / "pidj", strict, expected_float_abi="hard"
            )

        assert artifact is not None
        assert artifact.float_abi == "hard"

    def test_mismatch_fails(self, image, source_dir, cache, settings, tmp_path):
        """A soft-float binary from a hard-float spec is rejected."""
        strict = settings.model_copy(update={"verify_abi": True})
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(
                f"{SERVICE}.run_container",
                side_effect=fake_cargo(source_dir, flags=EF_ARM_ABI_FLOAT_SOFT),
            ),
        ):
            with pytest.raises(BuildFailure) as exc_info:
                compile_source(
                    image, source_dir, cache, tmp_path / "pidj", strict, expected_float_abi="hard"
                )

        assert exc_info.value.stage == "abi"
        assert "soft" in exc_info.value.diagnostic

    def test_mismatch_ignored_when_disabled(self, image, source_dir, cache, settings, tmp_path):
        """Without verify_abi a mismatch is only reported on the artifact."""
        with (
            patch(f"{SERVICE}.image_exists", return_value=True),
            patch(
                f"{SERVICE}.run_container",
                side_effect=fake_cargo(source_dir, flags=EF_ARM_ABI_FLOAT_SOFT),
            ),
        ):
            artifact = compile_source(
                image, source_dir, cache, tmp_path / "pidj", settings, expected_float_abi="hard"
            )

        assert artifact is not None
        assert artifact.float_abi == "soft"


class TestDefaultArtifactPath:
    """Tests for default_artifact_path function."""

    def test_cargo_path(self, settings, source_dir):
        """Defaults to cargo's output path."""
        assert default_artifact_path(settings, TRIPLE) == (
            source_dir / "target" / TRIPLE / "debug" / "pidj"
        )

    def test_configured_path(self, settings, tmp_path):
        """A configured artifact path wins."""
        configured = settings.model_copy(update={"artifact_path": tmp_path / "bin" / "app"})
        assert default_artifact_path(configured, TRIPLE) == tmp_path / "bin" / "app"
