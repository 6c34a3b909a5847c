"""Tests for toolchain/builder.py module.

Uses mocked subprocess helpers for Docker execution tests.
"""

from unittest.mock import MagicMock, patch

import pytest

from crossdeploy.errors import BuildFailure
from crossdeploy.process import ProcessResult
from crossdeploy.toolchain.builder import (
    FINAL_STAGE,
    TOOLCHAIN_STAGES,
    build_toolchain_image,
    compose_stage_command,
    image_exists,
    remove_docker_image,
)
from crossdeploy.toolchain.io import get_toolchain_spec

TAG = "pidj/x-compiler:rpi3-raspbian-v1-0123456789ab"


@pytest.fixture
def rpi3():
    return get_toolchain_spec("rpi3-raspbian-v1")


def ok(cmd, **kwargs) -> ProcessResult:
    return ProcessResult(exit_code=0, command=" ".join(cmd), tail="")


def stage_of(cmd: list[str]) -> str:
    return cmd[cmd.index("--target") + 1]


class TestComposeStageCommand:
    """Tests for compose_stage_command function."""

    def test_intermediate_stage(self, rpi3, tmp_path):
        """Intermediate stages are built but not tagged."""
        cmd = compose_stage_command(rpi3, "libc", tmp_path)

        assert cmd[:4] == ["docker", "build", "--target", "libc"]
        assert "-t" not in cmd
        assert "--build-arg" in cmd
        assert "GLIBC_VERSION=2.28" in cmd
        assert "CPPFLAGS=-mfloat-abi=hard -mfpu=vfp3 -march=armv7-a" in cmd
        assert cmd[-1] == str(tmp_path)

    def test_final_stage_tagged(self, rpi3, tmp_path):
        """The final stage carries the image tag."""
        cmd = compose_stage_command(rpi3, FINAL_STAGE, tmp_path, tag=TAG)
        assert cmd[cmd.index("-t") + 1] == TAG

    def test_no_cache(self, rpi3, tmp_path):
        """Should pass --no-cache on forced rebuilds."""
        cmd = compose_stage_command(rpi3, "binutils", tmp_path, no_cache=True)
        assert "--no-cache" in cmd

    def test_recipe_path(self, rpi3, tmp_path):
        """Should point -f at the recipe."""
        recipe = tmp_path / "Dockerfile"
        cmd = compose_stage_command(rpi3, "binutils", tmp_path, recipe=recipe)
        assert cmd[cmd.index("-f") + 1] == str(recipe)


class TestBuildToolchainImage:
    """Tests for build_toolchain_image function."""

    def test_stages_in_dependency_order(self, rpi3, tmp_path):
        """Should build binutils, headers, libc, compiler, then tag."""
        with patch("crossdeploy.toolchain.builder.run_streaming", side_effect=ok) as mock_run:
            build_toolchain_image(rpi3, TAG, tmp_path / "image.log")

        commands = [c.args[0] for c in mock_run.call_args_list]
        assert [stage_of(c) for c in commands] == [
            "binutils",
            "kernel-headers",
            "libc",
            "compiler",
            "toolchain",
        ]
        tagged = [c for c in commands if "-t" in c]
        assert len(tagged) == 1
        assert stage_of(tagged[0]) == FINAL_STAGE

    def test_forced_rebuild_bypasses_cache_once(self, rpi3, tmp_path):
        """Only the first stage skips the cache; later stages reuse its layers."""
        with patch("crossdeploy.toolchain.builder.run_streaming", side_effect=ok) as mock_run:
            build_toolchain_image(rpi3, TAG, tmp_path / "image.log", no_cache=True)

        commands = [c.args[0] for c in mock_run.call_args_list]
        uncached = [c for c in commands if "--no-cache" in c]
        assert len(commands) == 5
        assert len(uncached) == 1
        assert stage_of(uncached[0]) == TOOLCHAIN_STAGES[0]

    def test_default_build_uses_cache(self, rpi3, tmp_path):
        """A normal build never passes --no-cache."""
        with patch("crossdeploy.toolchain.builder.run_streaming", side_effect=ok) as mock_run:
            build_toolchain_image(rpi3, TAG, tmp_path / "image.log")

        assert not any("--no-cache" in c.args[0] for c in mock_run.call_args_list)

    def test_stage_failure_halts(self, rpi3, tmp_path):
        """A failing stage should raise and skip later stages."""

        def fail_libc(cmd, **kwargs):
            if stage_of(cmd) == "libc":
                return ProcessResult(
                    exit_code=2,
                    command=" ".join(cmd),
                    tail="configure: error: unsupported float ABI\n",
                )
            return ok(cmd)

        with patch(
            "crossdeploy.toolchain.builder.run_streaming", side_effect=fail_libc
        ) as mock_run:
            with pytest.raises(BuildFailure) as exc_info:
                build_toolchain_image(rpi3, TAG, tmp_path / "image.log")

        assert exc_info.value.stage == "libc"
        assert exc_info.value.exit_code == 2
        assert "unsupported float ABI" in exc_info.value.diagnostic
        stages = [stage_of(c.args[0]) for c in mock_run.call_args_list]
        assert stages == ["binutils", "kernel-headers", "libc"]
        assert not any("-t" in c.args[0] for c in mock_run.call_args_list)

    def test_timeout(self, rpi3, tmp_path):
        """A timed-out stage should raise a timeout failure."""
        result = ProcessResult(exit_code=-1, command="docker", tail="", timed_out=True)
        with patch("crossdeploy.toolchain.builder.run_streaming", return_value=result):
            with pytest.raises(BuildFailure) as exc_info:
                build_toolchain_image(rpi3, TAG, tmp_path / "image.log", timeout=5)

        assert exc_info.value.stage == TOOLCHAIN_STAGES[0]
        assert exc_info.value.code == "build_timeout"

    def test_docker_missing(self, rpi3, tmp_path):
        """A missing docker binary should become a BuildFailure."""
        with patch(
            "crossdeploy.toolchain.builder.run_streaming",
            side_effect=FileNotFoundError("docker"),
        ):
            with pytest.raises(BuildFailure) as exc_info:
                build_toolchain_image(rpi3, TAG, tmp_path / "image.log")

        assert exc_info.value.code == "execution_error"
        assert exc_info.value.exit_code is None


class TestImageStore:
    """Tests for local image store queries."""

    def test_image_exists(self):
        """Should report presence from docker image inspect."""
        with patch(
            "crossdeploy.toolchain.builder.run_quiet",
            return_value=MagicMock(returncode=0),
        ) as mock_run:
            assert image_exists(TAG) is True

        cmd = mock_run.call_args.args[0]
        assert cmd[:3] == ["docker", "image", "inspect"]
        assert cmd[-1] == TAG

    def test_image_missing(self):
        """Non-zero inspect means the image is absent."""
        with patch(
            "crossdeploy.toolchain.builder.run_quiet",
            return_value=MagicMock(returncode=1),
        ):
            assert image_exists(TAG) is False

    def test_docker_unavailable(self):
        """No docker binary means no image."""
        with patch("crossdeploy.toolchain.builder.run_quiet", side_effect=OSError("nope")):
            assert image_exists(TAG) is False

    def test_remove_docker_image(self):
        """Should run docker image rm."""
        with patch(
            "crossdeploy.toolchain.builder.run_quiet",
            return_value=MagicMock(returncode=0, stderr=""),
        ) as mock_run:
            assert remove_docker_image(TAG) is True

        assert mock_run.call_args.args[0] == ["docker", "image", "rm", TAG]
