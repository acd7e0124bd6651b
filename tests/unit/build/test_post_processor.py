"""Unit tests for post-build artifact generation and the merged archive."""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from scpbuild.build.archive_merger import ArchiveMergeError, ArchiveMerger, merged_archive_path
from scpbuild.build.component import Component, ComponentKind
from scpbuild.build.module_graph import BuildGraph
from scpbuild.build.post_processor import (
    ArtifactPostProcessor,
    ExecutableHandle,
    PostProcessError,
    create_executable,
)
from scpbuild.build.tool_runner import ToolResult, ToolRunner
from scpbuild.build.toolchain_selector import ToolchainProfile
from scpbuild.config.toolchain_file import ToolchainFile


def make_profile(compiler_id="GNU", cc="gcc", objcopy="objcopy", ar="ar"):
    toolchain = ToolchainFile(path=None, compiler_id=compiler_id, cc=cc, objcopy=objcopy, ar=ar)
    return ToolchainProfile(compiler_id=compiler_id, toolchain=toolchain)


def make_graph(library_dir=None):
    def lib(component_id):
        return library_dir / f"lib{component_id}.a" if library_dir else None

    return BuildGraph(components=[
        Component("framework", ComponentKind.FRAMEWORK, output_artifact_path=lib("framework")),
        Component("arm-m", ComponentKind.ARCHITECTURE, output_artifact_path=lib("arm-m")),
        Component("clock", ComponentKind.MODULE, output_artifact_path=lib("clock")),
        Component("juno-bl1", ComponentKind.FIRMWARE),
    ])


@pytest.fixture
def runner():
    runner = Mock(spec=ToolRunner)
    runner.run.side_effect = lambda command, description=None, cwd=None: ToolResult(
        command=list(command), returncode=0, stdout="", stderr=""
    )
    return runner


class TestCreateExecutable:
    """Tests for create_executable."""

    def test_default_name_is_target(self, tmp_path):
        handle = create_executable(make_graph(), tmp_path / "bin")
        assert handle.elf_path == tmp_path / "bin" / "juno-bl1.elf"
        assert handle.map_path == tmp_path / "bin" / "juno-bl1.map"
        assert handle.bin_path == tmp_path / "bin" / "juno-bl1.bin"

    def test_override_name(self, tmp_path):
        handle = create_executable(make_graph(), tmp_path / "bin", "scp_romfw")
        assert handle.elf_path.name == "scp_romfw.elf"


class TestArtifactPostProcessor:
    """Tests for ArtifactPostProcessor."""

    def test_gnu_map_options(self, tmp_path, runner):
        handle = create_executable(make_graph(), tmp_path)
        options = ArtifactPostProcessor(make_profile(), runner).map_link_options(handle)
        assert options == ["-Wl,--cref", f"-Wl,-Map={(tmp_path / 'juno-bl1.map').as_posix()}"]

    def test_armclang_map_options(self, tmp_path, runner):
        handle = create_executable(make_graph(), tmp_path)
        options = ArtifactPostProcessor(make_profile("ARMClang"), runner).map_link_options(handle)
        assert options == ["-Wl,--map", f"-Wl,--list={(tmp_path / 'juno-bl1.map').as_posix()}"]

    def test_rejects_non_firmware(self, tmp_path, runner):
        handle = ExecutableHandle(Component("clock", ComponentKind.MODULE), "clock", tmp_path)
        processor = ArtifactPostProcessor(make_profile(), runner)

        with pytest.raises(PostProcessError, match="clock"):
            processor.post_process(handle)
        with pytest.raises(PostProcessError):
            processor.map_link_options(handle)

    def test_map_reported_when_present(self, tmp_path, runner):
        handle = create_executable(make_graph(), tmp_path)
        handle.map_path.touch()

        result = ArtifactPostProcessor(make_profile(), runner).post_process(handle)

        assert result.map_path == handle.map_path
        assert result.bin_path is None
        runner.run.assert_not_called()

    def test_missing_map_is_none(self, tmp_path, runner):
        handle = create_executable(make_graph(), tmp_path)
        result = ArtifactPostProcessor(make_profile(), runner).post_process(handle)
        assert result.map_path is None

    def test_fromelf_preferred_for_armclang(self, tmp_path, runner):
        bin_dir = tmp_path / "toolchain"
        bin_dir.mkdir()
        (bin_dir / "armclang").touch()
        (bin_dir / "fromelf").touch()
        profile = make_profile("ARMClang", cc=str(bin_dir / "armclang"))
        handle = create_executable(make_graph(), tmp_path / "bin")

        result = ArtifactPostProcessor(profile, runner, generate_flat_binary=True,
                                       show_progress=False).post_process(handle)

        assert result.extractor == "fromelf"
        assert result.bin_path == handle.bin_path
        command = runner.run.call_args[0][0]
        assert command == [
            str(bin_dir / "fromelf"), "--bin", str(handle.elf_path), "--output", str(handle.bin_path),
        ]

    def test_objcopy_fallback(self, tmp_path, runner):
        objcopy = tmp_path / "arm-none-eabi-objcopy"
        objcopy.touch()
        profile = make_profile(objcopy=str(objcopy))
        handle = create_executable(make_graph(), tmp_path / "bin")

        result = ArtifactPostProcessor(profile, runner, generate_flat_binary=True,
                                       show_progress=False).post_process(handle)

        assert result.extractor == "objcopy"
        command = runner.run.call_args[0][0]
        assert command == [str(objcopy), "-O", "binary", str(handle.elf_path), str(handle.bin_path)]

    def test_no_extractor_skips_silently(self, tmp_path, runner):
        """Flat binary enabled with no extractor: success, no .bin, no error."""
        profile = make_profile(objcopy=None)
        handle = create_executable(make_graph(), tmp_path / "bin")

        result = ArtifactPostProcessor(profile, runner, generate_flat_binary=True).post_process(handle)

        assert result.bin_path is None
        assert result.extractor is None
        assert result.skipped == ["flat-binary"]
        assert not handle.bin_path.exists()
        runner.run.assert_not_called()

    def test_host_objcopy_not_used_for_missing_toolchain_objcopy(self, tmp_path, runner):
        profile = make_profile(objcopy=str(tmp_path / "missing" / "arm-none-eabi-objcopy"))
        handle = create_executable(make_graph(), tmp_path / "bin")

        with patch("shutil.which", return_value="/usr/bin/objcopy"):
            result = ArtifactPostProcessor(profile, runner, generate_flat_binary=True).post_process(handle)

        assert result.bin_path is None
        assert result.skipped == ["flat-binary"]
        runner.run.assert_not_called()


class TestArchiveMerger:
    """Tests for the merged <target>-all archive."""

    def test_merged_archive_path(self, tmp_path):
        assert merged_archive_path(tmp_path, "juno-bl1") == tmp_path / "libjuno-bl1-all.a"

    def test_requires_firmware(self, tmp_path, runner):
        merger = ArchiveMerger(make_profile(), runner, show_progress=False)
        with pytest.raises(ArchiveMergeError, match="has not been built"):
            merger.merge(make_graph(tmp_path), tmp_path / "juno-bl1.elf", tmp_path)
        runner.run.assert_not_called()

    def test_requires_members(self, tmp_path, runner):
        elf = tmp_path / "juno-bl1.elf"
        elf.touch()
        merger = ArchiveMerger(make_profile(), runner, show_progress=False)
        with pytest.raises(ArchiveMergeError, match="libframework.a"):
            merger.merge(make_graph(tmp_path), elf, tmp_path)

    def test_members_in_build_order(self, tmp_path, runner):
        elf = tmp_path / "juno-bl1.elf"
        elf.touch()
        for name in ["framework", "arm-m", "clock"]:
            (tmp_path / f"lib{name}.a").touch()

        merged = ArchiveMerger(make_profile(ar="/nonexistent/ar"), runner, show_progress=False).merge(
            make_graph(tmp_path), elf, tmp_path / "out"
        )

        assert merged.path == tmp_path / "out" / "libjuno-bl1-all.a"
        command = runner.run.call_args[0][0]
        assert command[:3] == ["/nonexistent/ar", "rcT", str(merged.path)]
        assert command[3:] == [
            str(tmp_path / "libframework.a"),
            str(tmp_path / "libarm-m.a"),
            str(tmp_path / "libclock.a"),
        ]
