"""Unit tests for CompilationExecutor and BuildExecutor."""

import json
from pathlib import Path
from typing import List

import pytest

from scpbuild.build.analyzers import Analyzer
from scpbuild.build.build_executor import BuildExecutor
from scpbuild.build.compilation_executor import CompilationError, CompilationExecutor, object_name
from scpbuild.build.component import Component, ComponentKind
from scpbuild.build.module_graph import ModuleGraphBuilder
from scpbuild.build.tool_runner import ToolInvocationError, ToolResult, ToolRunner
from scpbuild.build.toolchain_selector import ToolchainProfile
from scpbuild.config.firmware_config import FirmwareDescriptor
from scpbuild.config.toolchain_file import ToolchainFile


class RecordingRunner(ToolRunner):
    """Runner that records commands and creates their outputs instead of running them."""

    def __init__(self, fail_on: str = ""):
        super().__init__()
        self.commands: List[List[str]] = []
        self.fail_on = fail_on

    def run(self, command, description=None, cwd=None):
        command = [str(part) for part in command]
        with self.lock:
            self.commands.append(command)
            self.spawned += 1
        if self.fail_on and any(self.fail_on in part for part in command):
            raise ToolInvocationError(command, 1, stderr="error: boom", description=description)
        if "-o" in command:
            Path(command[command.index("-o") + 1]).touch()
        elif len(command) > 2 and command[1] in ("rcs", "rcT"):
            Path(command[2]).touch()
        return ToolResult(command=command, returncode=0, stdout="", stderr="")


def gnu_profile(compiler_id="GNU"):
    toolchain = ToolchainFile(
        path=None, compiler_id=compiler_id, cc="/opt/toolchain/bin/cc", ar="/opt/toolchain/bin/ar"
    )
    return ToolchainProfile(compiler_id=compiler_id, toolchain=toolchain)


@pytest.fixture
def sources(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    for name in ["fwk_module.c", "arm_main.c", "mod_clock.c", "config_clock.c"]:
        (src / name).write_text("int x;\n")
    return src


class TestCompilationExecutor:
    """Tests for compile, archive and link commands."""

    def test_unknown_build_type(self):
        with pytest.raises(CompilationError, match="Unknown build type"):
            CompilationExecutor(RecordingRunner(), gnu_profile(), build_type="Fast")

    def test_compile_flags(self):
        executor = CompilationExecutor(RecordingRunner(), gnu_profile(), build_type="Debug", ipo=True)
        flags = executor.compile_flags()
        assert flags[0] == "-std=gnu11"
        assert "-O0" in flags and "-g" in flags
        assert flags[-1] == "-flto"

    def test_object_name_disambiguates_directories(self):
        assert object_name(Path("/a/main.c")) != object_name(Path("/b/main.c"))
        assert object_name(Path("/a/main.c")).startswith("main-")

    def test_compile_component(self, tmp_path, sources):
        runner = RecordingRunner()
        executor = CompilationExecutor(runner, gnu_profile(), show_progress=False)
        component = Component("clock", ComponentKind.MODULE, sources=(sources / "mod_clock.c",))

        objects = executor.compile_component(
            component, [Path("/inc/a"), Path("/inc/b")], ["BUILD_HAS_MOD_CLOCK"], tmp_path / "obj"
        )

        assert len(objects) == 1 and objects[0].exists()
        rsp = tmp_path / "obj" / "flags.rsp"
        assert rsp.read_text().split("\n") == ["-I/inc/a", "-I/inc/b", "-DBUILD_HAS_MOD_CLOCK"]

        command = runner.commands[0]
        assert command[0] == "/opt/toolchain/bin/cc"
        assert f"@{rsp}" in command
        assert command[-4:] == ["-c", str(sources / "mod_clock.c"), "-o", str(objects[0])]

    def test_compile_commands_recorded(self, tmp_path, sources):
        runner = RecordingRunner()
        executor = CompilationExecutor(runner, gnu_profile(), show_progress=False)
        component = Component("clock", ComponentKind.MODULE, sources=(sources / "mod_clock.c",))
        executor.compile_component(component, [], [], tmp_path / "obj")

        database = executor.write_compile_commands(tmp_path / "build" / "compile_commands.json")

        entries = json.loads(database.read_text())
        assert len(entries) == 1
        assert entries[0]["file"] == str(sources / "mod_clock.c")
        assert entries[0]["arguments"] == runner.commands[0]
        assert entries[0]["output"].endswith(".o")

    def test_missing_source(self, tmp_path):
        executor = CompilationExecutor(RecordingRunner(), gnu_profile())
        with pytest.raises(CompilationError, match="not found"):
            executor.compile_source(tmp_path / "gone.c", tmp_path / "gone.o", tmp_path / "flags.rsp")

    def test_analyzers_run_before_compile(self, tmp_path, sources):
        runner = RecordingRunner()
        analyzer = Analyzer("cppcheck", ("/usr/bin/cppcheck", "--quiet"))
        executor = CompilationExecutor(runner, gnu_profile(), analyzers=[analyzer], show_progress=False)
        component = Component("clock", ComponentKind.MODULE, sources=(sources / "mod_clock.c",))

        executor.compile_component(component, [], [], tmp_path / "obj")

        assert runner.commands[0][0] == "/usr/bin/cppcheck"
        assert runner.commands[1][0] == "/opt/toolchain/bin/cc"

    def test_advisory_analyzer_failure_ignored(self, tmp_path, sources):
        runner = RecordingRunner(fail_on="iwyu")
        analyzer = Analyzer("iwyu", ("/usr/bin/iwyu",), advisory=True)
        executor = CompilationExecutor(runner, gnu_profile(), analyzers=[analyzer], show_progress=False)
        component = Component("clock", ComponentKind.MODULE, sources=(sources / "mod_clock.c",))

        objects = executor.compile_component(component, [], [], tmp_path / "obj")
        assert len(objects) == 1

    def test_blocking_analyzer_failure(self, tmp_path, sources):
        runner = RecordingRunner(fail_on="cppcheck")
        analyzer = Analyzer("cppcheck", ("/usr/bin/cppcheck",))
        executor = CompilationExecutor(runner, gnu_profile(), analyzers=[analyzer], show_progress=False)
        component = Component("clock", ComponentKind.MODULE, sources=(sources / "mod_clock.c",))

        with pytest.raises(ToolInvocationError):
            executor.compile_component(component, [], [], tmp_path / "obj")

    def test_create_archive(self, tmp_path):
        runner = RecordingRunner()
        executor = CompilationExecutor(runner, gnu_profile())
        archive = executor.create_archive(tmp_path / "lib" / "libclock.a", [tmp_path / "a.o"])

        assert archive.exists()
        assert runner.commands[0] == ["/opt/toolchain/bin/ar", "rcs", str(archive), str(tmp_path / "a.o")]

    def test_link_groups_archives(self, tmp_path):
        runner = RecordingRunner()
        executor = CompilationExecutor(runner, gnu_profile())
        elf = executor.link(tmp_path / "bin" / "fw.elf", [tmp_path / "main.o"],
                            [tmp_path / "libb.a", tmp_path / "liba.a"], ["-Wl,--cref"])

        command = runner.commands[0]
        assert elf.exists()
        assert "-Wl,--cref" in command
        start = command.index("-Wl,--start-group")
        assert command[start + 1:start + 4] == [
            str(tmp_path / "libb.a"), str(tmp_path / "liba.a"), "-Wl,--end-group",
        ]

    def test_link_armclang_without_groups(self, tmp_path):
        runner = RecordingRunner()
        executor = CompilationExecutor(runner, gnu_profile("ARMClang"))
        executor.link(tmp_path / "fw.elf", [], [tmp_path / "liba.a"])
        assert "-Wl,--start-group" not in runner.commands[0]

    def test_link_without_output(self, tmp_path):
        class SilentRunner(RecordingRunner):
            def run(self, command, description=None, cwd=None):
                return ToolResult(command=list(command), returncode=0, stdout="", stderr="")

        executor = CompilationExecutor(SilentRunner(), gnu_profile())
        with pytest.raises(CompilationError, match="did not produce"):
            executor.link(tmp_path / "fw.elf", [], [])


class TestBuildExecutor:
    """Tests for concurrent component builds."""

    @pytest.fixture
    def graph(self, tmp_path, sources):
        builder = ModuleGraphBuilder()
        builder.register_all([
            Component("framework", ComponentKind.FRAMEWORK, sources=(sources / "fwk_module.c",)),
            Component("arm-m", ComponentKind.ARCHITECTURE, sources=(sources / "arm_main.c",)),
            Component("clock", ComponentKind.MODULE, sources=(sources / "mod_clock.c",)),
            Component("fw", ComponentKind.FIRMWARE, sources=(sources / "config_clock.c",)),
        ])
        descriptor = FirmwareDescriptor(
            name="fw", target_id="fw", source_dir=tmp_path, binary_dir="fw", architecture="arm-m",
        )
        return builder.build(descriptor, ["clock"], library_dir=tmp_path / "lib")

    def test_build_links_archives_in_reverse_order(self, tmp_path, graph):
        runner = RecordingRunner()
        executor = CompilationExecutor(runner, gnu_profile(), show_progress=False)

        results = BuildExecutor(executor, tmp_path / "obj", jobs=2, show_progress=False).build(
            graph, tmp_path / "bin" / "fw.elf", ["-Wl,-Map=fw.map"]
        )

        assert results["fw"].artifact == tmp_path / "bin" / "fw.elf"
        assert results["clock"].artifact == tmp_path / "lib" / "libclock.a"

        link = runner.commands[-1]
        start = link.index("-Wl,--start-group")
        assert link[start + 1:start + 4] == [
            str(tmp_path / "lib" / "libclock.a"),
            str(tmp_path / "lib" / "libarm-m.a"),
            str(tmp_path / "lib" / "libframework.a"),
        ]
        assert "-Wl,-Map=fw.map" in link

    def test_failure_stops_dependents(self, tmp_path, graph):
        runner = RecordingRunner(fail_on="arm_main.c")
        executor = CompilationExecutor(runner, gnu_profile(), show_progress=False)

        with pytest.raises(ToolInvocationError):
            BuildExecutor(executor, tmp_path / "obj", jobs=2, show_progress=False).build(
                graph, tmp_path / "bin" / "fw.elf"
            )

        compiled = [c for c in runner.commands if "-c" in c]
        assert not any("mod_clock.c" in " ".join(c) for c in compiled)
        assert not (tmp_path / "bin" / "fw.elf").exists()
