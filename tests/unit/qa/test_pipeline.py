"""Unit tests for the QA pipeline and runner."""

import threading
import time
from pathlib import Path
from unittest.mock import Mock

import pytest

from scpbuild.build.tool_runner import ToolInvocationError, ToolResult, ToolRunner
from scpbuild.qa.pipeline import META_TARGETS, QAPipelineError, QARunner, build_pipeline
from scpbuild.qa.source_inventory import SourceInventory
from scpbuild.qa.tool_probe import ToolAvailability, ToolProbe


def availability(*present):
    def prober(tool_name, *alternatives):
        for name in (tool_name,) + alternatives:
            if name in present:
                return ToolProbe(tool_name, True, Path("/usr/bin") / name)
        return ToolProbe(tool_name, False)
    return ToolAvailability(prober)


def mock_runner():
    runner = Mock(spec=ToolRunner)
    runner.run.side_effect = lambda command, description=None, cwd=None: ToolResult(
        command=list(command), returncode=0, stdout="", stderr=""
    )
    return runner


class TestBuildPipeline:
    """Tests for build_pipeline."""

    def test_no_tools_only_meta_targets(self, tmp_path):
        pipeline = build_pipeline(tmp_path, availability())

        assert pipeline.concrete_tasks() == []
        assert set(pipeline.tasks) == set(META_TARGETS)
        assert pipeline.get("check").depends_on == ("lint",)

    def test_tasks_for_available_tools(self, tmp_path):
        pipeline = build_pipeline(
            tmp_path,
            availability("cmake-format", "cmake-lint", "yamllint", "clang-format", "git-clang-format"),
        )

        assert pipeline.get("format").depends_on == ("format-cmake", "format-c")
        assert pipeline.get("format-diff").depends_on == ("format-diff-c",)
        assert pipeline.get("lint").depends_on == ("lint-cmake", "lint-yaml")
        assert pipeline.get("check").depends_on == ("check-cmake", "lint")

        assert pipeline.get("format-c").command == ("/usr/bin/clang-format", "-i")
        assert pipeline.get("format-diff-c").file_set is None
        assert pipeline.get("format-diff-c").command == ("/usr/bin/git-clang-format", "HEAD")

    def test_markdownlint_alternative_name(self, tmp_path):
        pipeline = build_pipeline(tmp_path, availability("markdownlint"))
        assert pipeline.get("lint-markdown").command == ("/usr/bin/markdownlint",)

    def test_script_tasks(self, tmp_path):
        (tmp_path / "tools").mkdir()
        (tmp_path / "tools" / "yaml-format.py").touch()
        script = tmp_path / "contrib" / "run-clang-format" / "git" / "run-clang-format.py"
        script.parent.mkdir(parents=True)
        script.touch()

        pipeline = build_pipeline(tmp_path, availability(), python="python3")

        assert pipeline.get("format-yaml").command == (
            "python3", str(tmp_path / "tools" / "yaml-format.py"), "format", "-i",
        )
        assert pipeline.get("check-yaml").command[-2:] == ("diff", "--check")
        assert pipeline.get("check-c").command == (
            "python3", str(script), "--clang-format-executable", "clang-format",
        )
        assert pipeline.get("check").depends_on == ("check-yaml", "check-c", "lint")

    def test_unknown_target(self, tmp_path):
        pipeline = build_pipeline(tmp_path, availability())
        with pytest.raises(QAPipelineError, match="Unknown QA target 'tidy'"):
            pipeline.get("tidy")

    def test_closure_puts_dependencies_first(self, tmp_path):
        pipeline = build_pipeline(tmp_path, availability("cmake-format", "cmake-lint"))
        assert pipeline.closure("check") == ["check-cmake", "lint-cmake", "lint", "check"]


class TestQARunner:
    """Tests for QARunner."""

    def test_empty_target_does_nothing(self, tmp_path):
        runner = mock_runner()
        qa = QARunner(build_pipeline(tmp_path, availability()), SourceInventory(), runner,
                      tmp_path, show_progress=False)

        assert qa.run("check") == []
        runner.run.assert_not_called()

    def test_files_appended_to_command(self, tmp_path):
        runner = mock_runner()
        cmake_files = [tmp_path / "CMakeLists.txt", tmp_path / "cmake" / "a.cmake"]
        qa = QARunner(
            build_pipeline(tmp_path, availability("cmake-format")),
            SourceInventory(files={"cmake": cmake_files}),
            runner,
            tmp_path,
            show_progress=False,
        )

        assert qa.run("format") == ["format-cmake"]

        command = runner.run.call_args[0][0]
        assert command == ["/usr/bin/cmake-format", "-i"] + [str(p) for p in cmake_files]
        assert runner.run.call_args[1]["cwd"] == tmp_path

    def test_task_without_files_is_skipped(self, tmp_path):
        runner = mock_runner()
        qa = QARunner(
            build_pipeline(tmp_path, availability("cmake-lint")),
            SourceInventory(files={"cmake": []}),
            runner,
            tmp_path,
            show_progress=False,
        )

        assert qa.run("lint") == []
        runner.run.assert_not_called()

    def test_check_runs_lint(self, tmp_path):
        runner = mock_runner()
        qa = QARunner(
            build_pipeline(tmp_path, availability("cmake-format", "cmake-lint")),
            SourceInventory(files={"cmake": [tmp_path / "CMakeLists.txt"]}),
            runner,
            tmp_path,
            show_progress=False,
        )

        assert sorted(qa.run("check")) == ["check-cmake", "lint-cmake"]
        assert runner.run.call_count == 2

    def test_independent_tasks_run_concurrently(self, tmp_path):
        barrier = threading.Barrier(2, timeout=5)
        runner = mock_runner()

        def run(command, description=None, cwd=None):
            barrier.wait()
            return ToolResult(command=list(command), returncode=0, stdout="", stderr="")

        runner.run.side_effect = run
        qa = QARunner(
            build_pipeline(tmp_path, availability("cmake-lint", "yamllint")),
            SourceInventory(files={"cmake": [tmp_path / "CMakeLists.txt"], "yaml": [tmp_path / "a.yml"]}),
            runner,
            tmp_path,
            jobs=2,
            show_progress=False,
        )

        assert sorted(qa.run("lint")) == ["lint-cmake", "lint-yaml"]

    def test_failure_aborts_and_propagates(self, tmp_path):
        runner = mock_runner()
        runner.run.side_effect = ToolInvocationError(["cmake-lint"], 1, stderr="bad indentation")
        qa = QARunner(
            build_pipeline(tmp_path, availability("cmake-lint")),
            SourceInventory(files={"cmake": [tmp_path / "CMakeLists.txt"]}),
            runner,
            tmp_path,
            show_progress=False,
        )

        with pytest.raises(ToolInvocationError, match="bad indentation"):
            qa.run("check")
        runner.abort.assert_called_once()
