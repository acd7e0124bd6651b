"""QA Pipeline.

This module builds the graph of quality assurance tasks (formatting,
linting, format checks) for a source tree and runs it.

Design:
    - Tools are probed once per invocation; a task whose tool is missing is
      never created
    - Meta-targets (format-diff, format, lint, check) depend only on the
      tasks that were created; ``check`` also depends on ``lint``
    - An empty meta-target is valid and does nothing
    - Independent tasks run concurrently, stopping at the first failure
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..build.scheduler import DependencyScheduler
from ..build.tool_runner import ToolRunner
from .source_inventory import SourceInventory
from .tool_probe import ToolAvailability


META_TARGETS = ("format-diff", "format", "lint", "check")


class QAPipelineError(Exception):
    """Raised for unknown QA targets."""
    pass


@dataclass(frozen=True)
class QATask:
    """A QA task.

    Attributes:
        id: Task name (e.g. format-c)
        tool_required: Tool the task runs; None for meta-targets
        depends_on: Ids of tasks that must complete first
        file_set: Inventory type tag whose files are appended to the command
        command: Command line without the file arguments
        comment: Progress message
    """

    id: str
    tool_required: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    file_set: Optional[str] = None
    command: Tuple[str, ...] = ()
    comment: str = ""

    @property
    def is_meta(self) -> bool:
        return not self.command


@dataclass
class QAPipeline:
    """The created QA tasks, keyed by id."""

    tasks: Dict[str, QATask] = field(default_factory=dict)

    def add(self, task: QATask) -> None:
        self.tasks[task.id] = task

    def get(self, task_id: str) -> QATask:
        try:
            return self.tasks[task_id]
        except KeyError:
            available = ", ".join(sorted(self.tasks))
            raise QAPipelineError(
                f"Unknown QA target '{task_id}'. Available targets: {available}"
            )

    def concrete_tasks(self) -> List[QATask]:
        return [task for task in self.tasks.values() if not task.is_meta]

    def closure(self, target: str) -> List[str]:
        """Ids of ``target`` and everything it depends on, dependencies first."""
        ordered: List[str] = []

        def visit(task_id: str) -> None:
            if task_id in ordered:
                return
            for dep in self.get(task_id).depends_on:
                visit(dep)
            ordered.append(task_id)

        visit(target)
        return ordered


def build_pipeline(
    project_root: Path,
    tools: ToolAvailability,
    python: Optional[str] = None,
) -> QAPipeline:
    """
    Create the QA tasks for the tools that are available.

    Args:
        project_root: Project root directory (holds the helper scripts)
        tools: Tool availability for this invocation
        python: Python interpreter for the helper scripts (defaults to the
            running interpreter)

    Returns:
        QAPipeline with concrete tasks and the meta-targets
    """
    project_root = Path(project_root)
    python = python or sys.executable
    pipeline = QAPipeline()

    format_targets: List[str] = []
    format_diff_targets: List[str] = []
    lint_targets: List[str] = []
    check_targets: List[str] = []

    # cmake-format
    cmake_format = tools.probe("cmake-format")
    if cmake_format.found:
        pipeline.add(QATask(
            "format-cmake", "cmake-format", file_set="cmake",
            command=(str(cmake_format.path), "-i"),
            comment="Formatting CMake sources...",
        ))
        format_targets.append("format-cmake")

        pipeline.add(QATask(
            "check-cmake", "cmake-format", file_set="cmake",
            command=(str(cmake_format.path), "--check"),
            comment="Checking CMake sources...",
        ))
        check_targets.append("check-cmake")

    cmake_lint = tools.probe("cmake-lint")
    if cmake_lint.found:
        pipeline.add(QATask(
            "lint-cmake", "cmake-lint", file_set="cmake",
            command=(str(cmake_lint.path), "--suppress-decorations"),
            comment="Linting CMake sources...",
        ))
        lint_targets.append("lint-cmake")

    # markdownlint
    markdownlint = tools.probe("mdl", "markdownlint")
    if markdownlint.found:
        pipeline.add(QATask(
            "lint-markdown", "markdownlint", file_set="markdown",
            command=(str(markdownlint.path),),
            comment="Linting Markdown sources...",
        ))
        lint_targets.append("lint-markdown")

    # yaml-format
    yaml_format = project_root / "tools" / "yaml-format.py"
    if yaml_format.is_file():
        pipeline.add(QATask(
            "format-yaml", "yaml-format", file_set="yaml",
            command=(python, str(yaml_format), "format", "-i"),
            comment="Formatting YAML sources...",
        ))
        format_targets.append("format-yaml")

        pipeline.add(QATask(
            "check-yaml", "yaml-format", file_set="yaml",
            command=(python, str(yaml_format), "diff", "--check"),
            comment="Checking YAML sources...",
        ))
        check_targets.append("check-yaml")

    # yamllint
    yamllint = tools.probe("yamllint")
    if yamllint.found:
        pipeline.add(QATask(
            "lint-yaml", "yamllint", file_set="yaml",
            command=(str(yamllint.path), "-s"),
            comment="Linting YAML sources...",
        ))
        lint_targets.append("lint-yaml")

    # clang-format
    git_clang_format = tools.probe("git-clang-format")
    if git_clang_format.found:
        pipeline.add(QATask(
            "format-diff-c", "git-clang-format",
            command=(str(git_clang_format.path), "HEAD"),
            comment="Formatting modified C/C++ sources...",
        ))
        format_diff_targets.append("format-diff-c")

    clang_format = tools.probe("clang-format")
    if clang_format.found:
        pipeline.add(QATask(
            "format-c", "clang-format", file_set="c",
            command=(str(clang_format.path), "-i"),
            comment="Formatting C/C++ sources...",
        ))
        format_targets.append("format-c")

    # run-clang-format
    run_clang_format = project_root / "contrib" / "run-clang-format" / "git" / "run-clang-format.py"
    if run_clang_format.is_file():
        executable = str(clang_format.path) if clang_format.found else "clang-format"
        pipeline.add(QATask(
            "check-c", "run-clang-format", file_set="c",
            command=(python, str(run_clang_format), "--clang-format-executable", executable),
            comment="Checking C sources...",
        ))
        check_targets.append("check-c")

    pipeline.add(QATask("format-diff", depends_on=tuple(format_diff_targets),
                        comment="Formatting modified sources..."))
    pipeline.add(QATask("format", depends_on=tuple(format_targets),
                        comment="Formatting all sources..."))
    pipeline.add(QATask("lint", depends_on=tuple(lint_targets),
                        comment="Linting all sources..."))
    pipeline.add(QATask("check", depends_on=tuple(check_targets) + ("lint",),
                        comment="Checking lint..."))

    return pipeline


class QARunner:
    """Runs QA targets of a pipeline.

    Example:
        runner = QARunner(pipeline, source_inventory, ToolRunner(), project_root)
        runner.run("check")
    """

    def __init__(
        self,
        pipeline: QAPipeline,
        source_inventory: SourceInventory,
        tool_runner: ToolRunner,
        project_root: Path,
        jobs: Optional[int] = None,
        show_progress: bool = True,
    ):
        self.pipeline = pipeline
        self.source_inventory = source_inventory
        self.tool_runner = tool_runner
        self.project_root = Path(project_root)
        self.jobs = jobs
        self.show_progress = show_progress

    def command_for(self, task: QATask) -> Optional[List[str]]:
        """Full command line of a concrete task, or None when it has no files."""
        command = list(task.command)
        if task.file_set is not None:
            files = self.source_inventory.get(task.file_set)
            if not files:
                return None
            command.extend(str(path) for path in files)
        return command

    def _run_task(self, task: QATask) -> bool:
        if task.is_meta:
            return True
        command = self.command_for(task)
        if command is None:
            if self.show_progress:
                print(f"{task.id}: no {task.file_set} sources")
            return False
        self.tool_runner.run(
            command,
            description=task.comment if self.show_progress else None,
            cwd=self.project_root,
        )
        return True

    def run(self, target: str) -> List[str]:
        """Run a QA target and everything it depends on.

        Args:
            target: Task or meta-target id

        Returns:
            Ids of the concrete tasks that ran a command

        Raises:
            QAPipelineError: If the target does not exist
            ToolInvocationError: If a tool fails
        """
        task_ids = self.pipeline.closure(target)

        work: Dict[str, Callable[[], bool]] = {
            task_id: (lambda t=self.pipeline.get(task_id): self._run_task(t))
            for task_id in task_ids
        }
        dependencies = {
            task_id: self.pipeline.get(task_id).depends_on for task_id in task_ids
        }

        scheduler = DependencyScheduler(jobs=self.jobs, on_abort=self.tool_runner.abort)
        results = scheduler.execute(work, dependencies)

        if self.show_progress:
            print(self.pipeline.get(target).comment or target)

        return [
            task_id for task_id in task_ids
            if results.get(task_id) and not self.pipeline.get(task_id).is_meta
        ]
