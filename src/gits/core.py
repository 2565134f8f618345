"""
gits: Run a command in every Git repository under a directory.

Discovers repositories beneath a root, narrows them with branch/dirty/clean
filters, then runs either an arbitrary command or a built-in status query in
each one concurrently and prints the sorted results.
"""

from __future__ import annotations

import itertools
import json
import logging
import os
import subprocess
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

import typer
from rich.cells import cell_len
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.markup import escape
from rich.text import Text

from ._version import __version__
from .formatters import format_command_result, format_failure, format_status_line
from .schema import get_tool_schema

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"

# =============================================================================
# Errors
# =============================================================================


class GitsError(Exception):
    """Base class for gits errors."""


class ConfigError(GitsError):
    """Invalid run configuration."""


class DiscoveryError(GitsError):
    """Repository discovery could not complete."""


class GitCommandError(GitsError):
    """A git query exited non-zero or could not be started."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.git_args = tuple(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(str(self))

    def __str__(self) -> str:
        subcommand = " ".join(self.git_args[:2])
        message = f"git {subcommand} failed (exit {self.returncode})"
        if self.stderr:
            message += f": {self.stderr}"
        return message


# =============================================================================
# Domain Models
# =============================================================================


class RemoteSyncState(StrEnum):
    """Relationship of the current branch to its upstream."""

    BEHIND = "behind"
    SYNC = "sync"
    AHEAD = "ahead"


class TaskState(StrEnum):
    """Lifecycle of a per-repository task."""

    QUEUED = "queued"
    ADMITTED = "admitted"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass(frozen=True)
class GitRepository:
    """A discovered repository root and the directory it was found from."""

    path: Path
    root: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def relative_path(self) -> str:
        """Path relative to the invocation root, for display."""
        try:
            return os.path.relpath(self.path, self.root)
        except ValueError:
            return str(self.path)

    @property
    def ops(self) -> GitOperations:
        return GitOperations(self.path)


@dataclass
class RepositoryStatus:
    """Branch and worktree summary of a repository."""

    path: Path
    relative_path: str
    branch: str
    default_branch: str = DEFAULT_BRANCH
    remote_sync: RemoteSyncState = RemoteSyncState.SYNC
    clean: bool = False
    other_branches: list[str] = field(default_factory=list)

    @property
    def on_default_branch(self) -> bool:
        return self.branch == self.default_branch


@dataclass(frozen=True)
class CommandResult:
    """Combined output and exit code of a command run in a repository."""

    output: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass
class RunConfig:
    """Everything the CLI hands over to a run."""

    parallel: int = field(default_factory=lambda: os.cpu_count() or 1)
    branch: str = ""
    dirty: bool = False
    clean: bool = False
    status: bool = False
    command: list[str] = field(default_factory=list)
    root: Path | None = None

    def validate(self) -> None:
        """Raise ConfigError unless exactly one of status mode or a command is set."""
        if self.parallel < 1:
            raise ConfigError(f"parallel must be at least 1, got {self.parallel}")
        if self.status and self.command:
            raise ConfigError("--status cannot be combined with a command")
        if not self.status and not self.command:
            raise ConfigError("No command provided")


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitOperations:
    """Git queries for a single repository."""

    def __init__(self, repo_path: Path):
        self.repo_path = repo_path

    def _run(self, *args: str) -> str:
        """Run a git command in the repository and return its stdout."""
        try:
            result = subprocess.run(
                ["git", "-C", str(self.repo_path), *args],
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as e:
            raise GitCommandError(args, 1, str(e)) from e
        if result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr.strip())
        return result.stdout

    def get_current_branch(self) -> str:
        """Get current branch name."""
        return self._run("rev-parse", "--abbrev-ref", "HEAD").strip()

    def get_default_branch(self) -> str:
        """Get the configured init.defaultbranch, "main" when unset but readable."""
        return self._run("config", "get", "init.defaultbranch").strip() or DEFAULT_BRANCH

    def get_local_branches(self) -> list[str]:
        """Get short names of all local branches."""
        output = self._run("branch", "--format", "%(refname:short)")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def get_status_porcelain(self) -> str:
        return self._run("status", "--porcelain")

    def is_dirty(self) -> bool:
        """Check for any uncommitted change, untracked files included."""
        return len(self.get_status_porcelain()) > 0

    def is_clean(self) -> bool:
        return len(self.get_status_porcelain()) == 0

    def get_remote_sync(self) -> RemoteSyncState:
        """Get sync state from the branch header of `git status --porcelain --branch`."""
        return parse_remote_sync(self._run("status", "--porcelain", "--branch"))


def parse_remote_sync(output: str) -> RemoteSyncState:
    """Parse the `## branch...upstream [ahead N]` header line.

    Raises ValueError when the first line is not a branch header.
    """
    first_line = output.split("\n", 1)[0]
    if not first_line.startswith("##"):
        raise ValueError(f"first line {first_line!r} does not start with expected '##'")
    if "[behind" in first_line:
        return RemoteSyncState.BEHIND
    if "[ahead" in first_line:
        return RemoteSyncState.AHEAD
    return RemoteSyncState.SYNC


# =============================================================================
# Discovery & Filters
# =============================================================================

Filter = Callable[[Path], bool]


def branch_filter(target: str) -> Filter:
    """Match repositories whose current branch is `target`."""

    def matches(path: Path) -> bool:
        return GitOperations(path).get_current_branch() == target

    return matches


def dirty_filter(path: Path) -> bool:
    return GitOperations(path).is_dirty()


def clean_filter(path: Path) -> bool:
    return GitOperations(path).is_clean()


def build_filters(config: RunConfig) -> list[Filter]:
    """Build the active filter chain from configuration."""
    filters: list[Filter] = []
    if config.branch:
        filters.append(branch_filter(config.branch))
    if config.dirty:
        filters.append(dirty_filter)
    if config.clean:
        filters.append(clean_filter)
    return filters


def matches_all(filters: Sequence[Filter], path: Path) -> bool:
    """Apply every filter in order; a failing filter excludes the repository."""
    for repo_filter in filters:
        try:
            if not repo_filter(path):
                return False
        except (GitsError, OSError, ValueError) as e:
            logger.debug("Excluding %s: %s", path, e)
            return False
    return True


def is_git_repo(path: Path) -> bool:
    """Check whether `path` directly contains a .git directory."""
    return (path / ".git").is_dir()


def resolve_root(root: Path | None = None) -> Path:
    """Resolve the working directory (or `root`) to an absolute, symlink-free path."""
    try:
        target = root if root is not None else Path(os.getcwd())
        return target.resolve(strict=True)
    except OSError as e:
        raise DiscoveryError(f"Cannot resolve working directory: {e}") from e


def discover_repositories(root: Path, filters: Sequence[Filter] = ()) -> list[GitRepository]:
    """Find repository roots under `root` that pass every filter.

    Descent stops at each repository root whether or not it matched, so nested
    repositories are never reported. Any traversal error aborts discovery.
    """

    def on_error(error: OSError) -> None:
        raise DiscoveryError(f"Error walking {error.filename}: {error.strerror or error}")

    repos = []
    for dirpath, dirnames, _filenames in os.walk(root, onerror=on_error):
        current = Path(dirpath)
        if ".git" in dirnames and is_git_repo(current):
            dirnames.clear()
            if matches_all(filters, current):
                repos.append(GitRepository(path=current, root=root))
            continue
        dirnames.sort()

    # Sort by path string for consistent ordering
    repos.sort(key=lambda r: str(r.path))
    return repos


# =============================================================================
# Actions
# =============================================================================


def run_command(path: Path, command: Sequence[str]) -> CommandResult:
    """Run `command` inside `path` with stdout and stderr captured together."""
    try:
        proc = subprocess.run(
            list(command),
            cwd=path,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as e:
        return CommandResult(output=str(e), exit_code=1)

    output = proc.stdout.decode("utf-8", errors="replace")
    # Negative return codes mean the process was killed by a signal
    exit_code = proc.returncode if proc.returncode >= 0 else 1
    return CommandResult(output=output, exit_code=exit_code)


def inspect_status(repo: GitRepository) -> RepositoryStatus:
    """Collect status fields, substituting a safe default for each failing query."""
    ops = repo.ops

    try:
        branch = ops.get_current_branch()
    except GitsError as e:
        branch = f"!{e}"

    try:
        default_branch = ops.get_default_branch()
    except GitsError:
        default_branch = DEFAULT_BRANCH

    try:
        remote_sync = ops.get_remote_sync()
    except (GitsError, ValueError) as e:
        logger.debug("No remote sync state for %s: %s", repo.path, e)
        remote_sync = RemoteSyncState.SYNC

    try:
        clean = ops.is_clean()
    except GitsError as e:
        logger.debug("Treating %s as dirty: %s", repo.path, e)
        clean = False

    try:
        local_branches = ops.get_local_branches()
    except GitsError:
        local_branches = []

    return RepositoryStatus(
        path=repo.path,
        relative_path=repo.relative_path,
        branch=branch,
        default_branch=default_branch,
        remote_sync=remote_sync,
        clean=clean,
        other_branches=sorted(b for b in local_branches if b != branch),
    )


# =============================================================================
# Orchestration
# =============================================================================


class ResultAggregator:
    """Thread-safe collection of formatted results and the failure flag."""

    def __init__(self):
        self._lock = threading.Lock()
        self._results: list[str] = []
        self._failed = False

    def add(self, result: str, failed: bool = False) -> None:
        with self._lock:
            self._results.append(result)
            if failed:
                self._failed = True

    @property
    def failed(self) -> bool:
        with self._lock:
            return self._failed

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def sorted_results(self) -> list[str]:
        """Results ordered by their formatted text."""
        with self._lock:
            return sorted(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


Action = Callable[[GitRepository, ResultAggregator], None]


@dataclass
class Task:
    """One action to run against one repository."""

    repo: GitRepository
    state: TaskState = TaskState.QUEUED


def command_action(command: Sequence[str]) -> Action:
    """Action running `command` in the repository; non-zero exits fail the run."""

    def action(repo: GitRepository, aggregator: ResultAggregator) -> None:
        result = run_command(repo.path, command)
        aggregator.add(
            format_command_result(repo.relative_path, result.output, result.success),
            failed=not result.success,
        )

    return action


def status_action(repos: Sequence[GitRepository]) -> Action:
    """Action rendering a status line aligned across all of `repos`."""
    width = max((cell_len(r.relative_path) for r in repos), default=0)

    def action(repo: GitRepository, aggregator: ResultAggregator) -> None:
        aggregator.add(format_status_line(inspect_status(repo), width))

    return action


class TaskOrchestrator:
    """Run one action per repository with at most `max_workers` running at once.

    An action that raises is reported as a failure block; it fails the run only
    when `fail_on_error` is set.
    """

    def __init__(
        self,
        max_workers: int,
        aggregator: ResultAggregator | None = None,
        fail_on_error: bool = True,
    ):
        if max_workers < 1:
            raise ConfigError(f"parallel must be at least 1, got {max_workers}")
        self.max_workers = max_workers
        self.fail_on_error = fail_on_error
        self.aggregator = aggregator if aggregator is not None else ResultAggregator()
        self.tasks: list[Task] = []
        self._gate = threading.BoundedSemaphore(max_workers)
        self._lock = threading.Lock()
        self._completed = 0

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def total(self) -> int:
        return len(self.tasks)

    def _execute(self, task: Task, action: Action) -> None:
        task.state = TaskState.RUNNING
        try:
            action(task.repo, self.aggregator)
        except Exception as e:
            logger.exception("Task for %s raised", task.repo.path)
            self.aggregator.add(
                format_failure(task.repo.relative_path, f"{type(e).__name__}: {e}"),
                failed=self.fail_on_error,
            )
        finally:
            task.state = TaskState.COMPLETED
            with self._lock:
                self._completed += 1
            self._gate.release()

    def run(self, repos: Sequence[GitRepository], action: Action) -> ResultAggregator:
        """Dispatch tasks in repository order and block until all complete."""
        self.tasks = [Task(repo) for repo in repos]
        if not self.tasks:
            return self.aggregator

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for task in self.tasks:
                self._gate.acquire()
                task.state = TaskState.ADMITTED
                executor.submit(self._execute, task, action)

        return self.aggregator


class ProgressReporter:
    """Transient `completed/total` line refreshed on a fixed interval.

    Use as a context manager around a run; the line is cleared on exit.
    """

    FRAMES = (".", "..", "...")

    def __init__(
        self,
        console: Console,
        completed: Callable[[], int],
        total: int,
        interval: float = 1.0,
        enabled: bool | None = None,
    ):
        self.console = console
        self.completed = completed
        self.total = total
        self.interval = interval
        self.enabled = console.is_terminal if enabled is None else enabled
        self._frames = itertools.cycle(self.FRAMES)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._live: Live | None = None

    def render(self) -> Text:
        return Text(f"⚡ {self.completed()}/{self.total} {next(self._frames)}")

    def _tick(self) -> None:
        while not self._stop.wait(self.interval):
            if self._live is not None:
                self._live.update(self.render(), refresh=True)

    def __enter__(self) -> ProgressReporter:
        if not self.enabled:
            return self
        self._live = Live(
            Text(""),
            console=self.console,
            auto_refresh=False,
            transient=True,
            redirect_stdout=False,
            redirect_stderr=False,
        )
        self._live.start()
        self._thread = threading.Thread(target=self._tick, name="gits-progress", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._live is not None:
            self._live.stop()
            self._live = None


# =============================================================================
# Run
# =============================================================================


def run(config: RunConfig, console: Console, progress_console: Console | None = None) -> int:
    """Discover, filter, dispatch and print; return the process exit code.

    Raises ConfigError or DiscoveryError before any task is started.
    """
    config.validate()
    filters = build_filters(config)
    root = resolve_root(config.root)
    repos = discover_repositories(root, filters)
    logger.debug("Matched %d repositories under %s", len(repos), root)

    action = status_action(repos) if config.status else command_action(config.command)
    # Status queries never fail the run
    orchestrator = TaskOrchestrator(config.parallel, fail_on_error=not config.status)

    with ProgressReporter(
        progress_console or console,
        completed=lambda: orchestrator.completed,
        total=len(repos),
    ):
        aggregator = orchestrator.run(repos, action)

    for result in aggregator.sorted_results():
        console.print(result, highlight=False, emoji=False, soft_wrap=True)

    return aggregator.exit_code


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="gits",
    help="Run a command in every Git repository under the current directory.",
    add_completion=False,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"gits {__version__}")
        raise typer.Exit()


def schema_callback(value: bool):
    """Print the tool schema and exit."""
    if value:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()


def configure_logging(console: Console, verbose: bool) -> None:
    """Route log records through rich on the given console."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command(
    context_settings={
        "allow_interspersed_args": False,
        "ignore_unknown_options": True,
    }
)
def main(
    command: list[str] = typer.Argument(
        None,
        help="Command and arguments to run in each repository",
        show_default=False,
    ),
    parallel: int = typer.Option(
        os.cpu_count() or 1,
        "--parallel",
        "-p",
        min=1,
        envvar="GITS_PARALLEL",
        help="Number of parallel tasks",
    ),
    branch: str = typer.Option(
        "",
        "--branch",
        "-b",
        help="Only match repositories on this branch",
    ),
    dirty: bool = typer.Option(
        False,
        "--dirty",
        help="Only match repositories with a dirty worktree",
    ),
    clean: bool = typer.Option(
        False,
        "--clean",
        help="Only match repositories with a clean worktree",
    ),
    status: bool = typer.Option(
        False,
        "--status",
        help="Display a summary of branch statuses instead of running a command",
    ),
    root: Path = typer.Option(
        None,
        "--root",
        "-C",
        help="Directory to scan instead of the current directory",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log filter and status diagnostics to stderr",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        callback=schema_callback,
        is_eager=True,
        help="Output MCP-compatible tool schema for AI agents",
    ),
):
    """Run COMMAND in every matching Git repository, or show their status."""
    console = Console()
    err_console = Console(stderr=True)
    configure_logging(err_console, verbose)

    config = RunConfig(
        parallel=parallel,
        branch=branch,
        dirty=dirty,
        clean=clean,
        status=status,
        command=list(command or []),
        root=root,
    )

    try:
        exit_code = run(config, console, progress_console=err_console)
    except GitsError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/]", highlight=False)
        raise typer.Exit(1)

    raise typer.Exit(exit_code)
