"""Render per-repository results as rich console markup."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.cells import cell_len
from rich.markup import escape

if TYPE_CHECKING:
    from .core import RepositoryStatus

INDENT = "  "

SUCCESS_MARKER = "[green]✓[/]"
FAILURE_MARKER = "[red]✗[/]"
DIRTY_MARKER = "✎"
BEHIND_MARKER = "⬇"
AHEAD_MARKER = "⬆"


def format_command_result(relative_path: str, output: str, success: bool) -> str:
    """Format a command result as a header line followed by indented output.

    Args:
        relative_path: Repository path relative to the invocation root
        output: Captured stdout and stderr of the command
        success: Whether the command exited with status 0

    Returns:
        Console markup for the whole block
    """
    marker = SUCCESS_MARKER if success else FAILURE_MARKER
    body = escape(output).replace("\n", "\n" + INDENT)
    return f"[bold]{marker} {escape(relative_path)}:[/]\n{INDENT}{body}"


def format_failure(relative_path: str, message: str) -> str:
    """Format a task that could not produce a result of its own."""
    return format_command_result(relative_path, message, success=False)


def _pad(text: str, width: int) -> str:
    """Left-justify by terminal cells so wide characters line up."""
    return text + " " * max(width - cell_len(text), 0)


def _branch_segment(name: str, style: str) -> str:
    return f" \\[[{style}]{escape(name)}[/]]"


def _status_annotation(status: RepositoryStatus) -> str:
    """Get dirty / behind / ahead markers, empty when there is nothing to show."""
    from .core import RemoteSyncState

    markers = ""
    if not status.clean:
        markers += DIRTY_MARKER
    match status.remote_sync:
        case RemoteSyncState.BEHIND:
            markers += BEHIND_MARKER
        case RemoteSyncState.AHEAD:
            markers += AHEAD_MARKER

    if not markers:
        return ""
    return f"[red]([/]{markers}[red])[/]"


def format_status_line(status: RepositoryStatus, width: int) -> str:
    """Format a single status line with the path column padded to `width`."""
    branch_style = "bold green" if status.on_default_branch else "bold red"

    parts = [
        f"[bold]{escape(_pad(status.relative_path, width))}[/]",
        _branch_segment(status.branch, branch_style),
        _status_annotation(status),
    ]
    parts.extend(_branch_segment(name, "blue") for name in status.other_branches)
    return "".join(parts)
