"""MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    return {
        "name": "gits",
        "version": __version__,
        "description": "Run a command in every Git repository under a directory, in parallel, or show a one-line branch status per repository. Repositories can be narrowed by current branch and by dirty/clean worktree. Nested repositories inside a discovered repository are not visited.",
        "usage": "gits [options] command [args...]",
        "tools": [
            {
                "name": "gits",
                "description": "Discover repositories under the root, filter them, then run the trailing command in each one (or --status). Output is one block per repository, sorted. Exit code is 1 if any command exited non-zero.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "command": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Executable and arguments to run in each repository (required unless status is set)",
                        },
                        "status": {
                            "type": "boolean",
                            "description": "Show current branch, dirty/behind/ahead markers and other local branches instead of running a command",
                            "default": False,
                        },
                        "parallel": {
                            "type": "integer",
                            "minimum": 1,
                            "description": "Maximum number of repositories processed at once (default: CPU count, env: GITS_PARALLEL)",
                        },
                        "branch": {
                            "type": "string",
                            "description": "Only match repositories whose current branch has this name",
                        },
                        "dirty": {
                            "type": "boolean",
                            "description": "Only match repositories with uncommitted changes",
                            "default": False,
                        },
                        "clean": {
                            "type": "boolean",
                            "description": "Only match repositories without uncommitted changes",
                            "default": False,
                        },
                        "root": {
                            "type": "string",
                            "description": "Directory to scan (default: current directory)",
                            "default": ".",
                        },
                    },
                    "required": [],
                },
                "examples": [
                    {
                        "description": "Fetch every repository under the current directory",
                        "command": "gits git fetch --all",
                    },
                    {
                        "description": "Branch overview of all repositories",
                        "command": "gits --status",
                    },
                    {
                        "description": "Show uncommitted changes of repositories on a feature branch",
                        "command": "gits --branch bugfix-123 --dirty git status -s",
                    },
                    {
                        "description": "Run serially",
                        "command": "gits -p 1 make test",
                    },
                ],
            }
        ],
    }
