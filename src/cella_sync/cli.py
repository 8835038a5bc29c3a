import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from . import git_wrapper, ops
from .config import Config
from .constants import APP_NAME, CONFIG_FILE_NAME, PYPROJECT_SECTION
from .errors import ConfigurationError, SyncError
from .git_wrapper import GitRepo
from .models import (
    WORKFLOW_NAMES,
    ConflictsPresent,
    DetectDivergence,
    DivergenceResult,
    FastForwarded,
    Merged,
    PullFork,
    PullOutcome,
    PullUpstream,
    PushOutcome,
    UpToDate,
    Workflow,
    WorkflowResult,
)
from .workflows import build_session, run_workflow

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

TITLE = "[bold]cella-sync[/bold] [dim]keep a fork in step with its template[/dim]"


def setup_logging(verbose: bool) -> None:
    """Configures the logging subsystem.

    Args:
        verbose (bool): If True, log every git step at DEBUG level. Otherwise
                        only warnings and errors are shown.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.handlers.clear()
    logger.addHandler(stream_handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Returns a copy of the config with command-line flags applied on top."""
    updates = {}
    if args.diverged_file:
        updates["diverged_file"] = args.diverged_file
    if args.ignore_file:
        updates["ignore_file"] = args.ignore_file
    if args.ignore:
        updates["ignore_list"] = list(
            dict.fromkeys([*config.sync.ignore_list, *args.ignore])
        )
    if args.upstream_branch:
        updates["upstream_branch"] = args.upstream_branch
    if args.upstream_remote:
        updates["upstream_remote"] = args.upstream_remote
    if args.local_branch:
        updates["local_branch"] = args.local_branch

    if not updates:
        return config
    return replace(config, sync=replace(config.sync, **updates))


def ask_service(interactive: bool) -> str:
    """Asks which workflow to run.

    Args:
        interactive (bool): Whether prompting is allowed.

    Returns:
        str: A key of `WORKFLOW_NAMES`.

    Raises:
        ConfigurationError: If prompting is not allowed.
    """
    if not interactive:
        raise ConfigurationError(
            f"No sync service given. Choose one of: {', '.join(WORKFLOW_NAMES)}."
        )

    console.print("Select the sync service you want to use:")
    for key, label in WORKFLOW_NAMES.items():
        console.print(f"   [cyan]{key}[/cyan]  {label}")

    choice = Prompt.ask(
        "Service", choices=[*WORKFLOW_NAMES, "cancel"], default="diverged"
    )
    if choice == "cancel":
        console.print("[bold red]ABORTED.[/bold red]")
        sys.exit(1)
    return choice


def resolve_local_branch(
    git: GitRepo, configured: str | None, interactive: bool
) -> str:
    """Returns the branch to sync, confirming the current branch if it was not set."""
    if configured:
        return configured

    branch = git_wrapper.current_branch(git)
    if interactive and not Confirm.ask(
        f'You are currently on branch "{branch}". Do you want to proceed?',
        default=True,
    ):
        console.print("[bold red]ABORTED.[/bold red]")
        sys.exit(1)
    return branch


def resolve_fork_workflow(
    config: Config, fork_name: str | None, pr_branch: str | None, interactive: bool
) -> PullFork:
    """Resolves the fork and PR branch name before any git state is touched.

    Args:
        config (Config): The merged configuration.
        fork_name (str | None): A fork chosen on the command line.
        pr_branch (str | None): A PR branch name given on the command line.
        interactive (bool): Whether prompting is allowed.

    Returns:
        PullFork: The workflow with its resolved fork.
    """
    forks = config.forks

    if not pr_branch:
        default = ops.default_pr_branch_name()
        pr_branch = (
            Prompt.ask("Enter the PR branch name", default=default)
            if interactive
            else default
        )

    if fork_name is None and interactive and len(forks) > 1:
        fork_name = Prompt.ask(
            "Select the fork you want to push to",
            choices=[f.name for f in forks],
        )

    fork = ops.select_fork(forks, fork_name)

    if interactive and fork_name is None:
        proceed = Confirm.ask(
            f'Currently selected fork "{fork.name}" with remote url '
            f'"{fork.remote_url}" and branch "{fork.branch}". Do you want to proceed?',
            default=True,
        )
        if not proceed:
            console.print("[bold red]ABORTED.[/bold red]")
            sys.exit(1)

    return PullFork(fork=fork, pr_branch=pr_branch)


def resolve_workflow(
    service: str, config: Config, args: argparse.Namespace, interactive: bool
) -> Workflow:
    if service == "diverged":
        return DetectDivergence()
    if service == "pull-upstream":
        return PullUpstream()
    if service == "pull-fork":
        return resolve_fork_workflow(config, args.fork, args.pr_branch, interactive)
    raise ConfigurationError(f"Unknown sync service '{service}'.")


def render_divergence(result: DivergenceResult) -> int:
    """Prints the diverged paths and a summary."""
    if result.written:
        console.print(
            f"[bold green]✔[/bold green] Diverged files written to {result.report_path}."
        )
    else:
        console.print(
            "[bold green]✔[/bold green] No files have diverged between the upstream "
            "and local branch that are not ignored."
        )

    console.print()
    # Printed one per line with a ./ prefix so terminals make them clickable.
    for path in result.files:
        console.print(f"./{path}", markup=False, highlight=False)

    console.print()
    console.print(
        f"Found [blue]{len(result.files)}[/blue] diverged files between the "
        "upstream and local branch."
    )
    return 0


def render_pull(outcome: PullOutcome) -> int:
    """Prints the upstream pull result. Conflicts return a non-zero exit code."""
    if isinstance(outcome, UpToDate):
        console.print(
            f"[bold green]SUCCESS:[/bold green] '{outcome.branch}' is already up to date."
        )
        return 0

    if isinstance(outcome, FastForwarded):
        console.print(
            f"[bold green]SUCCESS:[/bold green] Fast-forwarded '{outcome.branch}' "
            f"by {outcome.commits} commits."
        )
        return 0

    if isinstance(outcome, Merged):
        console.print(
            f"[bold green]SUCCESS:[/bold green] Merged {outcome.commits} upstream "
            f"commits into '{outcome.branch}'. Review and push when ready."
        )
        return 0

    if isinstance(outcome, ConflictsPresent):
        content = Text()
        content.append(
            f"Merging upstream into '{outcome.branch}' stopped on conflicts.\n\n",
            style="bold",
        )
        for path in outcome.files:
            content.append(f"   ✖ {path}\n", style="red")
        content.append(
            "\nResolve them, then run 'git add' and 'git commit'.\n"
            "Run 'git merge --abort' to discard the merge instead.",
            style="dim",
        )
        console.print(
            Panel(
                content,
                title="Conflicts Present",
                border_style="yellow",
                expand=False,
            )
        )
        return 1

    raise TypeError(f"Unhandled pull outcome: {outcome!r}")


def render_push(outcome: PushOutcome) -> int:
    """Prints the pushed branch and where to open the pull request."""
    content = Text()
    content.append("Branch: ", style="bold")
    content.append(f"{outcome.branch}\n")
    content.append("Fork:   ", style="bold")
    content.append(f"{outcome.remote} ({outcome.remote_url})\n")
    content.append("Base:   ", style="bold")
    content.append(outcome.base_branch)
    if outcome.compare_url:
        content.append("\n\nOpen the pull request:\n", style="bold")
        content.append(outcome.compare_url, style="cyan")

    console.print(
        Panel(content, title="PR Branch Pushed", border_style="green", expand=False)
    )
    return 0


def render_result(result: WorkflowResult) -> int:
    """Prints a workflow result and returns the process exit code."""
    if isinstance(result, DivergenceResult):
        return render_divergence(result)
    if isinstance(result, PullOutcome):
        return render_pull(result)
    if isinstance(result, PushOutcome):
        return render_push(result)
    raise TypeError(f"Unhandled workflow result: {result!r}")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="cella-sync Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "sync",
        "diverged_file",
        "str",
        '"diverged.txt"',
        "Where the list of diverged files is written.",
    )
    table.add_row(
        "", "ignore_file", "str", "None", "File with one ignore pattern per line."
    )
    table.add_row(
        "", "ignore_list", "list", "[]", "Ignore patterns applied before the file's."
    )
    table.add_row(
        "", "upstream_branch", "str", '"development"', "The template branch to sync with."
    )
    table.add_row(
        "", "upstream_remote", "str", '"upstream"', "Remote name of the template."
    )
    table.add_row(
        "", "upstream_url", "str", "None", "Template URL, used to add the remote."
    )
    table.add_row(
        "", "local_branch", "str", "current", "The branch to sync."
    )
    table.add_row(
        escape("[[forks]]"),
        "name",
        "str",
        "-",
        "Remote name for the fork.",
    )
    table.add_row("", "remote_url", "str", "-", "The fork's clone URL.")
    table.add_row("", "branch", "str", "-", "The fork branch PRs target.")

    console.print(table)
    console.print(
        f"[dim]Read from {CONFIG_FILE_NAME} or {escape(f'[{PYPROJECT_SECTION}]')} in pyproject.toml.[/dim]"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Keep a fork in sync with its upstream template.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=[*WORKFLOW_NAMES, "config"],
        help="Sync service to run, or 'config' to show configuration options",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to a config file")
    parser.add_argument("--diverged-file", help="Where to write diverged files")
    parser.add_argument("--ignore-file", help="File with ignore patterns")
    parser.add_argument(
        "--ignore",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Ignore pattern (repeatable)",
    )
    parser.add_argument("--upstream-branch", help="Upstream branch to sync with")
    parser.add_argument("--upstream-remote", help="Remote name of the upstream")
    parser.add_argument("--local-branch", help="Local branch (default: current)")
    parser.add_argument("--fork", help="Name of the fork to push to")
    parser.add_argument("--pr-branch", help="Name of the PR branch to create")
    parser.add_argument(
        "--yes", "-y", action="store_true", help="Never prompt; fail instead"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log every git command"
    )
    return parser


def run(args: argparse.Namespace) -> int:
    """Resolves inputs, runs one workflow and renders its result.

    Args:
        args (argparse.Namespace): Parsed command-line arguments.

    Returns:
        int: The process exit code.
    """
    if args.command == "config":
        show_config_reference()
        return 0

    interactive = not args.yes and sys.stdin.isatty()
    cwd = Path.cwd()

    console.print(TITLE)
    console.print()

    service = args.command or ask_service(interactive)

    config = apply_overrides(Config.load(cwd, args.config), args)
    if config.source:
        logger.info(f"Using config from {config.source}")

    repo = GitRepo(cwd)
    local_branch = resolve_local_branch(repo, config.sync.local_branch, interactive)
    workflow = resolve_workflow(service, config, args, interactive)
    session = build_session(cwd, config, workflow, local_branch)

    with console.status(f"Running {WORKFLOW_NAMES[service].lower()}...", spinner="dots"):
        result = run_workflow(session, repo)

    return render_result(result)


def main() -> None:
    """Main entry point for the cella-sync CLI."""
    args = build_parser().parse_args()
    setup_logging(args.verbose)

    try:
        code = run(args)
    except (SyncError, OSError) as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {escape(str(e))}", highlight=False)
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("[bold red]ABORTED.[/bold red]")
        sys.exit(130)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
