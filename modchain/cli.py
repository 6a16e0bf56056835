"""CLI entrypoint for modchain."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .config import ActionOptions, ConfigError, ModchainConfig, load_config
from .graph import DependencyGraph
from .git.tags import is_version_tag
from .hosting.credentials import CredentialStore
from .logging import configure_logging
from .models import ActionKind, DependencyFilter, Verbosity
from .orchestrator import Orchestrator, RunResult, reviewed_chain

EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modchain",
        description="Sync, tag and release chains of interdependent Go module repositories.",
    )
    parser.add_argument(
        "action",
        choices=[kind.value for kind in ActionKind],
        help="Action to run over the dependency-ordered repositories.",
    )
    parser.add_argument("-b", "--branch", default="", help="Branch to checkout, create or compare against.")
    parser.add_argument("-m", "--message", default="", help="Commit message prefix for generated commits.")
    parser.add_argument("--tag", action="store_true", help="Tag repositories whose head moved past their tag.")
    parser.add_argument("--commit", action="store_true", help="Commit and push local changes before syncing.")
    parser.add_argument(
        "--pull-request",
        action="store_true",
        help="Open a pull request from the branch into the trunk branch.",
    )
    parser.add_argument(
        "--direct",
        action="store_true",
        help="Only include repositories that directly import a filtered module.",
    )
    parser.add_argument("--set-version", default="", help="Explicit tag to apply (implies --tag).")
    parser.add_argument(
        "-d",
        "--dir",
        dest="directories",
        action="append",
        default=[],
        help="Directory to search for repositories (repeatable, defaults to current directory).",
    )
    parser.add_argument(
        "-f",
        "--filter",
        dest="filters",
        action="extend",
        nargs="+",
        default=[],
        help="Limit the run to MODULE[@VERSION] and the repositories depending on it.",
    )
    parser.add_argument("--source", default=None, help="File whose content is uploaded by the secret action.")
    parser.add_argument(
        "-l",
        "--log-level",
        default="normal",
        help="name-only|o|-1, silent|s|0, error|e|1, normal|n|2 or debug|d|3.",
    )
    parser.add_argument("--config", default=".", help="Path to .modchain.yml or the directory holding it.")
    parser.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt.")
    parser.add_argument("--log-file", default=None, help="Also write debug logs to this file.")
    return parser


def _build_options(parser: argparse.ArgumentParser, args: argparse.Namespace) -> ActionOptions:
    action = ActionKind(args.action)
    set_version = args.set_version.strip()
    if set_version and not is_version_tag(set_version):
        parser.error(f"--set-version expects a semantic version such as v1.2.3, got '{set_version}'")
    source: Optional[Path] = Path(args.source).expanduser() if args.source else None
    if action is ActionKind.SECRET and source is None:
        parser.error("the secret action requires --source")
    return ActionOptions(
        action=action,
        branch=args.branch.strip(),
        commit_message=args.message,
        commit=args.commit,
        tag=args.tag or bool(set_version),
        pull_request=args.pull_request,
        direct_import=args.direct,
        set_version=set_version,
        source_path=source,
        target_directories=tuple(Path(item).expanduser() for item in args.directories),
        filters=tuple(DependencyFilter.parse(item) for item in args.filters if item.strip()),
        verbosity=Verbosity.parse(args.log_level),
        assume_yes=args.yes,
    )


def _confirm(options: ActionOptions, chain: DependencyGraph) -> bool:
    sys.stderr.write(reviewed_chain(options, chain) + "\n\nContinue? [y/N] ")
    sys.stderr.flush()
    try:
        answer = input()
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _report(options: ActionOptions, result: RunResult) -> None:
    if options.verbosity is Verbosity.NAMES_ONLY:
        for identity in result.changed:
            print(identity)
        return
    if options.action is ActionKind.LIST:
        if not options.verbosity.suppresses_output:
            for identity in result.chain.identities:
                print(identity)
        return
    if options.verbosity.suppresses_output or result.declined:
        return
    report = result.stats.format(options.action, options.branch)
    if report:
        print(report)
    for identity in result.dirty:
        print(f"{identity} has local changes")


def main(argv: List[str] | None = None) -> None:
    """CLI entrypoint for modchain."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    options = _build_options(parser, args)

    configure_logging(
        verbosity=options.verbosity,
        log_file=Path(args.log_file) if args.log_file else None,
    )

    try:
        config: ModchainConfig = load_config(Path(args.config))
    except ConfigError as exc:
        parser.exit(1, f"{exc}\n")

    interactive = not options.verbosity.suppresses_output and sys.stdin.isatty()
    credentials = CredentialStore(Path.home() / config.credentials_file, interactive=interactive)
    confirm = None if options.assume_yes or options.verbosity.suppresses_output else _confirm

    orchestrator = Orchestrator(options, config=config, credentials=credentials, confirm=confirm)
    result = orchestrator.run()
    _report(options, result)

    if result.interrupted:
        parser.exit(EXIT_INTERRUPTED, "Interrupted; local changes were restored where possible.\n")
    if result.errors:
        parser.exit(1, "\n".join(result.errors) + "\n")


if __name__ == "__main__":
    main(sys.argv[1:])
