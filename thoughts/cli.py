"""
CLI interface for the thoughts overlay.

Usage:
    thoughts init --directory myproject
    thoughts sync -m "notes from the review"
    thoughts status
"""

import contextlib
import json
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from .api import InitResult, StatusReport, Thoughts
from .config import ConfigStore, Config, expand_path
from .errors import ThoughtsError
from .logging_config import configure_quiet_mode, enable_debug_mode, is_verbose_env


# Configure quiet mode by default
# Set THOUGHTS_VERBOSE=1 to enable debug mode via environment
if is_verbose_env():
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"thoughts {version('thoughts-cli')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_config_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _config_callback(value: Optional[Path]):
    global _config_override
    _config_override = value


def _get_config_override() -> Optional[Path]:
    return _config_override


app = typer.Typer(
    name="thoughts",
    help="Project a shared, git-synced notes store into working repositories.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    config_file: Annotated[Optional[Path], typer.Option(
        "--config-file", "-c",
        envvar="THOUGHTS_CONFIG",
        help="Path to the config file",
        callback=_config_callback,
        is_eager=True,
    )] = None,
):
    """Project a shared, git-synced notes store into working repositories."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

ConfigFileOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config-file",
        help="Path to the config file (default: ~/.config/thoughts/config.json)"
    )
]


def _config_store(config_file: Optional[Path]) -> ConfigStore:
    actual = config_file if config_file is not None else _get_config_override()
    return ConfigStore(expand_path(actual) if actual is not None else None)


@contextlib.contextmanager
def _handle_errors() -> Iterator[None]:
    """Turn expected failures into a one-line message and exit code 1."""
    try:
        yield
    except (ThoughtsError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@contextlib.contextmanager
def _get_thoughts(config_file: Optional[Path], install_hooks: bool = True) -> Iterator[Thoughts]:
    with _handle_errors():
        th = Thoughts(_config_store(config_file), install_hooks=install_hooks)
        try:
            yield th
        finally:
            th.close()


def _emit_json(data) -> None:
    typer.echo(json.dumps(data, indent=2))


def _echo_warnings(warnings: list[str], errors: list[tuple[str, str]]) -> None:
    for w in warnings:
        typer.echo(f"Warning: {w}", err=True)
    for path, err in errors:
        typer.echo(f"Warning: could not mirror {path}: {err}", err=True)


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _format_init(result: InitResult) -> str:
    eff = result.effective
    lines = [
        f"Initialized thoughts for {result.working_dir}",
        f"  Store: {eff.thoughts_repo}",
        f"  Slug: {result.slug}" + (f" (profile {eff.profile})" if eff.profile else ""),
    ]
    for link in result.report.links:
        lines.append(f"  thoughts/{link.category} -> {link.source} [{link.action}]")
    m = result.report.mirror
    summary = f"  searchable/: {m.created} linked, {m.replaced} refreshed, {m.removed} removed, {m.unchanged} unchanged"
    if m.copied:
        summary += f", {m.copied} copied"
    lines.append(summary)
    if result.repository_created:
        lines.append(f"  Created git repository in {eff.thoughts_repo}")
    if result.hooks:
        lines.append(f"  Installed git hooks: {', '.join(result.hooks)}")
    return "\n".join(lines)


def _format_status(report: StatusReport) -> str:
    eff = report.effective
    lines = [
        "Configuration:",
        f"  Repository: {eff.thoughts_repo}",
        f"  Repos directory: {eff.repos_dir}",
        f"  Global directory: {eff.global_dir}",
        f"  User: {eff.user}",
        f"  Mapped repos: {report.mapped_repos}",
        "",
    ]
    if not report.mapped:
        lines.append(f"{report.working_dir} is not mapped to thoughts. Run 'thoughts init'.")
    else:
        lines.append("Current Repository:")
        lines.append(f"  Path: {report.working_dir}")
        lines.append(f"  Thoughts directory: {eff.repos_dir}/{report.slug}"
                     + (f" (profile {eff.profile})" if eff.profile else ""))
        for entry in report.entries:
            line = f"  {entry.category}: {entry.state.value}"
            if entry.actual is not None and entry.state.value != "ok":
                line += f" (points to {entry.actual})"
            lines.append(line)
        d = report.mirror
        if not report.searchable_present:
            lines.append("  searchable: missing")
        elif d.in_sync:
            lines.append(f"  searchable: in sync ({len(d.unchanged)} files)")
        else:
            lines.append(f"  searchable: {len(d.create)} missing, {len(d.replace)} stale, "
                         f"{len(d.remove)} extra (run 'thoughts sync')")
    lines.append("")

    if not report.store_exists:
        lines.append(f"Store {eff.thoughts_repo} does not exist yet.")
    elif not report.vcs.is_repo:
        lines.append("Store is not a git repository.")
    else:
        vcs = report.vcs
        lines.append("Thoughts Repository Git Status:")
        lines.append(f"  Last commit: {vcs.last_commit or 'No commits yet'}")
        lines.append(f"  Remote: {vcs.remote or 'No remote configured'}")
        if vcs.changes:
            lines.append("")
            lines.append("Uncommitted changes:")
            lines.extend(f"  {c}" for c in vcs.changes)
            lines.append("")
            lines.append("Run 'thoughts sync' to commit these changes")
        else:
            lines.append("  No uncommitted changes")
    return "\n".join(lines)


def _profile_dict(config: Config, name: Optional[str]) -> dict:
    eff = config.resolve_profile(name)
    return {
        "thoughtsRepo": str(eff.thoughts_repo),
        "reposDir": eff.repos_dir,
        "globalDir": eff.global_dir,
    }


def _format_settings(d: dict, indent: str = "  ") -> list[str]:
    return [
        f"{indent}Thoughts repository: {d['thoughtsRepo']}",
        f"{indent}Repos directory: {d['reposDir']}",
        f"{indent}Global directory: {d['globalDir']}",
    ]


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(
    directory: Annotated[Optional[str], typer.Option(
        "--directory", "-d",
        help="Name of this project's directory in the store (default: folder name)"
    )] = None,
    profile: Annotated[Optional[str], typer.Option(
        "--profile", "-p",
        help="Use the store settings of a named profile"
    )] = None,
    force: Annotated[bool, typer.Option(
        "--force",
        help="Rebind an existing mapping and replace conflicting overlay entries"
    )] = False,
    no_hooks: Annotated[bool, typer.Option(
        "--no-hooks",
        help="Do not install git hooks in this repository"
    )] = False,
    config_file: ConfigFileOption = None,
):
    """
    Set up thoughts for the current directory.

    \b
    Creates thoughts/user, thoughts/shared and thoughts/global symlinks
    into the store plus a thoughts/searchable/ mirror of hard links.
    Safe to re-run: an existing setup is reconciled.
    """
    with _get_thoughts(config_file, install_hooks=not no_hooks) as th:
        result = th.init(Path.cwd(), profile=profile, slug=directory, force=force)

    if _get_json_output():
        _emit_json(result.to_dict())
    else:
        typer.echo(_format_init(result))
    _echo_warnings(result.warnings + result.report.warnings, result.report.mirror.errors)


@app.command()
def sync(
    message: Annotated[Optional[str], typer.Option(
        "--message", "-m",
        help="Commit message (default: 'Sync thoughts - <timestamp>')"
    )] = None,
    config_file: ConfigFileOption = None,
):
    """Refresh the overlay, then commit and push the store."""
    with _get_thoughts(config_file) as th:
        result = th.sync(Path.cwd(), message=message)

    if _get_json_output():
        _emit_json(result.to_dict())
    else:
        m = result.report.mirror
        typer.echo(f"searchable/: {m.created} linked, {m.replaced} refreshed, {m.removed} removed")
        vcs = result.vcs
        if vcs.committed:
            typer.echo(f"Committed: {vcs.message}")
        else:
            typer.echo("No changes to commit")
        if vcs.pushed:
            typer.echo(f"Pushed to {vcs.remote}")
        elif vcs.remote is None:
            typer.echo("No remote configured; changes are local only")
    _echo_warnings(result.report.warnings, result.report.mirror.errors)


@app.command()
def status(
    config_file: ConfigFileOption = None,
):
    """Show the overlay and store state for the current directory."""
    with _get_thoughts(config_file) as th:
        report = th.status(Path.cwd())

    if _get_json_output():
        _emit_json(report.to_dict())
    else:
        typer.echo(_format_status(report))
        for w in report.warnings:
            typer.echo(f"Warning: {w}", err=True)


@app.command()
def uninit(
    force: Annotated[bool, typer.Option(
        "--force",
        help="Remove the overlay even if the directory is not in the config"
    )] = False,
    config_file: ConfigFileOption = None,
):
    """Remove the thoughts overlay from the current directory (store content is kept)."""
    with _get_thoughts(config_file) as th:
        result = th.uninit(Path.cwd(), force=force)

    if _get_json_output():
        _emit_json(result.to_dict())
        return
    if result.removed:
        typer.echo(f"Removed thoughts/{{{','.join(result.removed)}}}")
    for name in result.left:
        typer.echo(f"Left thoughts/{name} in place: it is not a symlink", err=True)
    if result.mapping_removed:
        typer.echo(f"Removed mapping for {result.working_dir}")
    if result.slug:
        typer.echo(f"Notes for '{result.slug}' remain in the store")


@app.command()
def config(
    edit: Annotated[bool, typer.Option(
        "--edit",
        help="Open the config file in $EDITOR"
    )] = False,
    as_json: Annotated[bool, typer.Option(
        "--json",
        help="Output the config file as JSON"
    )] = False,
    prune: Annotated[bool, typer.Option(
        "--prune",
        help="Remove mappings for directories that no longer exist"
    )] = False,
    config_file: ConfigFileOption = None,
):
    """
    Show configuration.

    \b
    Examples:
        thoughts config              # Show settings and mappings
        thoughts config --json       # Raw config document
        thoughts config --edit       # Edit in $EDITOR
        thoughts config --prune      # Drop mappings for deleted directories
    """
    store = _config_store(config_file)

    if edit:
        with _handle_errors():
            if not store.exists():
                store.save(store.load())
        typer.edit(filename=str(store.path))
        return

    if prune:
        with _get_thoughts(config_file) as th:
            removed = th.prune_mappings()
        if _get_json_output() or as_json:
            _emit_json({"pruned": removed})
        elif removed:
            for p in removed:
                typer.echo(f"Pruned {p}")
        else:
            typer.echo("No orphaned mappings")
        return

    with _handle_errors():
        cfg = store.load()

    if _get_json_output() or as_json:
        _emit_json(cfg.to_dict())
        return

    lines = [
        "Settings:",
        f"  Config file: {store.path}" + ("" if store.exists() else " (not created yet)"),
        f"  Thoughts repository: {cfg.thoughts_repo}",
        f"  Repos directory: {cfg.repos_dir}",
        f"  Global directory: {cfg.global_dir}",
        f"  User: {cfg.user}",
        "",
        "Repository Mappings:",
    ]
    if not cfg.repo_mappings:
        lines.append("  No repositories mapped yet")
    orphaned = set(cfg.find_orphaned_mappings())
    for path, mapping in sorted(cfg.repo_mappings.items()):
        suffix = f" (profile {mapping.profile})" if mapping.profile else ""
        if path in orphaned:
            suffix += " [missing]"
        lines.append(f"  {path}")
        lines.append(f"    -> {mapping.repo}{suffix}")
    if orphaned:
        lines.append("")
        lines.append(f"{len(orphaned)} mapping(s) point at missing directories; run 'thoughts config --prune'")
    lines.append("")
    lines.append("To edit configuration, run: thoughts config --edit")
    typer.echo("\n".join(lines))


# -----------------------------------------------------------------------------
# Profiles
# -----------------------------------------------------------------------------

profile_app = typer.Typer(
    name="profile",
    help="Profiles: named alternate stores.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
app.add_typer(profile_app)


@profile_app.command("create")
def profile_create(
    name: Annotated[str, typer.Argument(help="Profile name")],
    repo: Annotated[Optional[str], typer.Option(
        "--repo", help="Thoughts repository for this profile"
    )] = None,
    repos_dir: Annotated[Optional[str], typer.Option(
        "--repos-dir", help="Repository-specific subdirectory (default: inherit)"
    )] = None,
    global_dir: Annotated[Optional[str], typer.Option(
        "--global-dir", help="Cross-project subdirectory (default: inherit)"
    )] = None,
    config_file: ConfigFileOption = None,
):
    """Create a profile pointing at an alternate store."""
    with _get_thoughts(config_file) as th:
        created = th.create_profile(name, thoughts_repo=repo, repos_dir=repos_dir, global_dir=global_dir)

    if _get_json_output():
        _emit_json({"created": created})
        return
    if created != name:
        typer.echo(f"Profile name sanitized: {name!r} -> {created!r}", err=True)
    typer.echo(f"Created profile {created}")
    typer.echo(f"Use it with: thoughts init --profile {created}")


@profile_app.command("list")
def profile_list(
    config_file: ConfigFileOption = None,
):
    """List profiles and the default settings."""
    with _handle_errors():
        cfg = _config_store(config_file).load()

    if _get_json_output():
        _emit_json({k: v.to_dict() for k, v in sorted(cfg.profiles.items())})
        return

    lines = ["Default Configuration:"]
    lines.extend(_format_settings(_profile_dict(cfg, None)))
    lines.append("")
    if not cfg.profiles:
        lines.append("No profiles configured.")
        lines.append("Create a profile with: thoughts profile create <name>")
    else:
        lines.append(f"Profiles ({len(cfg.profiles)}):")
        for name in sorted(cfg.profiles):
            lines.append(f"  {name}:")
            lines.extend(_format_settings(_profile_dict(cfg, name), indent="    "))
    typer.echo("\n".join(lines))


@profile_app.command("show")
def profile_show(
    name: Annotated[str, typer.Argument(help="Profile name")],
    config_file: ConfigFileOption = None,
):
    """Show a profile's effective settings and the repositories using it."""
    with _handle_errors():
        cfg = _config_store(config_file).load()
        settings = _profile_dict(cfg, name)

    users = sorted(p for p, m in cfg.repo_mappings.items() if m.profile == name)
    if _get_json_output():
        _emit_json({"name": name, **settings, "repositories": users})
        return

    lines = [f"Profile: {name}"]
    lines.extend(_format_settings(settings))
    lines.append("")
    if users:
        lines.append(f"Used by {len(users)} repositories:")
        lines.extend(f"  {p}" for p in users)
    else:
        lines.append("Not used by any repository")
    typer.echo("\n".join(lines))


@profile_app.command("delete")
def profile_delete(
    name: Annotated[str, typer.Argument(help="Profile name")],
    force: Annotated[bool, typer.Option(
        "--force", help="Delete even if repositories still use it"
    )] = False,
    config_file: ConfigFileOption = None,
):
    """Delete a profile."""
    with _get_thoughts(config_file) as th:
        th.delete_profile(name, force=force)

    if _get_json_output():
        _emit_json({"deleted": name})
    else:
        typer.echo(f"Deleted profile {name}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="thoughts CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
