"""
CLI interface for pkgsmith.

Provides commands: build, validate, status, templates.
"""

from pathlib import Path

import click

from pkgsmith import __version__
from pkgsmith.config import find_recipe, load_recipe
from pkgsmith.errors import PkgsmithError
from pkgsmith.needs import recipe_needs
from pkgsmith.registry import TemplateRegistry
from pkgsmith.runners import RUNNER_KINDS
from pkgsmith.session import DEFAULT_CACHE_DIR, GUEST_BUILDERS, BuildSession, SessionOptions
from pkgsmith.state import SessionStateStore
from pkgsmith.utils import (
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="pkgsmith")
def main():
    """
    pkgsmith - Build packages from declarative YAML recipes.

    Runs a recipe's pipelines inside an isolated guest and emits one
    package per (sub)package.
    """
    pass


@main.command()
@click.argument("recipe", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--source-dir", type=click.Path(file_okay=False, path_type=Path), default=Path("."),
              show_default=True, help="Directory copied into the workspace")
@click.option("--workspace-dir", type=click.Path(file_okay=False, path_type=Path),
              help="Workspace directory (default: a temporary directory)")
@click.option("--guest-dir", type=click.Path(file_okay=False, path_type=Path),
              help="Guest directory (default: a temporary directory)")
@click.option("--out-dir", type=click.Path(file_okay=False, path_type=Path), default=Path("."),
              show_default=True, help="Where packages are written")
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path), default=DEFAULT_CACHE_DIR,
              show_default=True, help="Cache of content-addressed downloads")
@click.option("--pipeline-dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Additional step-template directory")
@click.option("--arch", help="Target architecture (default: host)")
@click.option("--build-date", default="", help="RFC 3339 build timestamp (default: UNIX epoch)")
@click.option("--signing-key", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Key used to sign the index")
@click.option("--signing-passphrase", default="", envvar="PKGSMITH_SIGNING_PASSPHRASE",
              help="Passphrase for an encrypted signing key")
@click.option("--dependency-log", type=click.Path(dir_okay=False, path_type=Path),
              help="Write resolved depends and provides of each package to this JSON file")
@click.option("--strip-origin-name", is_flag=True, help="Omit the origin field from .PKGINFO")
@click.option("--generate-index/--no-generate-index", default=True, show_default=True,
              help="Write INDEX.json after building")
@click.option("--use-proot", is_flag=True, help="Use proot instead of bubblewrap")
@click.option("--empty-workspace", is_flag=True, help="Do not copy the source directory")
@click.option("--workspace-ignore", default=".pkgsmithignore", show_default=True,
              help="Ignore file inside the source directory")
@click.option("--keyring-append", "extra_keys", multiple=True, help="Extra keyring entry for the guest")
@click.option("--repository-append", "extra_repos", multiple=True, help="Extra repository for the guest")
@click.option("--overlay-binsh", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Shell copied over the guest's /bin/sh")
@click.option("--breakpoint-label", default="", help="Stop before the step with this label")
@click.option("--continue-label", default="", help="Resume a suspended build at this label")
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="dotenv file merged beneath the recipe environment")
@click.option("--runner", type=click.Choice(RUNNER_KINDS), default="bubblewrap", show_default=True,
              help="How commands enter the guest")
@click.option("--guest-builder", type=click.Choice(GUEST_BUILDERS), default="apko", show_default=True,
              help="How the guest is built")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), help="Also log to this file")
@click.option("--log-format", type=click.Choice(["pretty", "structured"]), default="pretty",
              show_default=True, help="Console log format")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def build(recipe, log_file, log_format, verbose, **options):
    """
    Build the packages described by a recipe.

    Examples:

      # Build the recipe in the current directory
      pkgsmith build

      # Stop before the step labelled "install"
      pkgsmith build --workspace-dir ws --breakpoint-label install

      # Continue that build
      pkgsmith build --workspace-dir ws/x86_64 --continue-label install

      # Run on the host, without a sandbox
      pkgsmith build pkgsmith.yaml --runner host --guest-builder local
    """
    setup_logging(log_file=log_file, log_level="DEBUG" if verbose else "INFO", log_format=log_format)

    options["extra_keys"] = tuple(options["extra_keys"])
    options["extra_repos"] = tuple(options["extra_repos"])
    options["overlay_bin_sh"] = options.pop("overlay_binsh")

    try:
        session = BuildSession.from_options(SessionOptions(recipe_path=recipe, **options))
        print_banner(f"Building {session.recipe.package.name} for {session.arch}")
        result = session.build()
    except PkgsmithError as e:
        print_error(f"Build failed: {e}")
        raise SystemExit(1)

    if result.suspended:
        print_warning(result.summarize())
    else:
        print_success(result.summarize())


@main.command()
@click.argument("recipe", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--pipeline-dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Additional step-template directory")
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="dotenv file merged beneath the recipe environment")
def validate(recipe, pipeline_dir, env_file):
    """
    Load a recipe and resolve every template it uses.

    Prints the packages the guest will need. Nothing is built.

    Examples:

      pkgsmith validate
      pkgsmith validate path/to/pkgsmith.yaml --pipeline-dir pipelines
    """
    try:
        recipe_path = recipe or find_recipe()
        loaded = load_recipe(recipe_path, env_file=env_file)
        if not loaded.pipeline:
            print_error("No pipeline has been configured")
            raise SystemExit(1)
        needs = recipe_needs(loaded, TemplateRegistry(pipeline_dir))
    except PkgsmithError as e:
        print_error(f"Validation failed: {e}")
        raise SystemExit(1)

    package = loaded.package
    print_success(f"{recipe_path} is valid: {package.name} {package.full_version}")
    if loaded.subpackages:
        print_info("Subpackages: " + ", ".join(sp.name for sp in loaded.subpackages))
    if needs:
        print_info("Needs: " + ", ".join(sorted(needs)))


@main.command()
@click.argument("workspace", type=click.Path(exists=True, file_okay=False, path_type=Path))
def status(workspace):
    """
    Show the suspended build in a workspace, if any.

    Examples:

      pkgsmith status ws/x86_64
    """
    try:
        suspended = SessionStateStore(workspace).load()
    except PkgsmithError as e:
        print_error(f"Could not read session state: {e}")
        raise SystemExit(1)

    if suspended is None:
        print_info(f"No suspended build in {workspace}")
        return

    click.echo(f"Package:    {suspended.package}")
    click.echo(f"Arch:       {suspended.arch}")
    click.echo(f"Breakpoint: {suspended.breakpoint_label}")
    click.echo(f"Guest:      {suspended.guest_dir}")
    click.echo(f"Suspended:  {suspended.suspended_at.strftime('%Y-%m-%d %H:%M:%S')}")
    click.echo(f"Continue with: pkgsmith build --workspace-dir {workspace} "
               f"--continue-label {suspended.breakpoint_label}")


@main.command()
@click.option("--pipeline-dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Additional step-template directory")
def templates(pipeline_dir):
    """
    List step-templates available to ``uses``.

    Examples:

      pkgsmith templates
      pkgsmith templates --pipeline-dir pipelines
    """
    registry = TemplateRegistry(pipeline_dir)
    for ref in registry.list_templates():
        try:
            template = registry.load(ref)
        except PkgsmithError as e:
            print_warning(f"{ref}: {e}")
            continue
        click.echo(f"{ref:<28} {template.name}")


if __name__ == "__main__":
    main()
