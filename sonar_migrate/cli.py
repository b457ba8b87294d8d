"""CLI entry point, command definitions using Click.

Commands:
    init      Generate a template config file
    migrate   Replay false-positive / won't-fix resolutions on a target project
"""

import logging
import sys

import click

from sonar_migrate import __version__

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

class _ClickHandler(logging.Handler):
    """Send log records to stderr through click.echo."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(verbose: bool, log_file: str | None) -> None:
    logger = logging.getLogger("sonar_migrate")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = _ClickHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console)

    if log_file:
        # Errors only, for a later look at what went wrong
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(ctx: click.Context, overrides: dict):
    """Load config merged with CLI overrides. Exits on error."""
    from sonar_migrate.config import ConfigError, load

    try:
        return load(ctx.obj["config_path"], overrides)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


def _connect(label: str, server, config):
    """Return an authenticated SonarClient for *server*. Exits on error."""
    from sonar_migrate.client import SonarClient

    client = SonarClient(server.host, timeout=config.timeout, verify=config.verify_ssl)
    if client.base_url is None:
        click.echo(
            f"No valid URL for the {label} server (empty or malformed: '{server.host}'). Exiting.",
            err=True,
        )
        sys.exit(1)

    log.info("Authenticating on %s server %s...", label, client.base_url)
    if not client.authenticate(server.basic_auth_user, server.basic_auth_password,
                               server.user, server.password):
        click.echo(f"Authentication failed on the {label} server. Please check credentials.",
                   err=True)
        sys.exit(1)
    return client


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default=None,
              help="Path to the configuration file [default: sonar-migrate.yaml if present].")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable debug logging.")
@click.option("--log-file", default=None,
              help="Also write warnings and errors to this file.")
@click.version_option(__version__, prog_name="sonar-migrate")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool, log_file: str | None) -> None:
    """Copy false-positive and won't-fix resolutions between SonarQube projects."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    _configure_logging(verbose, log_file)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="sonar-migrate.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template sonar-migrate.yaml file."""
    from sonar_migrate.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your server URLs, credentials and project keys.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# migrate
# ---------------------------------------------------------------------------

@cli.command("migrate")
@click.option("-h", "--host", default=None, help="Source SonarQube URL.")
@click.option("-u", "--user", default=None, help="Source SonarQube user.")
@click.option("-p", "--password", default=None, help="Source SonarQube password.")
@click.option("-s", "--source-project", default=None, help="Source project key.")
@click.option("-t", "--target-project", default=None, help="Target project key.")
@click.option("-H", "--target-host", default=None, help="Target SonarQube URL [default: source].")
@click.option("-U", "--target-user", default=None, help="Target SonarQube user [default: source].")
@click.option("-P", "--target-password", default=None,
              help="Target SonarQube password [default: source].")
@click.option("--basic-auth-user", default=None, help="HTTP basic-auth user for the source.")
@click.option("--basic-auth-password", default=None, help="HTTP basic-auth password for the source.")
@click.option("--target-basic-auth-user", default=None,
              help="HTTP basic-auth user for the target [default: source, same host only].")
@click.option("--target-basic-auth-password", default=None,
              help="HTTP basic-auth password for the target [default: source, same host only].")
@click.option("--from-file", type=click.Path(dir_okay=False), default=None,
              help="Read flagged issues from a CSV export instead of the source server.")
@click.option("--csv-delimiter", default=None, help="CSV field delimiter [default: ,].")
@click.option("--timeout", type=int, default=None, help="HTTP timeout in seconds [default: 30].")
@click.option("--insecure", is_flag=True, default=False,
              help="Do not verify TLS certificates.")
@click.pass_context
def migrate_command(ctx: click.Context, **options) -> None:
    """Replay flagged resolutions from the source project on the target project."""
    from sonar_migrate.csv_import import read_issues_from_csv
    from sonar_migrate.migration import copy_issues_to_project

    if not options["insecure"]:
        options["insecure"] = None
    config = _load_config(ctx, options)

    if config.from_file:
        log.info("Reading flagged issues from '%s'...", config.from_file)
        flagged_issues = read_issues_from_csv(config.from_file, config.csv_delimiter)
    else:
        source = _connect("source", config.source, config)
        log.info("Getting list of flagged issues from %s...", config.source.project)
        flagged_issues = source.get_issues_from_project(config.source.project)

    if flagged_issues is None:
        log.error("Could not get the list of flagged issues, nothing to do.")
        return
    if not flagged_issues:
        log.info("No flagged issues found, nothing to do.")
        return

    log.info("Flagged issues list size: %d", len(flagged_issues))
    target = _connect("target", config.target, config)
    summary = copy_issues_to_project(target, flagged_issues, config.target.project)

    click.echo(
        f"{summary.matched} of {summary.processed} flagged issues matched, "
        f"{summary.updated} updated ({summary.searches} rule searches)."
    )
