"""
Command-line interface for the NHIS claims core.

Provides commands for initializing the database, checking configuration and
inspecting reconciliation state.
"""

import sys

import click
import structlog

from nhis_claims.config import load_config, validate_config
from nhis_claims.domain.enums import ActorRole
from nhis_claims.domain.principal import Principal
from nhis_claims.utils.logging import configure_logging
from nhis_claims.utils.money import format_money


logger = structlog.get_logger()

# Operator identity for read-only finance commands
CLI_PRINCIPAL = Principal(user_id=0, role=ActorRole.INSURER)


@click.group()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--json-logs",
    is_flag=True,
    help="Output logs as JSON",
)
@click.pass_context
def main(ctx, config, verbose, json_logs):
    """NHIS claims, batches and reimbursement reconciliation."""
    ctx.ensure_object(dict)

    # Configure logging
    log_level = "DEBUG" if verbose else "INFO"
    configure_logging(level=log_level, json_output=json_logs)

    # Store config path and logging flags in context
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["json_logs"] = json_logs


@main.command("init-db")
@click.option(
    "--drop-existing",
    is_flag=True,
    help="Drop existing tables before creating",
)
@click.pass_context
def init_db(ctx, drop_existing):
    """Initialize the database schema."""
    from nhis_claims.db.initialize import init_database

    config_path = ctx.obj.get("config_path")

    try:
        config = _load_config(ctx)

        click.echo(f"Initializing database: {_describe_database(config)}")

        if drop_existing:
            if not click.confirm("This will drop ALL existing tables. Continue?"):
                click.echo("Aborted.")
                return

        engine = init_database(config_path, drop_existing)
        engine.dispose()

        click.echo("Database initialized successfully.")

    except Exception as e:
        logger.exception("init_db_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("validate-config")
@click.pass_context
def validate_config_cmd(ctx):
    """Validate the configuration file."""
    from nhis_claims.config.validation import ConfigurationError

    try:
        config = _load_config(ctx)
        warnings = validate_config(config)

        click.echo("Configuration is valid.")

        if warnings:
            click.echo("\nWarnings:")
            for warning in warnings:
                click.echo(f"  - {warning}")

    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.pass_context
def status(ctx):
    """Check configuration, database connection and table sizes."""
    from sqlalchemy import inspect

    from nhis_claims.config.validation import ConfigurationError, validate_database_connection
    from nhis_claims.db import repository as repo
    from nhis_claims.db.connection import create_engine_from_config, transaction
    from nhis_claims.db.schema import TABLE_CREATE_ORDER, metadata

    config_path = ctx.obj.get("config_path")

    try:
        config = _load_config(ctx)

        click.echo("Configuration:")
        click.echo(f"  Config file: {config_path or 'default'}")
        click.echo(f"  Currency: {config.finance.currency_code} ({config.finance.currency_places} places)")
        click.echo(f"  Default admin fee: {config.finance.default_admin_fee_percentage}%")
        click.echo(f"  Max admin fee: {config.finance.max_admin_fee_percentage}%")

        click.echo("\nDatabase:")
        click.echo(f"  Target: {_describe_database(config)}")

        try:
            validate_database_connection(config)
        except ConfigurationError as e:
            click.echo(f"  Status: Not connected ({e})")
            return
        click.echo("  Status: Connected")

        engine = create_engine_from_config(config.database)
        try:
            with transaction(engine, "status") as conn:
                for table_name in TABLE_CREATE_ORDER:
                    if not inspect(conn).has_table(table_name):
                        click.echo(f"  {table_name}: (missing)")
                        continue
                    count = repo.count_rows(conn, metadata.tables[table_name])
                    click.echo(f"  {table_name}: {count:,}")
        finally:
            engine.dispose()

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("eligible-batches")
@click.option(
    "--tpa-id",
    type=int,
    default=None,
    help="Only show batches of this TPA",
)
@click.pass_context
def eligible_batches(ctx, tpa_id):
    """List batches that can still be reimbursed, grouped by TPA."""
    from nhis_claims.core.reconciliation import ReconciliationEngine
    from nhis_claims.db.connection import create_engine_from_config

    try:
        config = _load_config(ctx)
        places = config.finance.currency_places
        engine = create_engine_from_config(config.database)
        try:
            batches = ReconciliationEngine(engine, config).list_eligible_batches(CLI_PRINCIPAL, tpa_id=tpa_id)
        finally:
            engine.dispose()

        if not batches:
            click.echo("No eligible batches.")
            return

        current_tpa = None
        for batch in batches:
            if batch.tpa_id != current_tpa:
                current_tpa = batch.tpa_id
                click.echo(f"\nTPA {current_tpa}:")
            click.echo(
                f"  {batch.batch_number} (id {batch.id}, {batch.status.value}): "
                f"{batch.total_claims} claims, {format_money(batch.total_amount, places)}"
            )

    except Exception as e:
        logger.exception("eligible_batches_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command("financial-summary")
@click.option(
    "--tpa-id",
    type=int,
    default=None,
    help="Only summarize this TPA",
)
@click.pass_context
def financial_summary(ctx, tpa_id):
    """Show advance payment and reimbursement totals by status."""
    from nhis_claims.core.reconciliation import ReconciliationEngine
    from nhis_claims.db.connection import create_engine_from_config

    try:
        config = _load_config(ctx)
        places = config.finance.currency_places
        currency = config.finance.currency_code
        engine = create_engine_from_config(config.database)
        try:
            summary = ReconciliationEngine(engine, config).financial_summary(CLI_PRINCIPAL, tpa_id=tpa_id)
        finally:
            engine.dispose()

        click.echo("=== Financial Summary ===")
        click.echo("\nAdvance payments:")
        if not summary.advance_payments:
            click.echo("  (none)")
        for status_name, totals in summary.advance_payments.items():
            click.echo(f"  {status_name}: {totals.count} ({currency} {format_money(totals.amount, places)})")

        click.echo("\nReimbursements (net):")
        if not summary.reimbursements:
            click.echo("  (none)")
        for status_name, totals in summary.reimbursements.items():
            click.echo(f"  {status_name}: {totals.count} ({currency} {format_money(totals.amount, places)})")

        click.echo("\nLedger:")
        click.echo(
            f"  Transactions: {summary.transactions_count} "
            f"({currency} {format_money(summary.transactions_amount, places)})"
        )
        click.echo(
            f"  Eligible batches: {summary.eligible_batches} "
            f"({currency} {format_money(summary.eligible_amount, places)})"
        )

    except Exception as e:
        logger.exception("financial_summary_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _load_config(ctx):
    """Load the configuration and apply its logging section unless overridden by flags."""
    config = load_config(ctx.obj.get("config_path"))
    configure_logging(
        level="DEBUG" if ctx.obj.get("verbose") else config.logging.level,
        json_output=ctx.obj.get("json_logs") or config.logging.json_output,
    )
    return config


def _describe_database(config) -> str:
    """Connection target without credentials."""
    if config.database.url:
        return config.database.connection_string.split("@")[-1]
    return f"{config.database.database} on {config.database.host}:{config.database.port}"


if __name__ == "__main__":
    main()
