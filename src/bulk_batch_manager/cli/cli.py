# -*- coding: utf-8 -*-

import sys
import click
import logging

from ..core.errors import BulkError, PollingInterrupted
from ..core.bulk.models import OperationKind
from ..core.bulk.manager import BulkBatchManager
from ..core.bulk.results import (
    format_outcome_report,
    summarize_outcomes,
    write_outcomes,
)
from ..core.utils.datasource import MAX_RECORDS_PER_BATCH, read_record_collections
from ..core.utils.environment import setup_environment
from ..core.utils.misc import mask_path, resolve_n_jobs
from ..core.utils.registry import get_registry
from .utils import (
    setup_logging,
    polling_options,
    print_error_chain,
    _build_policy,
    _create_client,
    _default_base_folder,
    _echo_report,
    _load_manager,
    _resolve_registered_base_folder,
)

OPERATION_CHOICES = [op.value for op in OperationKind if not op.is_query]
RUN_BOUND_COMMANDS = ['check', 'track', 'results', 'abort']


@click.group()
@click.option(
    '-v', '--verbose', is_flag=True,
    help='Enable verbose (DEBUG) logging'
)
@click.option(
    '-q', '--quiet', is_flag=True,
    help='Only show warnings and errors'
)
@click.option(
    '-r', '--run-name', type=str,
    help='Name of the run to work with.'
)
@click.option(
    '--env-file', type=click.Path(exists=True, dir_okay=False), default=None,
    help='Load credentials from this .env file.'
)
@click.option(
    '--sandbox/--production', default=None,
    help='Log in against the sandbox or production endpoint. Defaults to SF_IS_SANDBOX.'
)
@click.pass_context
def cli(ctx, verbose, quiet, run_name, env_file, sandbox):
    """
    Bulk Batch Manager CLI - Submit records to Salesforce Bulk API jobs,
    track their batches and collect per-record outcomes.

    \b
    Ensure the following environment variables are set (or in a .env file):
    - SF_CONSUMER_KEY, SF_CONSUMER_SECRET
    - SF_USERNAME, SF_PASSWORD, SF_SECURITY_TOKEN
    - SF_IS_SANDBOX (optional, "true" for sandbox orgs)
    """
    setup_logging(verbose=verbose, quiet=quiet)
    if env_file:
        setup_environment(verbose=verbose, env_file=env_file)

    ctx.ensure_object(dict)
    ctx.obj['run_name'] = run_name
    ctx.obj['is_sandbox'] = sandbox

    # Skip checks if --help/-h is requested
    if any(arg in sys.argv for arg in ['--help', '-h']):
        return

    if ctx.invoked_subcommand in RUN_BOUND_COMMANDS + ['submit'] and not run_name:
        logging.error("Please specify a run name using the -r or --run-name option.")
        raise click.UsageError(f"Run name is required for '{ctx.invoked_subcommand}'.")

    if ctx.invoked_subcommand in RUN_BOUND_COMMANDS:
        ctx.obj['base_folder'] = _resolve_registered_base_folder(run_name)


#=============================================================================
# One-shot run
#=============================================================================

@cli.command()
@click.argument('entity_type')
@click.argument('operation', type=click.Choice(OPERATION_CHOICES, case_sensitive=False))
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option(
    '--external-id-field', default=None,
    help='External id field name (required for upsert).'
)
@click.option(
    '--batch-size', default=MAX_RECORDS_PER_BATCH, type=click.IntRange(1, MAX_RECORDS_PER_BATCH),
    show_default=True,
    help='Maximum records per batch. Larger files are split into several batches.'
)
@click.option(
    '--parallel', default=False, is_flag=True,
    help='Submit batches in parallel.'
)
@polling_options
@click.option(
    '--base-folder', type=click.Path(file_okay=False), default=None,
    help='Folder where the run state is kept. Not persisted if omitted.'
)
@click.option(
    '--output', type=click.Path(dir_okay=False), default=None,
    help='Write the outcomes to this file (.jsonl, .csv or .parquet).'
)
@click.option(
    '--pause', is_flag=True, default=False,
    help='Wait for enter before exiting.'
)
@click.pass_context
def run(ctx, entity_type, operation, files, external_id_field, batch_size, parallel,
        initial_delay, growth_factor, max_delay, timeout, max_query_failures, n_jobs,
        base_folder, output, pause):
    """
    Run a whole bulk operation: one batch per FILE (split by --batch-size),
    poll until every batch is done and print one line per record.

    \b
    Example:
        bulkbm run Account insert accounts_1.csv accounts_2.jsonl --output outcomes.csv
    """
    exit_code = 0
    client = None
    try:
        collections, sources = read_record_collections(files, batch_size=batch_size)
        logging.info(f"Read {sum(len(c) for c in collections)} records into {len(collections)} batches.")

        client = _create_client(ctx)
        manager = BulkBatchManager(
            client,
            base_folder=base_folder,
            policy=_build_policy(initial_delay, growth_factor, max_delay, timeout, max_query_failures),
            max_workers=resolve_n_jobs(n_jobs),
            show_progress=True
        )
        if base_folder and ctx.obj['run_name']:
            get_registry().register_run(ctx.obj['run_name'], base_folder)

        result = manager.run(
            entity_type, operation, collections,
            sources=sources,
            external_id_field=external_id_field,
            parallel=parallel
        )

        if result.interrupted:
            click.echo(f"{type(result.interruption).__name__}: {result.interruption}")
            click.echo("Results for each record of the finished batches:")
        else:
            click.echo("All batches complete, results for each record:")
        _echo_report(format_outcome_report(result.outcomes))
        summarize_outcomes(result.outcomes, return_as='print')

        for label, error in result.submission_failures.items():
            click.echo(f"Not submitted: {label}: {error}")
        for batch_id, error in result.errored.items():
            click.echo(f"Gave up on batch {batch_id}: {error}")
        for batch in result.pending:
            click.echo(f"Still pending: batch {batch.id} ({batch.source}), {batch.state.value}")

        if output:
            write_outcomes(result.outcomes, output)
        if result.submission_failures or result.errored or result.interrupted:
            exit_code = 1
    except SystemExit:
        raise
    except Exception as e:
        print_error_chain(e)
        exit_code = 1
    finally:
        if client is not None:
            client.close()
        if pause:
            click.prompt("\nPress enter to close...", default="", show_default=False, prompt_suffix="")

    if exit_code:
        raise SystemExit(exit_code)


#=============================================================================
# Stepwise workflow
#=============================================================================

@cli.command()
@click.argument('entity_type')
@click.argument('operation', type=click.Choice(OPERATION_CHOICES, case_sensitive=False))
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option(
    '--base-folder', type=click.Path(file_okay=False), default=None,
    help='Folder where the run state is kept. Default is ./bulk_runs/<run-name>/'
)
@click.option(
    '--external-id-field', default=None,
    help='External id field name (required for upsert).'
)
@click.option(
    '--batch-size', default=MAX_RECORDS_PER_BATCH, type=click.IntRange(1, MAX_RECORDS_PER_BATCH),
    show_default=True,
    help='Maximum records per batch.'
)
@click.option(
    '--parallel', default=False, is_flag=True,
    help='Submit batches in parallel (recommended for many batches).'
)
@click.option(
    '--keep-open', default=False, is_flag=True,
    help='Do not close the job after submitting the batches.'
)
@click.pass_context
def submit(ctx, entity_type, operation, files, base_folder, external_id_field,
           batch_size, parallel, keep_open):
    """Create a job for the run and submit FILES as its batches."""
    run_name = ctx.obj['run_name']
    registry = get_registry()
    if registry.get_base_folder(run_name) is not None:
        logging.error(f"Run '{run_name}' already has a job. Use another run name "
                      "or 'bulkbm unregister-run' first.")
        raise SystemExit(1)

    base_folder = base_folder or _default_base_folder(run_name)
    try:
        collections, sources = read_record_collections(files, batch_size=batch_size)
    except ValueError as e:
        logging.error(f"Could not read records: {e}")
        raise SystemExit(1)

    client = _create_client(ctx)
    try:
        manager = BulkBatchManager(client, base_folder=base_folder)
        manager.create_job(entity_type, operation, external_id_field)
        registry.register_run(run_name, base_folder, job=manager.job)
        manager.submit(collections, sources=sources, parallel=parallel)
        if not keep_open:
            manager.close_job()
    except (BulkError, ValueError) as e:
        logging.error(f"Submission failed: {e}")
        raise SystemExit(1)
    finally:
        client.close()

    for batch in manager.batches:
        logging.info(f"- Batch {batch.id} ({batch.source}): {batch.record_count} records, {batch.state.value}")
    if manager.submission_failures:
        for label, error in manager.submission_failures.items():
            logging.error(f"- Not submitted: {label}: {error}")
        raise SystemExit(1)
    logging.info(f"Next: bulkbm -r {run_name} track")


@cli.command()
@click.pass_context
def check(ctx):
    """Check the state of every batch of the run once."""
    client = _create_client(ctx)
    try:
        manager = _load_manager(ctx, client)
        manager.check()
    except BulkError as e:
        logging.error(f"Status check failed: {e}")
        raise SystemExit(1)
    finally:
        client.close()

    logging.info("Batch State Summary:")
    for state, count in manager.states().items():
        logging.info(f"- {state}: {count}")


@cli.command()
@polling_options
@click.pass_context
def track(ctx, initial_delay, growth_factor, max_delay, timeout, max_query_failures, n_jobs):
    """Poll the run's batches with exponential back-off until all are done."""
    client = _create_client(ctx)
    try:
        manager = _load_manager(
            ctx, client,
            policy=_build_policy(initial_delay, growth_factor, max_delay, timeout, max_query_failures),
            max_workers=resolve_n_jobs(n_jobs),
            show_progress=True
        )
        report = manager.track()
    except PollingInterrupted as e:
        logging.error(f"{e}. Progress saved, run 'track' again to resume.")
        raise SystemExit(1)
    except BulkError as e:
        logging.error(f"Tracking failed: {e}")
        raise SystemExit(1)
    finally:
        client.close()

    summary = report.summary()
    logging.info(f"Finished after {summary['rounds']} rounds: {summary['terminal_states']}")
    for batch_id, error in report.errored.items():
        logging.warning(f"- Gave up on batch {batch_id}: {error}")


@cli.command()
@click.option(
    '--output', type=click.Path(dir_okay=False), default=None,
    help='Write the outcomes to this file (.jsonl, .csv or .parquet).'
)
@click.option(
    '--file-type', default=None,
    type=click.Choice(['jsonl', 'csv', 'parquet'], case_sensitive=False),
    help='Type of the output file. Inferred from --output extension by default.'
)
@click.option(
    '--only-failed', is_flag=True, default=False,
    help='Only print and save failed records.'
)
@click.option(
    '--no-report', is_flag=True, default=False,
    help='Do not print one line per record, only the summary.'
)
@click.pass_context
def results(ctx, output, file_type, only_failed, no_report):
    """Fetch and aggregate the outcomes of every finished batch."""
    client = _create_client(ctx)
    try:
        manager = _load_manager(ctx, client)
        pending = manager.pending_batches()
        if pending:
            logging.warning(f"{len(pending)} batches are not finished yet and are left out. "
                            "Use 'track' to wait for them.")
        outcomes = manager.collect_results()
    except BulkError as e:
        logging.error(f"Error collecting results: {e}")
        raise SystemExit(1)
    finally:
        client.close()

    if only_failed:
        outcomes = [o for o in outcomes if not o.success]
    if not no_report:
        _echo_report(format_outcome_report(outcomes))
    summarize_outcomes(outcomes, return_as='print')

    if output:
        try:
            path = write_outcomes(outcomes, output, file_type=file_type)
        except Exception as e:
            logging.error(f"Error saving outcomes: {e}")
            raise SystemExit(1)
        logging.info(f"Outcomes written to {mask_path(path)}")


@cli.command()
@click.option(
    '--force', is_flag=True, default=False,
    help='Skip the confirmation prompt.'
)
@click.pass_context
def abort(ctx, force):
    """
    Abort the run's job. Batches not yet processed are dropped, results
    of processed ones remain available.
    """
    if not force:
        click.confirm("Do you really want to abort the job?", abort=True)
    client = _create_client(ctx)
    try:
        manager = _load_manager(ctx, client)
        manager.abort()
    except BulkError as e:
        logging.error(f"Could not abort job: {e}")
        raise SystemExit(1)
    finally:
        client.close()


#=============================================================================
# Registry
#=============================================================================

@cli.command()
def list_runs():
    """List registered runs, most recently used first."""
    runs = get_registry().list_runs()
    if not runs:
        logging.info("No runs registered yet. Use 'bulkbm -r <name> submit ...' to start one.")
        return

    for entry in runs:
        state = "" if entry["state_exists"] else "  [state file missing]"
        job = f"{entry['job']} (job {entry['job_id']})" if entry["job_id"] else "no job recorded"
        click.echo(f"{entry['name']}: {job}{state}")
        click.echo(f"    folder:    {mask_path(entry['base_folder'])}")
        click.echo(f"    last used: {entry['last_used'].replace('T', ' ')}")


@cli.command()
@click.argument('run_name', required=False)
@click.option(
    '--cleanup-orphaned', is_flag=True,
    help='Forget every run whose state file no longer exists.'
)
def unregister_run(run_name, cleanup_orphaned):
    """
    Forget RUN_NAME. The run folder and its state file are left on disk.
    """
    registry = get_registry()
    if cleanup_orphaned:
        orphaned = registry.cleanup_orphaned_runs()
        logging.info(f"Forgot {len(orphaned)} orphaned runs{': ' + ', '.join(orphaned) if orphaned else '.'}")
        return
    if not run_name:
        raise click.UsageError("Give a RUN_NAME or use --cleanup-orphaned.")
    if not registry.unregister_run(run_name):
        logging.error(f"Run '{run_name}' is not registered.")
        raise SystemExit(1)
