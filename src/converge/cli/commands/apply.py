"""Apply command - converge infrastructure to the declarations."""

import json
import sys
import click
from ...contracts.apply_report import ApplyResult
from ...contracts.plan import Plan
from ...presentation.plan_formatter import format_plan, format_report
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import (
    EXIT_ERROR,
    EXIT_INCOMPLETE,
    EXIT_OK,
    build_engine,
    format_error,
    load_engine_config,
    read_declarations,
    resolve_file_path,
)

logger = get_logger("cli.apply")

_EXIT_CODES = {
    ApplyResult.SUCCESS: EXIT_OK,
    ApplyResult.FAILED_VALIDATION: EXIT_ERROR,
    ApplyResult.PARTIAL_FAILURE: EXIT_INCOMPLETE,
    ApplyResult.CANCELLED: EXIT_INCOMPLETE,
}


@click.command()
@click.argument('declarations', type=click.Path(exists=False), required=False)
@click.option('--plan', 'plan_file', type=click.Path(), help='Apply a plan saved with "plan --out" instead of planning')
@click.option('--state', type=click.Path(), help='State file (default: state.path from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Explicit config YAML file')
@click.option('--sandbox', type=click.Path(file_okay=False), help='Directory holding the simulated cloud')
@click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider calls')
@click.option('--timeout', type=click.FloatRange(min=0, min_open=True), help='Stop scheduling new actions after this many seconds')
@click.option('--refresh', is_flag=True, help='Read every recorded resource from its provider before planning')
@click.option('--json', 'as_json', is_flag=True, help='Output the apply report as JSON')
def apply(declarations, plan_file, state, config_path, sandbox, parallelism, timeout, refresh, as_json):
    """
    Plan and apply DECLARATIONS in one locked cycle.

    Exit status is 0 when everything converged, 1 on errors or validation
    failure, and 2 when some actions failed or the run was cancelled.
    """
    if bool(declarations) == bool(plan_file):
        click.echo(format_error("Pass either DECLARATIONS or --plan"), err=True)
        sys.exit(EXIT_ERROR)

    try:
        config = load_engine_config(config_path)
        engine = build_engine(config, state, sandbox)

        if plan_file:
            saved = Plan.load(resolve_file_path(plan_file))
            report = engine.apply(saved, parallelism=parallelism, timeout=timeout)
        else:
            resources = read_declarations(declarations)
            planned, report = engine.run(resources, refresh=refresh, parallelism=parallelism, timeout=timeout)
            if not as_json:
                click.echo(format_plan(planned))
                click.echo("")

        if as_json:
            click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        else:
            click.echo(format_report(report))

        sys.exit(_EXIT_CODES[report.result])

    except FileNotFoundError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
