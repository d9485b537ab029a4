"""Plan command - show what apply would change."""

import json
import sys
from pathlib import Path
import click
from ...presentation.plan_formatter import format_plan
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_ERROR, build_engine, format_error, load_engine_config, read_declarations

logger = get_logger("cli.plan")


@click.command()
@click.argument('declarations', type=click.Path(exists=False))
@click.option('--state', type=click.Path(), help='State file (default: state.path from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Explicit config YAML file')
@click.option('--refresh', is_flag=True, help='Read every recorded resource from its provider first')
@click.option('--json', 'as_json', is_flag=True, help='Output the plan as JSON instead of human-readable')
@click.option('--out', '-o', type=click.Path(), help='Save the plan to a JSON file')
@click.option('--show-unchanged', is_flag=True, help='List resources with no changes too')
def plan(declarations, state, config_path, refresh, as_json, out, show_unchanged):
    """
    Compute the changes needed to converge state to DECLARATIONS.

    Nothing is created, updated or deleted. Validation problems (cycles,
    unresolved or dangling references, duplicate addresses) are all listed
    and the command exits with status 1.
    """
    try:
        config = load_engine_config(config_path)
        resources = read_declarations(declarations)
        engine = build_engine(config, state)
        result = engine.plan(resources, refresh=refresh)

        if out:
            result.save(Path(out))
            click.echo(f"Plan saved to: {out}", err=True)

        if as_json:
            click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        else:
            click.echo(format_plan(result, show_unchanged=show_unchanged))

        if not result.valid:
            sys.exit(EXIT_ERROR)

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
