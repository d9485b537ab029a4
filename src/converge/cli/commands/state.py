"""State commands - inspect the recorded state."""

import json
import sys
import click
from ...state.file_store import FileStateStore
from ...utils.errors import ConvergeError
from ..utils import EXIT_ERROR, format_error, load_engine_config, state_path_for


@click.group()
def state():
    """Inspect recorded resource state."""
    pass


@state.command(name="list")
@click.option('--state', 'state_file', type=click.Path(), help='State file (default: state.path from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Explicit config YAML file')
def list_resources(state_file, config_path):
    """List every recorded address with its identifier."""
    try:
        config = load_engine_config(config_path)
        snapshot = FileStateStore(state_path_for(config, state_file)).load()
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)

    if not snapshot.resources:
        click.echo("No resources recorded.")
        return
    for address in snapshot.addresses():
        entry = snapshot.resources[address]
        suffix = f" (+{len(entry.deposed)} deposed)" if entry.deposed else ""
        click.echo(f"{address}  {entry.id}{suffix}")


@state.command()
@click.argument('address')
@click.option('--state', 'state_file', type=click.Path(), help='State file (default: state.path from config)')
@click.option('--config', 'config_path', type=click.Path(), help='Explicit config YAML file')
def show(address, state_file, config_path):
    """Show the recorded state of ADDRESS as JSON."""
    try:
        config = load_engine_config(config_path)
        snapshot = FileStateStore(state_path_for(config, state_file)).load()
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)

    entry = snapshot.get(address)
    if entry is None:
        similar = [a for a in snapshot.addresses() if address in a or a in address]
        suggestion = f"Similar addresses: {', '.join(similar[:5])}" if similar else None
        click.echo(format_error(f"Address '{address}' not found in state", suggestion), err=True)
        sys.exit(EXIT_ERROR)
    click.echo(json.dumps(entry.model_dump(mode="json"), indent=2, sort_keys=True))
