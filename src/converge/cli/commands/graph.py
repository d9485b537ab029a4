"""Graph command - show the dependency graph in application order."""

import json
import sys
import click
from ...graph.dependency_graph import build_dependency_graph
from ...graph.reference_resolver import require_references
from ...ingest.expansion import expand_declarations
from ...presentation.plan_formatter import format_graph
from ...utils.errors import ConvergeError
from ..utils import EXIT_ERROR, format_error, read_declarations


@click.command()
@click.argument('declarations', type=click.Path(exists=False))
@click.option('--json', 'as_json', is_flag=True, help='Output nodes and edges as JSON')
def graph(declarations, as_json):
    """Print the resources of DECLARATIONS in a valid application order."""
    try:
        resources = read_declarations(declarations)
        nodes = expand_declarations(resources)
        references = require_references(nodes, resources)
        dependency_graph = build_dependency_graph(nodes, references)

        if as_json:
            data = {
                "order": dependency_graph.apply_order(),
                "edges": [
                    {"from": r.target, "to": r.source, "attribute": r.attribute_path}
                    for r in sorted(references, key=lambda r: (r.target, r.source, r.attribute_path or ""))
                ],
            }
            click.echo(json.dumps(data, indent=2))
        else:
            click.echo(format_graph(dependency_graph))

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
