"""Reconcile recorded state with what providers report (drift detection)."""

from typing import List, Tuple
from ..providers.registry import ProviderRegistry
from ..state.models import StateSnapshot
from ..utils.errors import ResourceNotFoundError
from ..utils.logging import get_logger

logger = get_logger("planner.refresh")


def refresh_state(state: StateSnapshot, registry: ProviderRegistry) -> Tuple[StateSnapshot, List[str]]:
    """
    Read every recorded resource back from its provider.

    Resources the provider no longer knows are dropped, so the next plan
    recreates them; the rest get their recorded attributes replaced by the
    read result, and recorded inputs take the live value of every attribute
    the provider reports, so out-of-band edits show up as diffs.

    Returns:
        Tuple of (refreshed snapshot copy, addresses whose state changed)
    """
    refreshed = state.model_copy(deep=True)
    changed: List[str] = []

    for address in state.addresses():
        entry = refreshed.resources[address]
        provider = registry.provider_for(entry.type)
        try:
            attributes = provider.read(entry.type, entry.id)
        except ResourceNotFoundError:
            logger.warning(f"{address} ({entry.id}) no longer exists; it will be recreated")
            del refreshed.resources[address]
            changed.append(address)
            continue

        drifted_inputs = {
            key: attributes[key] for key in entry.inputs
            if key in attributes and attributes[key] != entry.inputs[key]
        }
        if attributes != entry.attributes or drifted_inputs:
            logger.warning(f"Drift detected on {address}: {sorted(drifted_inputs) or 'computed attributes'}")
            entry.attributes = attributes
            entry.inputs.update(drifted_inputs)
            changed.append(address)

    logger.info(f"Refreshed {len(state.resources)} resources ({len(changed)} changed)")
    return refreshed, changed
