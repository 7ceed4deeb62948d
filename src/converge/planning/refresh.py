"""Reconcile recorded state with what the provider reports (drift detection)."""

from typing import Dict, List, Tuple
from ..execution.retry import OperationRunner
from ..providers.base import Provider
from ..state.models import ResourceState, hash_attributes
from ..utils.errors import ResourceNotFoundError
from ..utils.logging import get_logger

logger = get_logger("planning.refresh")


def refresh_resources(
    resources: Dict[str, ResourceState],
    provider: Provider,
    runner: OperationRunner,
) -> Tuple[Dict[str, ResourceState], List[str]]:
    """
    Read every recorded resource back from the provider.

    Objects that no longer exist are dropped (the next plan recreates them).
    Input attributes that changed outside Converge are taken from the live
    object, so the next plan shows an update back to the declared values.

    Returns:
        (refreshed resources, addresses whose live object drifted or vanished)
    """
    refreshed: Dict[str, ResourceState] = {}
    drifted: List[str] = []
    for address, entry in resources.items():
        try:
            live = runner.run(f"read {address}", provider.read, entry.kind, entry.provider_id)
        except ResourceNotFoundError:
            logger.warning(f"{address} ({entry.provider_id}) no longer exists, dropping it from state")
            drifted.append(address)
            continue

        attributes = {name: live.get(name, value) for name, value in entry.attributes.items()}
        outputs = {name: value for name, value in live.items() if name not in entry.attributes}
        if attributes != entry.attributes:
            logger.info(f"{address} drifted from its last applied attributes")
            drifted.append(address)
        refreshed[address] = entry.model_copy(update={
            "attributes": attributes,
            "outputs": {**entry.outputs, **outputs},
            "input_hash": hash_attributes(attributes),
        })
    return refreshed, drifted
