"""Helpers for Azure VM resource IDs and node provider IDs."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

_VM_PROVIDER_ID_RE = re.compile(
    r"azure:///subscriptions/.*/resourceGroups/.*/providers/"
    r"Microsoft.Compute/virtualMachines/(?P<InstanceID>.*)"
)

_RESOURCE_GROUP_RE = re.compile(r".*/subscriptions/(?:.*)/resourceGroups/(.+)/providers/(?:.*)")

_VM_ID_FORMAT = (
    "/subscriptions/subscriptionID/resourceGroups/{}/providers/Microsoft.Compute/virtualMachines/{}"
)


def get_vm_name(provider_id: str) -> str:
    """Extract the VM name from a node's provider ID.

    Raises ValueError if the provider ID is not a standalone VM provider ID.
    """
    match = _VM_PROVIDER_ID_RE.search(provider_id)
    if match is None:
        raise ValueError(f"parsing vm name {provider_id}")
    return match.group("InstanceID")


def _resource_group_to_lower(resource_id: str) -> str:
    match = _RESOURCE_GROUP_RE.match(resource_id)
    if match is None:
        raise ValueError(
            f"{resource_id!r} isn't in Azure resource ID format {_RESOURCE_GROUP_RE.pattern!r}"
        )
    resource_group = match.group(1)
    return resource_id.replace(resource_group, resource_group.lower(), 1)


def resource_id_to_provider_id(resource_id: str) -> str:
    """Turn an Azure resource ID into a provider ID with a lower-case resource group."""
    provider_id = f"azure://{resource_id}"
    try:
        return _resource_group_to_lower(provider_id)
    except ValueError as exc:
        logger.warning(
            "Failed to convert resource group name to lower case in providerID %s: %s",
            provider_id,
            exc,
        )
        return provider_id


def mk_vm_id(resource_group_name: str, vm_name: str) -> str:
    """Build a VM resource ID under the placeholder subscription."""
    return _VM_ID_FORMAT.format(resource_group_name, vm_name)