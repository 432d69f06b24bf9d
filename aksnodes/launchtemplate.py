"""Launch templates: rendered user data, image and ARM tags for a new VM."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

KARPENTER_MANAGED_TAG_KEY = "karpenter.azure.com/cluster"


@dataclass(frozen=True)
class Template:
    """What a VM is launched with."""

    user_data: str
    image_id: str
    tags: dict[str, str] = field(default_factory=dict)


def merge_tags(*args: Mapping[str, str]) -> dict[str, str]:
    """Merge tag maps, later ones winning, into ARM form ("/" in keys becomes "_")."""
    merged: dict[str, str] = {}
    for tags in args:
        merged.update(tags)
    return {key.replace("/", "_"): value for key, value in merged.items()}


def _render_user_data(user_data: Any) -> str:
    if isinstance(user_data, str):
        return user_data
    script = getattr(user_data, "script", None)
    if callable(script):
        return script()
    raise TypeError(f"user data must be a string or have a script() method, not {user_data!r}")


def create_launch_template(
    user_data: Any,
    image_id: str,
    tags: Mapping[str, str],
    cluster_name: str,
) -> Template:
    """Build a template, marking it as managed for the cluster.

    user_data is the rendered script or a bootstrapper whose script() renders it;
    errors from rendering propagate.
    """
    rendered = _render_user_data(user_data)
    return Template(
        user_data=rendered,
        image_id=image_id,
        tags=merge_tags(tags, {KARPENTER_MANAGED_TAG_KEY: cluster_name}),
    )