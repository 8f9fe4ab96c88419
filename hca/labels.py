from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


COMPOSE_SERVICE_LABEL = "com.docker.compose.service"
SHORT_ID_LEN = 12


@dataclass(frozen=True)
class DiscoveredApp:
    container_id: str
    container_name: str
    name: str
    url: str
    description: str | None = None
    icon_url: str | None = None
    category: str | None = None


def resolve_container_name(container_id: str, labels: Mapping[str, str]) -> str:
    """Compose service name if present, else the short container id."""
    service = labels.get(COMPOSE_SERVICE_LABEL)
    if service:
        return service
    return container_id[:SHORT_ID_LEN]


def parse_labels(
    container_id: str,
    labels: Mapping[str, str],
    product_name: str = "homarr",
    prefix: str = "homarr",
) -> DiscoveredApp | None:
    """Turn a container's labels into a DiscoveredApp.

    Returns None (never raises) when the container is not opted in with
    ``<prefix>.enable=true``, lacks ``<prefix>.name`` or ``<prefix>.url``,
    or points at the dashboard itself.
    """
    if labels.get(f"{prefix}.enable") != "true":
        return None

    name = labels.get(f"{prefix}.name")
    url = labels.get(f"{prefix}.url")
    if not name or not url:
        return None

    container_name = resolve_container_name(container_id, labels)

    own = product_name.casefold()
    if container_name.casefold() == own or name.casefold() == own:
        return None

    return DiscoveredApp(
        container_id=container_id,
        container_name=container_name,
        name=name,
        url=url,
        description=labels.get(f"{prefix}.description") or None,
        icon_url=labels.get(f"{prefix}.icon") or None,
        category=labels.get(f"{prefix}.category") or None,
    )
