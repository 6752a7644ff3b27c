"""
Compose stack generation for one app.

The generated document always holds exactly one service named ``app``; the
optional sections are only emitted when the app declares at least one record
of that kind.
"""

from typing import Any, Dict, Iterable, Sequence

import yaml

from stack_agent.runtime import container_name, image_tag

SERVICE_NAME = "app"
RESTART_POLICY = "unless-stopped"


def _fold(pairs: Iterable) -> Dict[str, str]:
    # later keys win
    return {p.key: p.value for p in pairs}


def compose_mapping(build, ports: Sequence, volumes: Sequence, variables: Sequence,
                    networks: Sequence, labels: Sequence) -> Dict[str, Any]:
    service: Dict[str, Any] = {
        "image": image_tag(build.id),
        "container_name": container_name(build.app_id),
        "restart": RESTART_POLICY,
    }
    if ports:
        service["ports"] = [f"{p.external}:{p.internal}" for p in ports]
    if variables:
        service["environment"] = _fold(variables)
    if labels:
        service["labels"] = _fold(labels)
    if volumes:
        service["volumes"] = [f"{v.host}:{v.internal}" for v in volumes]
    if networks:
        service["networks"] = [n.name for n in networks]

    compose: Dict[str, Any] = {"services": {SERVICE_NAME: service}}
    if networks:
        compose["networks"] = {n.name: {"name": n.name, "external": bool(n.external)} for n in networks}
    return compose


def create_compose_configuration(build, ports: Sequence, volumes: Sequence, variables: Sequence,
                                 networks: Sequence, labels: Sequence) -> str:
    """Serialize the stack definition as compose YAML."""
    return yaml.safe_dump(
        compose_mapping(build, ports, volumes, variables, networks, labels),
        sort_keys=False,
        default_flow_style=False,
    )
