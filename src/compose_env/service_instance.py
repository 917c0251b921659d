"""Canonical ``<service>_<n>`` identifiers for compose service instances."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import NewType

from src.shared.constants import (
    COMPOSE_CONTAINER_NUMBER_LABEL,
    COMPOSE_SERVICE_LABEL,
    DEFAULT_INSTANCE,
)
from src.shared.errors import ServiceInstanceLabelError

ServiceInstanceId = NewType("ServiceInstanceId", str)

_INSTANCE_SUFFIX = re.compile(r".*_[0-9]+")


def resolve(service_name: str) -> ServiceInstanceId:
    """Normalise a service name to a service instance id.

    ``"db"`` becomes ``"db_1"``; ``"db_2"`` is returned unchanged.
    """
    if _INSTANCE_SUFFIX.fullmatch(service_name):
        return ServiceInstanceId(service_name)
    return ServiceInstanceId(f"{service_name}_{DEFAULT_INSTANCE}")


def instance_id(service_name: str, instance: int | None = None) -> ServiceInstanceId:
    """Build an id from a name and an explicit replica number."""
    if instance is None:
        return resolve(service_name)
    return ServiceInstanceId(f"{service_name}_{instance}")


def from_labels(labels: Mapping[str, str], container_name: str = "") -> ServiceInstanceId:
    """Derive the instance id of a container from its compose labels.

    Raises:
        ServiceInstanceLabelError: If either label is missing or the
            replica number is not numeric.
    """
    service = labels.get(COMPOSE_SERVICE_LABEL)
    if not service:
        raise ServiceInstanceLabelError(container_name, COMPOSE_SERVICE_LABEL)
    number = labels.get(COMPOSE_CONTAINER_NUMBER_LABEL, "")
    if not number.isdigit():
        raise ServiceInstanceLabelError(container_name, COMPOSE_CONTAINER_NUMBER_LABEL)
    return ServiceInstanceId(f"{service}_{int(number)}")
