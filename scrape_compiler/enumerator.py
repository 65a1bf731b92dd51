"""
Target enumeration.

Puts the already selected resources into the order the document is built
in: kind first (service, pod, probe, node, static), then namespace and name.
Selection itself (label and namespace matching) happens in the lister.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from .models import ResourceKind, ScrapeResource

logger = logging.getLogger(__name__)


class ResourceLister(ABC):
    """Source of already selected scrape resources of one kind."""

    @abstractmethod
    def list(self, kind: ResourceKind) -> list[ScrapeResource]:
        """
        Return the candidate resources of the given kind, in any order.

        Raises:
            StoreError: If the backing store cannot be queried
        """


def enumerate_resources(
    services: Iterable[ScrapeResource] = (),
    pods: Iterable[ScrapeResource] = (),
    probes: Iterable[ScrapeResource] = (),
    nodes: Iterable[ScrapeResource] = (),
    statics: Iterable[ScrapeResource] = (),
) -> list[ScrapeResource]:
    """Merge the five resource lists into one deterministic processing order."""
    return order_resources([*services, *pods, *probes, *nodes, *statics])


def order_resources(resources: Iterable[ScrapeResource]) -> list[ScrapeResource]:
    """Sort by kind priority, then namespace and name."""
    return sorted(resources, key=lambda resource: resource.sort_key)


def enumerate_from_lister(lister: ResourceLister) -> list[ScrapeResource]:
    """List every kind through the lister and order the result."""
    by_kind = {kind: lister.list(kind) for kind in ResourceKind}
    for kind, resources in by_kind.items():
        logger.debug("Listed %d %s resource(s)", len(resources), kind.value)
    return enumerate_resources(
        services=by_kind[ResourceKind.SERVICE],
        pods=by_kind[ResourceKind.POD],
        probes=by_kind[ResourceKind.PROBE],
        nodes=by_kind[ResourceKind.NODE],
        statics=by_kind[ResourceKind.STATIC],
    )
