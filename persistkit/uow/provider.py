"""
Factory for units of work that share resources with their ambient ancestors.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from enum import Enum
from typing import Generic

from persistkit.uow.base import ChildCommitAwareUnitOfWork, R, UnitOfWork
from persistkit.uow.errors import NoAmbientUnitOfWorkError
from persistkit.uow.registry import UnitOfWorkRegistry

log = logging.getLogger(__name__)


class ResourceReuse(str, Enum):
    """Policy deciding whether a new unit may reuse an ancestor's resource."""

    ALWAYS_CREATE_NEW = "always-create-new"
    REUSE_IF_AVAILABLE = "reuse-if-available"

    @classmethod
    def parse(cls, value: str | ResourceReuse) -> ResourceReuse:
        """Parse a policy from its configuration spelling.

        Accepts ``"reuse-if-available"``, ``"reuse_if_available"`` and the
        member names, case-insensitively.

        :raises ValueError: For unknown values.
        """
        if isinstance(value, cls):
            return value
        token = str(value).strip().lower().replace("_", "-")
        for member in cls:
            if member.value == token:
                return member
        raise ValueError(f"Unknown resource reuse policy: {value!r}")


class UnitOfWorkProvider(Generic[R]):
    """
    Create units of work of one resource type and register them.

    Parameters
    ----------
    registry:
        Registry holding the ambient stack. Providers of different resource
        types may (and usually do) share one registry.
    resource_factory:
        Zero-argument callable producing a fresh resource. Called at most once
        per owning unit; failures propagate to the caller.
    resource_type:
        Identity key of the resources this provider hands out. A unit of work
        is reusable by this provider only if its ``resource_type`` is equal to
        this key.
    reuse:
        Default :class:`ResourceReuse` policy.
    unit_of_work_class:
        Class instantiated by :meth:`create`. Defaults to
        :class:`ChildCommitAwareUnitOfWork`.
    """

    def __init__(
        self,
        *,
        registry: UnitOfWorkRegistry,
        resource_factory: Callable[[], R],
        resource_type: Hashable,
        reuse: ResourceReuse | str = ResourceReuse.REUSE_IF_AVAILABLE,
        unit_of_work_class: type[UnitOfWork] = ChildCommitAwareUnitOfWork,
    ) -> None:
        self.registry = registry
        self.resource_factory = resource_factory
        self.resource_type = resource_type
        self.reuse = ResourceReuse.parse(reuse)
        self.unit_of_work_class = unit_of_work_class

    def create(self, reuse: ResourceReuse | str | None = None) -> UnitOfWork[R]:
        """Create a unit of work and make it the ambient one.

        :param reuse: Overrides the provider's default policy for this call.
        :type reuse: ResourceReuse | str | None
        :returns: The new unit, already pushed onto the registry.
        :rtype: UnitOfWork
        """
        policy = self.reuse if reuse is None else ResourceReuse.parse(reuse)
        parent = self.registry.get_current(0)

        ancestor = None
        if policy is ResourceReuse.REUSE_IF_AVAILABLE:
            ancestor = self.find_ancestor()

        if ancestor is not None:
            uow = self.unit_of_work_class(
                registry=self.registry,
                resource=ancestor.resource,
                resource_type=self.resource_type,
                owns_resource=False,
                parent=parent,
            )
            log.debug("Unit of work %s reuses resource of %s", uow.id, ancestor.id)
        else:
            uow = self.unit_of_work_class(
                registry=self.registry,
                resource=self.resource_factory(),
                resource_type=self.resource_type,
                owns_resource=True,
                parent=parent,
            )
            log.debug("Unit of work %s owns a new resource", uow.id)

        self.registry.push(uow)
        return uow

    def get_current(self, depth: int = 0) -> UnitOfWork | None:
        """Shortcut for :meth:`UnitOfWorkRegistry.get_current`."""
        return self.registry.get_current(depth)

    def find_ancestor(self) -> UnitOfWork | None:
        """Return the nearest active unit holding a resource of this provider's type."""
        depth = 0
        uow = self.registry.get_current(depth)
        while uow is not None:
            if uow.resource_type == self.resource_type:
                return uow
            depth += 1
            uow = self.registry.get_current(depth)
        return None

    def try_get_resource(self) -> R | None:
        """Return the ambient resource of this provider's type, if any."""
        ancestor = self.find_ancestor()
        return ancestor.resource if ancestor is not None else None

    def get_resource(self) -> R:
        """Return the ambient resource of this provider's type.

        :raises NoAmbientUnitOfWorkError: If no compatible unit is active.
        """
        resource = self.try_get_resource()
        if resource is None:
            raise NoAmbientUnitOfWorkError(self.resource_type)
        return resource


__all__ = ["ResourceReuse", "UnitOfWorkProvider"]
