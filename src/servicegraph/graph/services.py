"""Service existence checks.

The editor only needs to know whether a service id exists before wiring it
onto a tag or option; it never inspects the service itself. Hosts inject a
:class:`ServiceChecker`, either wrapping a predicate or a capability map.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from servicegraph.graph.errors import ServiceCheckerMissingError, ServiceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


@runtime_checkable
class ServiceChecker(Protocol):
    """Answers whether a service id is known to the host."""

    def exists(self, service_id: Any) -> bool: ...


class PredicateChecker:
    """ServiceChecker backed by a host callable."""

    def __init__(self, predicate: Callable[[Any], bool]) -> None:
        self._predicate = predicate

    def exists(self, service_id: Any) -> bool:
        return bool(self._predicate(service_id))


class CapabilityMapChecker:
    """ServiceChecker backed by a map keyed by service id.

    Keys are compared as strings.
    """

    def __init__(self, services: Mapping[Any, Any]) -> None:
        self._keys = {str(k) for k in services}

    def exists(self, service_id: Any) -> bool:
        return str(service_id) in self._keys


def ensure_service_exists(checker: ServiceChecker | None, service_id: Any) -> None:
    """Raise unless *checker* confirms *service_id*.

    Raises:
        ServiceCheckerMissingError: If no checker was injected.
        ServiceNotFoundError: If the checker rejects the id.
    """
    if checker is None:
        raise ServiceCheckerMissingError()
    if not checker.exists(service_id):
        raise ServiceNotFoundError(service_id)
