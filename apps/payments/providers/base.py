"""
Provider adapter registry

Each gateway gets one adapter class with the same two capabilities:
``map_status`` (native status -> canonical state) and an authenticity
check. Adding a gateway means adding a ``Provider`` member and one
registered adapter; reconciliation never branches on provider names.
"""

from abc import ABC, abstractmethod
from typing import Dict, Type

from apps.payments.domain.entities import CanonicalState, Provider


class ProviderAdapter(ABC):
    provider: Provider

    @abstractmethod
    def map_status(self, native_status) -> CanonicalState:
        """Canonical state for a provider-native status value."""


_registry: Dict[Provider, Type[ProviderAdapter]] = {}


def register(adapter_class: Type[ProviderAdapter]) -> Type[ProviderAdapter]:
    _registry[adapter_class.provider] = adapter_class
    return adapter_class


def get_adapter(provider: Provider) -> ProviderAdapter:
    # adapters register themselves on import
    from apps.payments.providers import click, octo, payme  # noqa: F401

    try:
        return _registry[provider]()
    except KeyError:
        raise ValueError(f"No adapter registered for provider {provider.value}")
