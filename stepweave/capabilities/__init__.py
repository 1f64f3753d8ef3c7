"""Reference capabilities for the four step kinds."""

from __future__ import annotations

from typing import Optional

from ..config import StepweaveConfig
from ..contracts import StepKind
from ..dispatch import Capability, CapabilityRegistry
from .ai import AIProcessorCapability
from .datasource import DataSourceCapability
from .delivery import DeliveryCapability
from .transform import TransformCapability


def build_registry(config: Optional[StepweaveConfig] = None) -> CapabilityRegistry:
    """Return a registry with every reference capability registered."""
    config = config or StepweaveConfig()
    return CapabilityRegistry(
        {
            StepKind.DATA_SOURCE: DataSourceCapability(config.datasource),
            StepKind.AI_PROCESSOR: AIProcessorCapability(config.ai),
            StepKind.TRANSFORM: TransformCapability(config.transform),
            StepKind.DELIVERY: DeliveryCapability(config.delivery),
        }
    )


__all__ = [
    "AIProcessorCapability",
    "Capability",
    "DataSourceCapability",
    "DeliveryCapability",
    "TransformCapability",
    "build_registry",
]
