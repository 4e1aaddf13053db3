# src/pipeline/registry.py — v1
"""Pipeline registry — canonical definitions for all checkout pipeline types.

Each definition declares which steps must succeed for a session to be valid
and which steps are merely tolerated. The antifraud variants require a
``fraud_check`` before payment and allow a manual-review escalation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from checkout_ledger.pipeline.models import PipelineDefinition

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when a pipeline definition is required but not registered."""


PIPELINE_CHECKOUT_PHYSICAL = PipelineDefinition(
    name="Physical Product Checkout",
    type="checkout_physical",
    required_steps=(
        "buyer_validated",
        "address_validated",
        "payment_initiated",
        "payment_confirmed",
        "fulfillment_delegated",
        "checkout_completed",
    ),
    optional_steps=("webhook_received", "webhook_verified"),
)

PIPELINE_CHECKOUT_DIGITAL = PipelineDefinition(
    name="Digital Product Checkout",
    type="checkout_digital",
    required_steps=(
        "buyer_validated",
        "payment_initiated",
        "payment_confirmed",
        "checkout_completed",
    ),
    optional_steps=("webhook_received", "webhook_verified", "fulfillment_delegated"),
)

PIPELINE_CHECKOUT_SUBSCRIPTION = PipelineDefinition(
    name="Subscription Checkout",
    type="checkout_subscription",
    required_steps=(
        "buyer_validated",
        "payment_initiated",
        "payment_confirmed",
        "webhook_received",
        "webhook_verified",
        "checkout_completed",
    ),
    optional_steps=("fulfillment_delegated",),
)


def with_antifraud(base: PipelineDefinition) -> PipelineDefinition:
    """Derive the antifraud variant of a definition.

    ``fraud_check`` is inserted right before ``payment_initiated`` and
    ``fraud_review_escalated`` becomes an optional step.
    """
    required = list(base.required_steps)
    insert_at = (
        required.index("payment_initiated")
        if "payment_initiated" in required
        else len(required)
    )
    required.insert(insert_at, "fraud_check")
    return PipelineDefinition(
        name=f"{base.name} (Antifraud)",
        type=f"{base.type}_antifraud",
        required_steps=tuple(required),
        optional_steps=(*base.optional_steps, "fraud_review_escalated"),
    )


PIPELINE_CHECKOUT_PHYSICAL_ANTIFRAUD = with_antifraud(PIPELINE_CHECKOUT_PHYSICAL)
PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD = with_antifraud(PIPELINE_CHECKOUT_DIGITAL)
PIPELINE_CHECKOUT_SUBSCRIPTION_ANTIFRAUD = with_antifraud(
    PIPELINE_CHECKOUT_SUBSCRIPTION
)

PIPELINE_DEFINITIONS: tuple[PipelineDefinition, ...] = (
    PIPELINE_CHECKOUT_PHYSICAL,
    PIPELINE_CHECKOUT_DIGITAL,
    PIPELINE_CHECKOUT_SUBSCRIPTION,
    PIPELINE_CHECKOUT_PHYSICAL_ANTIFRAUD,
    PIPELINE_CHECKOUT_DIGITAL_ANTIFRAUD,
    PIPELINE_CHECKOUT_SUBSCRIPTION_ANTIFRAUD,
)


class PipelineRegistry:
    """Read-only lookup table of pipeline definitions.

    Built once at process start. Lookups of unknown types return None so
    that callers branch on it instead of crashing the checksum path.
    """

    def __init__(self, definitions: Iterable[PipelineDefinition] = PIPELINE_DEFINITIONS) -> None:
        self._definitions: dict[str, PipelineDefinition] = {}
        for definition in definitions:
            if definition.type in self._definitions:
                raise RegistryError(f"Duplicate pipeline type: {definition.type!r}")
            self._definitions[definition.type] = definition

    @property
    def types(self) -> list[str]:
        """Registered pipeline types, in registration order."""
        return list(self._definitions)

    @property
    def definitions(self) -> list[PipelineDefinition]:
        return list(self._definitions.values())

    def get(self, pipeline_type: str) -> PipelineDefinition | None:
        """Get definition by type, or None if not registered."""
        return self._definitions.get(pipeline_type)

    def get_or_raise(self, pipeline_type: str) -> PipelineDefinition:
        """Get definition by type, raise if not found."""
        definition = self._definitions.get(pipeline_type)
        if definition is None:
            raise RegistryError(f"Pipeline type '{pipeline_type}' not found in registry")
        return definition

    def __contains__(self, pipeline_type: object) -> bool:
        return pipeline_type in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)


DEFAULT_REGISTRY = PipelineRegistry()


def get_pipeline_definition(pipeline_type: str) -> PipelineDefinition | None:
    """Look up a built-in definition. Returns None for unknown types."""
    definition = DEFAULT_REGISTRY.get(pipeline_type)
    if definition is None:
        logger.debug("Unknown pipeline type: %s", pipeline_type)
    return definition
