"""
Pricing calculations and rate management.

Handles cost computations for recognition models and the even split of
a batch cost across the records it produced.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from .token_counter import TokenUsage

_ONE_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1m: Decimal  # Cost per 1M prompt tokens
    output_cost_per_1m: Decimal  # Cost per 1M output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


# Approximate standard-tier list prices in USD
PRICING_TABLE = PricingTable({
    "gpt-4o": ModelPricing(
        input_cost_per_1m=Decimal("2.50"),
        output_cost_per_1m=Decimal("10.00")
    ),
    "gpt-4o-mini": ModelPricing(
        input_cost_per_1m=Decimal("0.15"),
        output_cost_per_1m=Decimal("0.60")
    ),
})


def calculate_cost(
    model: str,
    usage: TokenUsage,
    pricing: Optional[ModelPricing] = None
) -> float:
    """Calculate the total cost of one recognition call.

    No rounding is applied; the ledger formats costs to six decimals.

    Args:
        model: Model identifier
        usage: Token usage data
        pricing: Explicit pricing, overriding the built-in table

    Returns:
        Total cost in USD

    Raises:
        ValueError: If model is not supported and no pricing is given
    """
    pricing = pricing or PRICING_TABLE.get_pricing(model)

    input_cost = (Decimal(usage.prompt_tokens) / _ONE_MILLION) * pricing.input_cost_per_1m
    output_cost = (Decimal(usage.output_tokens) / _ONE_MILLION) * pricing.output_cost_per_1m

    return float(input_cost + output_cost)


def split_cost(total_cost: float, parts: int) -> List[float]:
    """Divide a batch cost evenly across the records it produced.

    This is an approximation: the service reports usage per call, not
    per image, so every record is charged the same share.

    Args:
        total_cost: Cost of the whole call
        parts: Number of records the call returned

    Returns:
        ``parts`` equal shares (empty list when ``parts`` is 0)

    Raises:
        ValueError: If total_cost or parts is negative
    """
    if total_cost < 0:
        raise ValueError("total_cost cannot be negative")
    if parts < 0:
        raise ValueError("parts cannot be negative")
    if parts == 0:
        return []
    share = total_cost / parts
    return [share] * parts
