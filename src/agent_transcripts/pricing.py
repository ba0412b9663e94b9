"""Pricing tables and the tiered cost calculator.

Pricing uses the LiteLLM ``model_prices_and_context_window.json`` layout:
per-token USD rates keyed by model name, with optional rates that apply to
tokens above a 200k threshold.
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger("agent_transcripts.pricing")

DEFAULT_TIERED_THRESHOLD = 200_000

PROVIDER_PREFIXES = [
    "anthropic/",
    "claude-3-5-",
    "claude-3-",
    "claude-",
    "openai/",
    "azure/",
    "openrouter/openai/",
]


class ModelPricing(BaseModel):
    """Per-token rates for one model."""

    model_config = ConfigDict(extra="ignore")

    input_cost_per_token: Optional[float] = None
    output_cost_per_token: Optional[float] = None
    cache_creation_input_token_cost: Optional[float] = None
    cache_read_input_token_cost: Optional[float] = None
    input_cost_per_token_above_200k_tokens: Optional[float] = None
    output_cost_per_token_above_200k_tokens: Optional[float] = None
    cache_creation_input_token_cost_above_200k_tokens: Optional[float] = None
    cache_read_input_token_cost_above_200k_tokens: Optional[float] = None


PricingTable = dict[str, ModelPricing]


def coerce_pricing(
    raw: Optional[Mapping[str, Union[ModelPricing, Mapping[str, Any]]]],
) -> PricingTable:
    """Build a pricing table, skipping entries that are not valid rates."""
    table: PricingTable = {}
    if not raw:
        return table
    for model, entry in raw.items():
        if isinstance(entry, ModelPricing):
            table[model] = entry
            continue
        if not isinstance(entry, Mapping):
            logger.debug("Skipping pricing entry %s: not an object", model)
            continue
        try:
            table[model] = ModelPricing.model_validate(dict(entry))
        except ValidationError:
            logger.debug("Skipping invalid pricing entry %s", model)
    return table


def load_pricing_file(path: Path) -> PricingTable:
    """Load a LiteLLM-format pricing file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Pricing file {path} does not contain a JSON object")
    return coerce_pricing(data)


def resolve_pricing(
    model_name: str, pricing: Mapping[str, ModelPricing], strip_prefixes: bool = False
) -> Optional[ModelPricing]:
    """Find the pricing entry for ``model_name``.

    Tries the exact name, then each provider-prefixed variant, then (when
    ``strip_prefixes``) the name without a known prefix, and finally a
    case-insensitive substring match in either direction.
    """
    name = model_name.strip()
    if not name or not pricing:
        return None

    candidates = [name]
    candidates.extend(f"{prefix}{name}" for prefix in PROVIDER_PREFIXES)
    if strip_prefixes:
        candidates.extend(
            name[len(prefix):] for prefix in PROVIDER_PREFIXES if name.startswith(prefix)
        )

    for candidate in dict.fromkeys(candidates):
        entry = pricing.get(candidate)
        if entry is not None:
            return entry

    lower = name.lower()
    for key, entry in pricing.items():
        comparison = key.lower()
        if lower in comparison or comparison in lower:
            return entry

    logger.debug("No pricing entry for model %s", model_name)
    return None


def tiered_cost(
    tokens: int,
    base_price: Optional[float],
    tiered_price: Optional[float],
    threshold: int = DEFAULT_TIERED_THRESHOLD,
) -> float:
    """Cost of ``tokens`` with the above-threshold rate applied past ``threshold``."""
    if tokens is None or tokens <= 0:
        return 0.0

    if tokens > threshold and tiered_price is not None:
        below = min(tokens, threshold)
        above = max(0, tokens - threshold)
        cost = above * tiered_price
        if base_price is not None:
            cost += below * base_price
        return cost

    if base_price is not None:
        return tokens * base_price
    return 0.0


def calculate_cost(
    pricing: ModelPricing,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_creation_input_tokens: int = 0,
    cache_read_input_tokens: int = 0,
) -> float:
    """Sum the tiered cost of every price component."""
    return (
        tiered_cost(
            input_tokens,
            pricing.input_cost_per_token,
            pricing.input_cost_per_token_above_200k_tokens,
        )
        + tiered_cost(
            output_tokens,
            pricing.output_cost_per_token,
            pricing.output_cost_per_token_above_200k_tokens,
        )
        + tiered_cost(
            cache_creation_input_tokens,
            pricing.cache_creation_input_token_cost,
            pricing.cache_creation_input_token_cost_above_200k_tokens,
        )
        + tiered_cost(
            cache_read_input_tokens,
            pricing.cache_read_input_token_cost,
            pricing.cache_read_input_token_cost_above_200k_tokens,
        )
    )
