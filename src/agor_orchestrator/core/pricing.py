"""Token cost estimation for completed tasks."""

from dataclasses import dataclass

from agor_orchestrator.models.task import TaskUsage


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


def estimate_cost_usd(
    usage: TaskUsage,
    *,
    tool: str,
    model: str | None,
    pricing_table: str,
) -> float | None:
    """Estimate task cost in USD from token usage and a pricing table.

    Cache reads and writes are billed at the input rate.
    """
    pricing = lookup_pricing(pricing_table, tool=tool, model=model or "*")
    if pricing is None:
        return None

    input_tokens = usage.input_tokens + usage.cache_read_tokens + usage.cache_creation_tokens
    if input_tokens or usage.output_tokens:
        return (input_tokens / 1_000_000) * pricing.input_per_1m + (
            usage.output_tokens / 1_000_000
        ) * pricing.output_per_1m

    if usage.total_tokens:
        return (usage.total_tokens / 1_000_000) * pricing.input_per_1m
    return None


def lookup_pricing(pricing_table: str, *, tool: str, model: str) -> ModelPricing | None:
    mapping = parse_pricing_mapping(pricing_table)
    tool_key = tool.strip().lower()
    for key in ((tool_key, model.strip()), (tool_key, "*"), ("*", "*")):
        if key in mapping:
            return mapping[key]
    return None


def parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse a pricing table.

    Format:
    - ``tool:model:input_per_1m:output_per_1m``
    - multiple entries separated by ``,``
    - supports wildcards in tool/model (``*``)

    Malformed entries are ignored.
    """
    parsed: dict[tuple[str, str], ModelPricing] = {}
    for entry in raw.split(","):
        parts = [part.strip() for part in entry.strip().split(":")]
        if len(parts) != 4:
            continue
        tool, model, input_price, output_price = parts
        try:
            parsed[(tool.lower(), model)] = ModelPricing(
                input_per_1m=float(input_price),
                output_per_1m=float(output_price),
            )
        except ValueError:
            continue
    return parsed
