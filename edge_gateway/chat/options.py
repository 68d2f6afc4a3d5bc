"""Generation-option clamping.

Generation parameters are a tuning knob, not a security boundary: anything
missing or malformed falls back to the provider default and anything out of
range is pulled to the nearest bound. ``clamp_options`` never raises.
"""

import math
from dataclasses import dataclass
from typing import Any

from edge_gateway.models.chat import GenerationOptions


@dataclass(frozen=True)
class OptionBounds:
    temperature_min: float
    temperature_max: float
    default_temperature: float
    top_p_min: float = 0.0
    top_p_max: float = 1.0
    default_top_p: float = 0.9
    max_tokens_floor: int = 1
    max_tokens_cap: int = 4096
    default_max_tokens: int | None = None


OLLAMA_BOUNDS = OptionBounds(
    temperature_min=0.0,
    temperature_max=1.5,
    default_temperature=0.2,
    max_tokens_floor=64,
    max_tokens_cap=4096,
    default_max_tokens=None,
)

CLAUDE_BOUNDS = OptionBounds(
    temperature_min=0.0,
    temperature_max=1.0,
    default_temperature=0.3,
    max_tokens_floor=256,
    max_tokens_cap=8192,
    default_max_tokens=4096,
)


def clamp(value: float, lower: float, upper: float) -> float:
    return min(max(value, lower), upper)


def _number(value: Any) -> int | float | None:
    # bool is an int subclass; a JSON true is not a number here
    if isinstance(value, bool):
        return None
    # ints stay exact so oversized JSON integers clamp without float overflow
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return value
    return None


def clamp_options(raw: object, bounds: OptionBounds) -> GenerationOptions:
    if not isinstance(raw, dict):
        return GenerationOptions(
            temperature=bounds.default_temperature,
            top_p=bounds.default_top_p,
            max_tokens=bounds.default_max_tokens,
        )

    temperature = bounds.default_temperature
    top_p = bounds.default_top_p
    max_tokens = bounds.default_max_tokens

    raw_temperature = _number(raw.get("temperature"))
    if raw_temperature is not None:
        temperature = float(
            clamp(raw_temperature, bounds.temperature_min, bounds.temperature_max)
        )

    raw_top_p = _number(raw.get("top_p"))
    if raw_top_p is not None:
        top_p = float(clamp(raw_top_p, bounds.top_p_min, bounds.top_p_max))

    raw_max_tokens = _number(raw.get("max_tokens"))
    if raw_max_tokens is not None:
        max_tokens = int(
            clamp(raw_max_tokens, bounds.max_tokens_floor, bounds.max_tokens_cap)
        )

    return GenerationOptions(temperature=temperature, top_p=top_p, max_tokens=max_tokens)
