"""
Model selection and fan-out for the differential generation proxy.

``generate`` maps a selector (gemini | mimo | both) to one or two upstream
calls. In ``both`` mode the calls run concurrently and every slot reports
its own outcome; one failing vendor never fails the pair.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from vetddx.llm.client import LLMClient, LLMError, LLMProvider

logger = logging.getLogger(__name__)


class ModelSelector(str, Enum):
    GEMINI = "gemini"
    MIMO = "mimo"
    BOTH = "both"


@dataclass(frozen=True)
class ModelSpec:
    model_id: str
    model_name: str
    provider: LLMProvider
    vendor_label: str


GEMINI_SPEC = ModelSpec(
    model_id="gemini",
    model_name="Google Gemini 2.5 Flash",
    provider=LLMProvider.GEMINI,
    vendor_label="Gemini",
)
MIMO_SPEC = ModelSpec(
    model_id="mimo",
    model_name="Xiaomi MiMo-V2-Flash",
    provider=LLMProvider.OPENROUTER,
    vendor_label="MiMo",
)

MODEL_SPECS: dict[ModelSelector, tuple[ModelSpec, ...]] = {
    ModelSelector.GEMINI: (GEMINI_SPEC,),
    ModelSelector.MIMO: (MIMO_SPEC,),
    ModelSelector.BOTH: (GEMINI_SPEC, MIMO_SPEC),
}


@dataclass
class ModelReply:
    """Outcome of one upstream call."""

    model_id: str
    model_name: str
    text: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_selector(value: Any) -> ModelSelector:
    """Return the selector for ``value``; None/empty means Gemini.

    Raises ValueError for anything outside the known set, non-strings included.
    """
    if value is None or value == "":
        return ModelSelector.GEMINI
    if not isinstance(value, str):
        raise ValueError(f"Unknown model selector: {value!r}")
    return ModelSelector(value)


async def call_model(spec: ModelSpec, prompt: str) -> str:
    """Call one vendor and return its text. Raises LLMError on failure."""
    client = LLMClient(provider=spec.provider)
    response = await client.call(prompt)
    logger.info(
        "%s replied (%d input / %d output tokens)",
        spec.model_id, response.input_tokens, response.output_tokens,
    )
    return response.text_content


def _placeholder(spec: ModelSpec, exc: BaseException) -> str:
    return f"Error fetching {spec.vendor_label} response: {exc}"


async def generate(prompt: str, selector: ModelSelector) -> list[ModelReply]:
    """Run the prompt against the selected model(s).

    Single-model mode lets LLMError propagate to the caller. ``both`` settles
    every call and tags failures on their own slot.
    """
    specs = MODEL_SPECS[selector]

    if selector != ModelSelector.BOTH:
        spec = specs[0]
        text = await call_model(spec, prompt)
        return [ModelReply(model_id=spec.model_id, model_name=spec.model_name, text=text)]

    outcomes = await asyncio.gather(
        *(call_model(spec, prompt) for spec in specs),
        return_exceptions=True,
    )

    replies: list[ModelReply] = []
    for spec, outcome in zip(specs, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, LLMError):
                logger.exception("Unexpected failure calling %s", spec.model_id, exc_info=outcome)
            else:
                logger.warning("%s call failed: %s", spec.model_id, outcome)
            replies.append(ModelReply(
                model_id=spec.model_id,
                model_name=spec.model_name,
                text=_placeholder(spec, outcome),
                error=str(outcome) or outcome.__class__.__name__,
            ))
        else:
            replies.append(ModelReply(
                model_id=spec.model_id, model_name=spec.model_name, text=outcome,
            ))
    return replies
