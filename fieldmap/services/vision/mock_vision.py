"""Deterministic vision client for development and tests. Never touches the network."""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from fieldmap.services.vision.base import VisionClient, VisionResult

# A scripted reply: plain text, (text, confidence), a full result, or an exception to raise
MockReply = Union[str, Tuple[str, int], VisionResult, BaseException]


@dataclass
class MockVisionCall:
    image: str
    instruction: str
    options: Dict[str, Any] = field(default_factory=dict)


def synthetic_value(instruction: str) -> str:
    """``"Read the router serial number"`` -> ``"MOCK READ THE ROUTER SERIAL NUMBER"``."""
    words = re.findall(r"[A-Za-z0-9]+", instruction)[:6]
    return "MOCK " + " ".join(words).upper() if words else "MOCK VALUE"


class MockVisionClient(VisionClient):
    """Replies from a script, an instruction map, or a synthetic labelled value.

    Lookup order per call: the next entry of ``script`` (consumed in order),
    then ``responses[instruction]``, then the first ``responses`` key that is a
    substring of the instruction, then ``synthetic_value(instruction)``.
    Every call is appended to ``calls``.
    """

    provider = "mock"

    def __init__(
        self,
        responses: Optional[Mapping[str, MockReply]] = None,
        script: Optional[Sequence[MockReply]] = None,
        confidence: int = 90,
        delay: float = 0.0,
        model: str = "mock-vision",
    ):
        super().__init__(model)
        self.responses = dict(responses or {})
        self.script = list(script or [])
        self.confidence = confidence
        self.delay = delay
        self.calls: List[MockVisionCall] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _lookup(self, instruction: str) -> MockReply:
        if self.script:
            return self.script.pop(0)
        if instruction in self.responses:
            return self.responses[instruction]
        for key, reply in self.responses.items():
            if key in instruction:
                return reply
        return synthetic_value(instruction)

    async def _complete(self, image, system, prompt, max_tokens, temperature):
        # extract() is overridden; kept for the abstract interface
        return synthetic_value(prompt), 0

    async def extract(
        self,
        image: str,
        instruction: str,
        *,
        structured_output: bool = False,
        max_tokens: int = 300,
        temperature: float = 0.1,
    ) -> VisionResult:
        self.calls.append(
            MockVisionCall(
                image=image,
                instruction=instruction,
                options={
                    "structured_output": structured_output,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                },
            )
        )
        reply = self._lookup(instruction)

        if self.delay:
            await asyncio.sleep(self.delay)

        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, VisionResult):
            return reply

        if isinstance(reply, tuple):
            text, confidence = reply
        else:
            text, confidence = reply, self.confidence

        if not text:
            return VisionResult(success=False, error="No response from vision service", model=self.model)

        return VisionResult(
            success=True,
            extracted_text=text,
            extracted_data={"value": text} if structured_output else None,
            confidence=confidence,
            model=self.model,
            tokens_used=0,
        )
