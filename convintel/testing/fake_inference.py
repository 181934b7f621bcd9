"""
Scripted inference client for tests and offline runs.

Replays canned responses in order and records every call, so analysis
stages can be exercised without a provider SDK or network access.

Each scripted item may be:
- dict: serialized to JSON and returned
- str: returned verbatim (use this for malformed output)
- Exception instance: raised from complete()
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from convintel.llm.client import CompletionOptions

logger = logging.getLogger(__name__)


@dataclass
class RecordedCall:
    system_prompt: str
    user_prompt: str
    options: CompletionOptions


class FakeInferenceClient:
    """InferenceClient that answers from a script instead of a model."""

    provider = "fake"

    def __init__(
        self,
        responses: Optional[Iterable[Any]] = None,
        *,
        default: Any = None,
        delay: float = 0.0,
    ):
        self._responses = list(responses or [])
        self.default = default if default is not None else {}
        self.delay = delay
        self.calls: list[RecordedCall] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> str:
        self.calls.append(RecordedCall(system_prompt, user_prompt, options))
        if self.delay:
            await asyncio.sleep(self.delay)

        item = self._responses.pop(0) if self._responses else self.default
        logger.debug("[FAKE] inference call %d", len(self.calls))

        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return item
        return json.dumps(item)
