"""Generation adapter protocol.

Adapters hide the model SDK from the synthesizer: a prompt goes in, raw text
comes out. Parsing and repair happen downstream, never in the adapter.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class GenerationAdapter(Protocol):
    """Minimal text generation contract."""

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        """Return the model's raw text for `prompt`."""
        ...
