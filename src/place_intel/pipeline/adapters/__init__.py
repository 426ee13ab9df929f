"""Generation adapters.

The real Google GenAI adapter is imported lazily by the executor so the
mock path never touches the SDK.
"""

from .base import GenerationAdapter
from .mock import MockAdapter

__all__ = ["GenerationAdapter", "MockAdapter"]
