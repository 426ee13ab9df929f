"""Base protocol for pipeline handlers."""

from typing import Protocol, TypeVar

from place_intel.core.exceptions import PlaceIntelError
from place_intel.core.types import Result

# Contravariant input (handlers can accept supertypes), invariant output
T_In = TypeVar("T_In", contravariant=True)
T_Out = TypeVar("T_Out")
T_Error = TypeVar("T_Error", bound=PlaceIntelError)


class BaseAsyncHandler(Protocol[T_In, T_Out, T_Error]):
    """Protocol for asynchronous pipeline handlers.

    Each handler performs a single transformation on the command object.
    """

    @property
    def stage_name(self) -> str:
        """Short name used for progress, telemetry and error messages."""
        ...

    async def handle(self, command: T_In) -> Result[T_Out, T_Error]:
        """Process a command object.

        Args:
            command: The input command state from the previous stage.

        Returns:
            A Result holding either the next command state or an error.
        """
        ...
