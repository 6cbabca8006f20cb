"""
Invoker base — the contract between the coordinator and the tool.

The coordinator decides when and in which order the provisioning tool
runs; an invoker actually runs it. The coordinator only ever talks to
this interface, never to a subprocess directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from spin.core.models.module import Module
from spin.core.models.receipt import Receipt


class Invoker(ABC):
    """Abstract base class for tool invokers.

    Invokers run the tool synchronously to completion and return a
    receipt. They NEVER raise exceptions — failures are captured in the
    Receipt with status='failed'.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The invoker identifier (e.g., 'terraform', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the underlying tool can be run at all.

        Should be fast and never raise.
        """

    @abstractmethod
    def invoke(self, module: Module) -> Receipt:
        """Run the tool with the module's bound options.

        MUST never raise exceptions.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
