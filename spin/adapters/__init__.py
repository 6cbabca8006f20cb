"""Adapters — bindings to the tool and to lock backends.

Public re-exports for convenient access.
"""

from spin.adapters.base import Invoker
from spin.adapters.mock import MockInvoker
from spin.adapters.terraform import TerraformInvoker

__all__ = [
    "Invoker",
    "MockInvoker",
    "TerraformInvoker",
]
