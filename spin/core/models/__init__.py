"""
Domain models — Pydantic types for spin.

All models are re-exported here for convenient access:

    from spin.core.models import Module, ModuleConfig, Receipt, RunOptions
"""

from spin.core.models.config import ModuleConfig, RemoteState
from spin.core.models.module import Module, RunOptions
from spin.core.models.receipt import Receipt

__all__ = [
    # config.py
    "ModuleConfig",
    "RemoteState",
    # module.py
    "Module",
    "RunOptions",
    # receipt.py
    "Receipt",
]
