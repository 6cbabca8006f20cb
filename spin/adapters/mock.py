"""
Mock invoker — test double for the provisioning tool.

Records every module it is asked to run and returns canned receipts.
Configurable to succeed, fail, or run a hook per call (useful for
observing concurrency from inside the critical section).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from spin.adapters.base import Invoker
from spin.core.models.module import Module
from spin.core.models.receipt import Receipt


class MockInvoker(Invoker):
    """Universal mock invoker for testing.

    By default, returns success for everything. Can be configured
    with custom responses per module path.
    """

    def __init__(
        self,
        invoker_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
        delay: float = 0.0,
        hook: Callable[[Module], None] | None = None,
    ):
        self._name = invoker_name
        self._available = available
        self._default_output = default_output
        self._delay = delay
        self._hook = hook
        self._responses: dict[str, Receipt] = {}
        self._call_log: list[Module] = []
        self._log_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[Module]:
        """All modules this mock has been asked to run, in call order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times invoke has been called."""
        return len(self._call_log)

    @property
    def called_paths(self) -> list[str]:
        return [m.path for m in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, path: str, receipt: Receipt) -> None:
        """Set a custom response for a specific module path."""
        self._responses[path] = receipt

    def set_failure(self, path: str, error: str = "Mock failure", exit_code: int = 1) -> None:
        """Configure a specific module to fail."""
        self._responses[path] = Receipt.failure(
            module=path,
            error=error,
            exit_code=exit_code,
        )

    def invoke(self, module: Module) -> Receipt:
        with self._log_lock:
            self._call_log.append(module)

        if self._hook is not None:
            self._hook(module)
        if self._delay:
            time.sleep(self._delay)

        # Check for custom response
        if module.path in self._responses:
            return self._responses[module.path].model_copy(deep=True)

        # Default: success
        return Receipt.success(
            module=module.path,
            output=self._default_output,
            exit_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
