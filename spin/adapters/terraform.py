"""
Terraform invoker — run the tool as a subprocess in a module directory.

Output is relayed line by line to the ``spin.tool`` logger, prefixed
with the module's log prefix, so that concurrent modules stay readable
when interleaved. The tail of the output is kept on the receipt as
diagnostic text.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from collections import deque

from spin.adapters.base import Invoker
from spin.core.models.module import Module
from spin.core.models.receipt import Receipt

logger = logging.getLogger(__name__)
tool_logger = logging.getLogger("spin.tool")

# Lines of output kept on the receipt
_TAIL_LINES = 50


class TerraformInvoker(Invoker):
    """Run ``<tool> <args...>`` in the module's working directory."""

    def __init__(self, tool: str | None = None):
        # None = use each module's configured tool
        self._tool = tool

    @property
    def name(self) -> str:
        return "terraform"

    def is_available(self) -> bool:
        return shutil.which(self._tool or "terraform") is not None

    def build_command(self, module: Module) -> list[str]:
        options = module.options
        return [self._tool or options.tool, *options.tool_args]

    def build_env(self, module: Module) -> dict[str, str]:
        env = dict(os.environ)
        env.update(module.options.env)
        if module.options.non_interactive:
            env["TF_INPUT"] = "0"
            env["TF_IN_AUTOMATION"] = "1"
        return env

    def invoke(self, module: Module) -> Receipt:
        options = module.options
        command = self.build_command(module)
        logger.debug("Executing: %s (cwd=%s)", " ".join(command), options.working_dir)
        start = time.monotonic()
        tail: deque[str] = deque(maxlen=_TAIL_LINES)

        try:
            process = subprocess.Popen(
                command,
                cwd=options.working_dir,
                env=self.build_env(module),
                stdin=subprocess.DEVNULL if options.non_interactive else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as e:
            return Receipt.failure(
                module=module.path,
                error=(
                    f"Command '{command[0]}' could not be executed "
                    f"({e.strerror or 'file not found'}). "
                    "Ensure it is installed and available on PATH."
                ),
                exit_code=127,
                metadata={"command": command},
            )
        except OSError as e:
            return Receipt.failure(
                module=module.path,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        timed_out = threading.Event()
        timer: threading.Timer | None = None
        if options.timeout:

            def _kill() -> None:
                timed_out.set()
                process.kill()

            timer = threading.Timer(options.timeout, _kill)
            timer.daemon = True
            timer.start()

        try:
            assert process.stdout is not None
            for line in process.stdout:
                line = line.rstrip("\n")
                tail.append(line)
                tool_logger.info("%s%s", options.log_prefix, line)
            return_code = process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = "\n".join(tail)
        metadata = {"command": command, "return_code": return_code}

        if timed_out.is_set():
            return Receipt.failure(
                module=module.path,
                error=f"Command timed out after {options.timeout}s",
                exit_code=return_code,
                output=output,
                duration_ms=elapsed_ms,
                metadata={**metadata, "timeout": options.timeout},
            )

        if return_code == 0:
            return Receipt.success(
                module=module.path,
                output=output,
                exit_code=0,
                duration_ms=elapsed_ms,
                metadata=metadata,
            )

        return Receipt.failure(
            module=module.path,
            error=f"{command[0]} exited with code {return_code}",
            exit_code=return_code,
            output=output,
            duration_ms=elapsed_ms,
            metadata=metadata,
        )
