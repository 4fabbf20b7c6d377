from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from app_logging.run_logger import RunLogger


class BaseAgent(ABC):
    """
    Base interface for the generative leaf agents.

    Agents are stateless between calls: everything they need arrives as
    arguments, and they never touch a Draft. The controller decides what to do
    with their output.

    Keep outputs mostly reproducible by keeping temperature low for structured
    calls; only the long-form stream runs warm.
    """

    name: str

    def __init__(self, *, run_logger: Optional[RunLogger] = None, logger: Callable[[str], None] = print) -> None:
        self.run_logger = run_logger
        self._log = logger

    @abstractmethod
    async def run(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def _trace_start(self, input: Any) -> None:
        if self.run_logger is not None:
            self.run_logger.start(self.name, input)

    def _trace_end(self, output: Any, metrics: Optional[dict[str, Any]] = None) -> None:
        if self.run_logger is not None:
            self.run_logger.end(self.name, output, metrics)

    def _trace_error(self, input: Any, err: BaseException) -> None:
        if self.run_logger is not None:
            self.run_logger.error(self.name, input, err)
