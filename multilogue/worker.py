"""One-shot workers and the single-slot executor that runs them.

A worker accepts exactly one request and produces exactly one reply
envelope::

    {"type": "success", "data": {"role": ..., "content": ..., "reasoning_content": ...}}
    {"type": "error", "error": "..."}

The executor creates a fresh worker per exchange, hands its reply to the
caller's handler and terminates it exactly once afterwards, whatever happened.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from multilogue.errors import TransportError, WorkerBusyError
from multilogue.machines.base import Machine, MachineError

logger = logging.getLogger(__name__)

Reply = dict[str, Any]
ReplyHandler = Callable[[Reply], None]
WorkerFactory = Callable[[Mapping[str, Any]], "Worker"]


class Worker:
    """Runs one machine call for one request."""

    def __init__(self, machine: Machine) -> None:
        self._machine = machine
        self._posted = False
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    async def post(self, request: Mapping[str, Any]) -> Reply:
        """Run the request and return the reply envelope.

        Machine failures become error envelopes. Raises TransportError if the
        worker was already used or terminated.
        """
        if self._terminated:
            raise TransportError("Worker already terminated")
        if self._posted:
            raise TransportError("Worker accepts a single request")
        self._posted = True

        try:
            data = await self._machine.complete(list(request["messages"]), request.get("settings") or {})
        except MachineError as exc:
            logger.error("Worker: machine %s failed: %s", self._machine.name(), exc)
            return {"type": "error", "error": str(exc)}
        logger.debug("Worker: machine %s replied", self._machine.name())
        return {"type": "success", "data": data}

    async def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        try:
            await self._machine.close()
        except Exception as exc:
            logger.warning("Worker: closing machine %s failed: %s", self._machine.name(), exc)
        logger.debug("Worker for %s terminated", self._machine.name())


class WorkerExecutor:
    """Runs at most one exchange at a time, each on a fresh worker."""

    def __init__(self, worker_factory: WorkerFactory) -> None:
        self._worker_factory = worker_factory
        self._outstanding: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self._outstanding is not None and not self._outstanding.done()

    def submit(self, request: Mapping[str, Any], on_reply: ReplyHandler) -> asyncio.Task:
        """Start an exchange; ``on_reply`` receives the single reply envelope.

        Must be called from a running event loop. Returns the exchange task,
        which finishes after the handler ran and the worker was terminated.

        Raises:
            WorkerBusyError: If the previous exchange has not finished.
        """
        if self.busy:
            raise WorkerBusyError("A machine turn is already in progress")
        task = asyncio.get_running_loop().create_task(self._exchange(request, on_reply))
        self._outstanding = task
        return task

    async def _exchange(self, request: Mapping[str, Any], on_reply: ReplyHandler) -> None:
        worker: Worker | None = None
        try:
            try:
                worker = self._worker_factory(request["config"])
                reply = await worker.post(request)
            except Exception as exc:
                logger.error("Worker failed to initialize or run: %s", exc)
                reply = {"type": "error", "error": f"Worker failed: {exc}"}
            on_reply(reply)
        finally:
            if worker is not None:
                await worker.terminate()
