"""Compensation for writes that span stores without a shared transaction.

Usage:
    async with Saga(item_name) as saga:
        blob = await blob_store.write(source, path)
        saga.on_failure("delete blob", lambda: blob_store.delete(path))
        await metadata.create_or_update(values)

If anything inside the block raises, the registered actions run newest
first and the original exception propagates.
"""
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Compensation = Callable[[], Awaitable[object]]


class Saga:

    def __init__(self, name: str):
        self.name = name
        self._compensations: list[tuple[str, Compensation]] = []

    def on_failure(self, description: str, action: Compensation) -> None:
        self._compensations.append((description, action))

    async def __aenter__(self) -> "Saga":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self._compensations.clear()
            return False
        await self.compensate()
        return False

    async def compensate(self) -> None:
        while self._compensations:
            description, action = self._compensations.pop()
            try:
                await action()
                logger.info(f"Compensated '{description}' for {self.name}")
            except Exception as e:
                # The original failure still propagates; this one is only reported
                logger.error(f"Compensation '{description}' failed for {self.name}: {e}")
