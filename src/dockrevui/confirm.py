"""One-shot confirmation requests resolved by the UI."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmOptions:
    title: str
    body: str
    confirm_text: str = "Confirm"
    cancel_text: str = "Cancel"
    confirm_variant: str = "danger"  # primary, danger, ghost

    @property
    def badge(self) -> str:
        if self.confirm_variant == "danger":
            return "high impact"
        if self.confirm_variant == "primary":
            return "starts a job"
        return "confirm"


class ConfirmBroker:
    """
    Hands confirmation requests to whatever renders them.

    confirm() returns once resolve() is called. Only one request is open at a
    time; opening a new one answers the previous one with False.
    """

    def __init__(self, on_request: Optional[Callable[[ConfirmOptions], None]] = None):
        self._on_request = on_request
        self._pending: Optional[ConfirmOptions] = None
        self._future: Optional[asyncio.Future] = None

    @property
    def pending(self) -> Optional[ConfirmOptions]:
        return self._pending

    async def confirm(self, options: ConfirmOptions) -> bool:
        if self._future is not None and not self._future.done():
            logger.debug(f"Superseding confirmation {self._pending.title!r}")
            self._future.set_result(False)
        future = asyncio.get_running_loop().create_future()
        self._future = future
        self._pending = options
        if self._on_request is not None:
            self._on_request(options)
        try:
            return await future
        finally:
            if self._future is future:
                self._future = None
                self._pending = None

    def resolve(self, ok: bool) -> None:
        if self._future is None or self._future.done():
            return
        self._future.set_result(bool(ok))
