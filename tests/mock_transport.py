""" Mock line transport for use in unit-tests. """

from typing import Callable, Dict, List, Optional

import asyncio

import loader  # pylint: disable=E0401,W0611
from controllers._controller_serial_base import LineTransportBase
from controllers.grbl_errors import GrblConnectionError

WELCOME = "Grbl 1.1h ['$' for help]"


class MockTransport(LineTransportBase):
    """ Mock version of a serial line transport.
    Lines in "welcome" are delivered after connect().
    Writing a key of "replies" delivers the matching lines after "delay" seconds. """

    def __init__(self, welcome: Optional[List[str]] = None) -> None:
        super().__init__()
        self.welcome: List[str] = [WELCOME] if welcome is None else welcome
        self.replies: Dict[str, List[str]] = {}
        self.delays: Dict[str, float] = {}
        self.written_data: List[str] = []
        self.write_hook: Optional[Callable[[str], None]] = None
        self.baud_rate: Optional[int] = None
        self.connect_count = 0
        self.disconnect_count = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def connect(self, baud_rate: int = 0) -> None:
        if self._open:
            return
        self._open = True
        self.baud_rate = baud_rate
        self.connect_count += 1
        loop = asyncio.get_running_loop()
        for line in self.welcome:
            loop.call_soon(self.receive, line)

    async def send_text(self, text: str) -> None:
        if not self._open:
            raise GrblConnectionError("Mock transport is closed")
        if self.write_hook is not None:
            self.write_hook(text)
        self.written_data.append(text)

        loop = asyncio.get_running_loop()
        delay = self.delays.get(text, 0)
        for line in self.replies.get(text, []):
            loop.call_later(delay, self.receive, line)

    async def disconnect(self) -> None:
        self._open = False
        self.disconnect_count += 1

    def receive(self, line: str) -> None:
        """ Simulate a line arriving from Grbl. """
        self._line_received(line)
