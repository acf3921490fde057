""" Routing of received lines and serialization of outgoing commands for
controllers that speak a line based, one command at a time protocol. """

from typing import Any, Awaitable, Callable, Deque, List, Optional, Tuple

import asyncio
import functools
import logging
from collections import deque
from dataclasses import dataclass, field

from definitions import COMMAND_TERMINATOR, DEFAULT_TIMEOUT, RESPONSE_SEPARATOR
from controllers.grbl_errors import CommandTimeout, GrblConnectionError

logger = logging.getLogger(__name__)

# Called with each line routed to it. Returns True once it wants no more lines.
Handler = Callable[[str], bool]


class ResponseDemultiplexer:
    """ FIFO register of response handlers.

    Every received line goes to the oldest registered handler. There is no
    addressing by content; this only works because the CommandQueue never lets
    more than one command's handlers be registered at a time.
    Each handler is registered with an "owner" so all the handlers belonging to
    one command can be found (and removed) again. """

    def __init__(self, on_unsolicited: Optional[Callable[[str], None]] = None) -> None:
        self._handlers: Deque[Tuple[Any, Handler]] = deque()
        self.on_unsolicited = on_unsolicited
        self.unsolicited_count: int = 0

    def __len__(self) -> int:
        return len(self._handlers)

    def register(self, handler: Handler, owner: Any = None) -> None:
        """ Append a handler to the tail of the register. """
        self._handlers.append((owner, handler))

    def owners(self) -> List[Any]:
        """ Owners of the registered handlers, oldest first. """
        return [owner for owner, _ in self._handlers]

    def discard(self, owner: Any) -> int:
        """ Remove every handler registered by owner. Returns how many went. """
        before = len(self._handlers)
        self._handlers = deque(
            (owner_, handler) for owner_, handler in self._handlers if owner_ is not owner)
        return before - len(self._handlers)

    def clear(self) -> int:
        """ Remove all handlers. """
        count = len(self._handlers)
        self._handlers.clear()
        return count

    def dispatch(self, line: str) -> None:
        """ Route a received line to the oldest handler. """
        if not self._handlers:
            self.unsolicited_count += 1
            if self.on_unsolicited is not None:
                self.on_unsolicited(line)
            else:
                logger.warning("Received unexpected message: %s", line)
            return

        _, handler = self._handlers[0]
        if handler(line) and self._handlers and self._handlers[0][1] is handler:
            self._handlers.popleft()


@dataclass
class PendingCommand:
    """ A command and the number of response lines it will produce. """
    text: str
    expected_lines: int = 1
    timeout: float = DEFAULT_TIMEOUT  # seconds

    def __post_init__(self) -> None:
        if self.expected_lines < 1:
            raise ValueError("expected_lines must be at least 1, not %s" % self.expected_lines)
        if self.timeout <= 0:
            raise ValueError("timeout must be positive, not %s" % self.timeout)
        if "\r" in self.text or "\n" in self.text:
            raise ValueError("Command must be a single line: %r" % self.text)


# Compared by identity: an entry is the owner tag of its response handlers.
@dataclass(eq=False)
class QueueEntry:
    """ A PendingCommand waiting for, or going through, execution. """
    command: PendingCommand
    result: "asyncio.Future[str]"
    lines: List[str] = field(default_factory=list)


class CommandQueue:
    """ Executes commands strictly one at a time in submission order.

    A command is not written until the previous one has been answered or has
    timed out. Grbl's serial input buffer only has room for one line so
    sending ahead of the acknowledgement can overflow it. """

    def __init__(self,
                 demultiplexer: ResponseDemultiplexer,
                 write: Callable[[str], Awaitable[None]],
                 terminator: str = COMMAND_TERMINATOR,
                 release_on_timeout: bool = True) -> None:
        self._demultiplexer = demultiplexer
        self._write = write
        self.terminator = terminator
        # When False a timed out command's handlers stay registered and
        # swallow whatever lines turn up next.
        self.release_on_timeout = release_on_timeout
        self._queue: Deque[QueueEntry] = deque()
        self._task: Optional["asyncio.Task[None]"] = None

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def active(self) -> Optional[QueueEntry]:
        """ The command currently being executed, if any. """
        if self._task is None or not self._queue:
            return None
        return self._queue[0]

    async def submit(self,
                     text: str,
                     expected_lines: int = 1,
                     timeout: float = DEFAULT_TIMEOUT) -> str:
        """ Queue a command and wait for its response lines.
        Returns the response lines joined by RESPONSE_SEPARATOR.
        Raises CommandTimeout if they do not all arrive within timeout seconds
        of the command being sent. The deadline is armed when the command
        reaches the head of the queue and is written, not when it is submitted,
        so time spent waiting behind earlier commands does not count. """
        command = PendingCommand(text, expected_lines, timeout)
        entry = QueueEntry(command, asyncio.get_running_loop().create_future())

        others_pending = bool(self._queue)
        self._queue.append(entry)
        if not others_pending:
            self._start(entry)

        return await entry.result

    def abandon(self, reason: str) -> int:
        """ Fail every queued and executing command and drop all registered
        handlers. Returns the number of commands failed. """
        failed = 0
        for entry in self._queue:
            if not entry.result.done():
                entry.result.set_exception(GrblConnectionError(reason))
                failed += 1
        self._demultiplexer.clear()
        return failed

    def _start(self, entry: QueueEntry) -> None:
        self._task = asyncio.ensure_future(self._execute(entry))

    async def _execute(self, entry: QueueEntry) -> None:
        try:
            if not entry.result.done():
                await self._run(entry)
        finally:
            # Remove ourselves from the queue and start the next command.
            self._queue.popleft()
            self._task = None
            if self._queue:
                self._start(self._queue[0])

    async def _run(self, entry: QueueEntry) -> None:
        command = entry.command
        loop = asyncio.get_running_loop()

        # Handlers go in before the command is written so no response can
        # arrive before there is somewhere to route it.
        for _ in range(command.expected_lines):
            self._demultiplexer.register(
                functools.partial(self._collect, entry), owner=entry)
        timer = loop.call_later(command.timeout, self._expire, entry)

        try:
            logger.debug("Sending: %r", command.text)
            await self._write(command.text + self.terminator)
        except Exception as error:  # pylint: disable=broad-except
            # Passed on to the caller awaiting this command.
            self._demultiplexer.discard(entry)
            if not entry.result.done():
                entry.result.set_exception(error)

        try:
            await asyncio.wait([entry.result])
        finally:
            timer.cancel()
            if not entry.result.done() or entry.result.cancelled():
                self._demultiplexer.discard(entry)

    @staticmethod
    def _collect(entry: QueueEntry, line: str) -> bool:
        """ Response handler for one line of a command's response. """
        if entry.result.done():
            # Timed out, or the caller gave up. Swallow the line.
            return True

        entry.lines.append(line)
        if len(entry.lines) == entry.command.expected_lines:
            entry.result.set_result(RESPONSE_SEPARATOR.join(entry.lines))
        return True

    def _expire(self, entry: QueueEntry) -> None:
        """ Timer callback. """
        if entry.result.done():
            return

        command = entry.command
        logger.warning("Command %r timed out after %ss with %s of %s lines received",
                       command.text, command.timeout,
                       len(entry.lines), command.expected_lines)
        if self.release_on_timeout:
            self._demultiplexer.discard(entry)
        entry.result.set_exception(CommandTimeout(command.text, command.timeout))
