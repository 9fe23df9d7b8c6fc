"""Async client for the board's line-delimited JSON protocol.

A background reader task pulls bytes off the serial port, frames them and
hands every frame to the :class:`EventDispatcher`. Commands go out one at
a time through a single gate; each waits for the next reply-shaped frame,
a timeout, or a caller's cancellation event, whichever comes first.

Usage::

    client = DeviceClient()
    if await client.connect("/dev/ttyACM0"):
        version = await client.get_firmware_version()
        response = await client.send_command(build_get_state())
        await client.disconnect()

The client belongs to one event loop and is not thread safe. Hook
subscription is the exception and may happen from any thread.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .events import EventHook
from .models.state import ConnectionState, ConnectionStateChange, DeviceError
from .protocol.commands import (
    PING_TIMEOUT,
    Command,
    build_ping,
    build_version,
    encode_command,
)
from .protocol.dispatcher import EventDispatcher
from .protocol.framing import MAX_FRAME_BYTES, LineFramer
from .protocol.parser import Response, parse_response, reply_matches
from .transport.serial_connection import (
    DEFAULT_BAUD_RATE,
    READ_CHUNK_SIZE,
    SerialConnection,
    TransportError,
)

logger = logging.getLogger(__name__)

SETTLE_DELAY = 2.0  # board reboots when DTR is asserted
MAX_READ_FAILURES = 3
READER_STOP_GRACE = 1.0

HANDSHAKE_FAILED = "Failed to communicate with the board. Ensure firmware is uploaded."


class _Outcome(Enum):
    DONE = "done"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class DeviceClient:
    """Owns the serial link, the reader task and the command gate.

    Hooks:
        state_changed: :class:`ConnectionStateChange` on every transition.
        errors: :class:`DeviceError` for user-facing faults.
        frames: raw text of every frame that was not a command reply.
    """

    def __init__(
        self,
        transport: SerialConnection | None = None,
        settle_delay: float = SETTLE_DELAY,
        handshake_timeout: float = PING_TIMEOUT,
    ) -> None:
        self._transport = transport if transport is not None else SerialConnection()
        self._settle_delay = settle_delay
        self._handshake_timeout = handshake_timeout

        self._dispatcher = EventDispatcher()
        self._gate = asyncio.Lock()
        self._in_flight = 0

        self._state = ConnectionState.DISCONNECTED
        self._port: str | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stop_reading: asyncio.Event | None = None

        self.state_changed: EventHook[ConnectionStateChange] = EventHook("state_changed")
        self.errors: EventHook[DeviceError] = EventHook("errors")

    # ─── PROPERTIES ──────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def port(self) -> str | None:
        return self._port

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def frames(self) -> EventHook[str]:
        return self._dispatcher.frames

    @property
    def commands_in_flight(self) -> int:
        """Commands currently holding the gate (never more than one)."""
        return self._in_flight

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    async def connect(self, port: str, baud_rate: int = DEFAULT_BAUD_RATE) -> bool:
        """Open ``port`` and verify a board running the firmware answers.

        Returns:
            True once the PING handshake succeeded. False on any failure;
            the reason is published on :attr:`errors`.
        """
        if self._state is not ConnectionState.DISCONNECTED or self._transport.is_open:
            await self.disconnect()

        self._port = port
        self._set_state(ConnectionState.CONNECTING)
        loop = asyncio.get_running_loop()

        try:
            await loop.run_in_executor(None, self._transport.open, port, baud_rate)
        except TransportError as e:
            self._set_state(ConnectionState.ERROR)
            self._report_error(f"Failed to connect: {e}", e)
            return False

        try:
            await asyncio.sleep(self._settle_delay)
            await loop.run_in_executor(None, self._transport.discard_buffers)
            self._start_reader()
            alive = await self.ping(timeout=self._handshake_timeout)
        except asyncio.CancelledError:
            await self._teardown()
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as e:
            logger.exception("Unexpected failure while connecting to %s", port)
            await self._teardown()
            self._set_state(ConnectionState.ERROR)
            self._report_error(f"Failed to connect: {e}", e)
            return False

        if not alive:
            await self._teardown()
            self._set_state(ConnectionState.ERROR)
            self._report_error(HANDSHAKE_FAILED)
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        self._set_state(ConnectionState.CONNECTED)
        logger.info("Board on %s answered the handshake", port)
        return True

    async def disconnect(self) -> None:
        """Stop the reader, close the port, go Disconnected. Idempotent."""
        if (
            self._state is ConnectionState.DISCONNECTED
            and self._reader_task is None
            and not self._transport.is_open
        ):
            return

        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)

    async def _teardown(self) -> None:
        await self._stop_reader()
        self._transport.close()

    # ─── COMMANDS ────────────────────────────────────────────────────

    async def send_command(
        self,
        command: Command,
        cancel: asyncio.Event | None = None,
    ) -> Response:
        """Send one command and wait for its reply.

        ``command.timeout`` bounds the whole call, gate wait included.
        Setting ``cancel`` abandons the command. Never raises for command
        level failures; those come back as a failed :class:`Response`.
        """
        if not self._transport.is_open:
            return Response.not_connected()
        if cancel is not None and cancel.is_set():
            return Response.cancelled()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + command.timeout

        outcome = await self._acquire_gate(cancel, command.timeout)
        if outcome is _Outcome.CANCELLED:
            return Response.cancelled()
        if outcome is _Outcome.TIMEOUT:
            logger.warning("%s timed out waiting for the serial line", command.type.value)
            return Response.timeout()

        self._in_flight += 1
        waiter = self._dispatcher.expect_reply()
        write = self._start_write(encode_command(command))
        try:
            outcome = await self._first_of(write, cancel, max(0.0, deadline - loop.time()))
            if outcome is _Outcome.DONE:
                try:
                    write.result()
                except TransportError as e:
                    self._lose_transport(f"Write error: {e}", e)
                    return Response.transport_error(str(e))
                logger.debug("Sent %r", command)
                outcome = await self._first_of(waiter, cancel, max(0.0, deadline - loop.time()))

            if outcome is _Outcome.DONE:
                response = parse_response(waiter.result())
                if not reply_matches(command.type.value, response):
                    logger.warning(
                        "%s answered by a %s reply; it may belong to an earlier command",
                        command.type.value,
                        response.payload.get("response"),
                    )
                return response
            if outcome is _Outcome.CANCELLED:
                return Response.cancelled()
            logger.warning("%s timed out after %.2fs", command.type.value, command.timeout)
            return Response.timeout()
        finally:
            self._dispatcher.release_reply(waiter)
            self._release_gate_after(write)

    async def send_raw(self, data: bytes, cancel: asyncio.Event | None = None) -> Response:
        """Write bytes without waiting for a reply, through the command gate."""
        if not self._transport.is_open:
            return Response.not_connected()

        outcome = await self._acquire_gate(cancel, None)
        if outcome is _Outcome.CANCELLED:
            return Response.cancelled()

        self._in_flight += 1
        write = self._start_write(data)
        try:
            if await self._first_of(write, cancel, None) is _Outcome.CANCELLED:
                return Response.cancelled()
            write.result()
        except TransportError as e:
            self._lose_transport(f"Write error: {e}", e)
            return Response.transport_error(str(e))
        finally:
            self._release_gate_after(write)
        return Response.sent()

    async def ping(self, timeout: float = PING_TIMEOUT) -> bool:
        """Check the board answers PING."""
        response = await self.send_command(build_ping(timeout))
        return response.success

    async def get_firmware_version(self) -> str | None:
        response = await self.send_command(build_version())
        return response.data if response.success else None

    def _start_write(self, data: bytes) -> asyncio.Future:
        """Write in the executor; bounded by the transport's write timeout."""
        return asyncio.get_running_loop().run_in_executor(None, self._transport.write, data)

    def _release_gate_after(self, write: asyncio.Future) -> None:
        """Give the gate back once ``write`` has finished.

        A caller that stops waiting mid-write returns at once, but the gate
        stays held until the bytes are out, so frames never interleave.
        """

        def release(fut: asyncio.Future) -> None:
            self._in_flight -= 1
            self._gate.release()

        def release_abandoned(fut: asyncio.Future) -> None:
            release(fut)
            exc = None if fut.cancelled() else fut.exception()
            if exc is None:
                return
            if isinstance(exc, TransportError) and self._transport.is_open:
                self._lose_transport(f"Write error: {exc}", exc)
            else:
                logger.warning("Abandoned write failed: %s", exc)

        if write.done():
            release(write)
        else:
            logger.debug("Write still in progress; the serial line stays held until it ends")
            write.add_done_callback(release_abandoned)

    # ─── GATE AND RACES ──────────────────────────────────────────────

    async def _acquire_gate(
        self,
        cancel: asyncio.Event | None,
        timeout: float | None,
    ) -> _Outcome:
        """Take the gate unless ``cancel`` fires or ``timeout`` passes first.

        The gate is never left held by an abandoned acquire.
        """
        acquire = asyncio.ensure_future(self._gate.acquire())
        try:
            outcome = await self._first_of(acquire, cancel, timeout)
        except BaseException:
            self._abandon_acquire(acquire)
            raise
        if outcome is not _Outcome.DONE:
            self._abandon_acquire(acquire)
        return outcome

    def _abandon_acquire(self, acquire: asyncio.Future) -> None:
        def release_if_acquired(fut: asyncio.Future) -> None:
            if not fut.cancelled() and fut.exception() is None:
                self._gate.release()

        acquire.add_done_callback(release_if_acquired)
        acquire.cancel()

    @staticmethod
    async def _first_of(
        target: asyncio.Future,
        cancel: asyncio.Event | None,
        timeout: float | None,
    ) -> _Outcome:
        """Wait for ``target``, a set ``cancel`` or the timeout; report which.

        If ``target`` and ``cancel`` finish together, ``target`` wins.
        """
        waits: set[asyncio.Future] = {target}
        cancelled: asyncio.Future | None = None
        if cancel is not None:
            cancelled = asyncio.ensure_future(cancel.wait())
            waits.add(cancelled)
        try:
            done, _ = await asyncio.wait(
                waits, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if cancelled is not None:
                cancelled.cancel()

        if target in done:
            return _Outcome.DONE
        if cancelled is not None and cancelled in done:
            return _Outcome.CANCELLED
        return _Outcome.TIMEOUT

    # ─── READER ──────────────────────────────────────────────────────

    def _start_reader(self) -> None:
        self._stop_reading = asyncio.Event()
        self._reader_task = asyncio.create_task(
            self._read_loop(self._stop_reading), name="serial-reader"
        )

    async def _stop_reader(self) -> None:
        task = self._reader_task
        if task is None:
            return
        if self._stop_reading is not None:
            self._stop_reading.set()
        try:
            # The reader notices the flag after its current read returns
            await asyncio.wait_for(
                asyncio.shield(task),
                timeout=self._transport.read_timeout + READER_STOP_GRACE,
            )
        except asyncio.TimeoutError:
            logger.warning("Serial reader did not stop in time; cancelling it")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        except Exception:
            logger.exception("Serial reader failed")
        finally:
            self._reader_task = None
            self._stop_reading = None

    async def _read_loop(self, stop: asyncio.Event) -> None:
        """Read, frame and dispatch until ``stop`` is set or the port dies."""
        loop = asyncio.get_running_loop()
        transport = self._transport
        framer = LineFramer()
        failures = 0

        while not stop.is_set():
            try:
                chunk = await loop.run_in_executor(None, transport.read_available, READ_CHUNK_SIZE)
            except Exception as e:
                # Closing the port under a blocked read can surface as anything
                if stop.is_set() or not transport.is_open:
                    break
                failures += 1
                if failures >= MAX_READ_FAILURES:
                    self._lose_transport(f"Serial connection lost: {e}", e)
                    break
                self._report_error(f"Read error: {e}", e)
                await asyncio.sleep(transport.read_timeout)
                continue

            failures = 0
            if not chunk or stop.is_set():
                continue

            for frame in framer.feed(chunk):
                if len(frame) > MAX_FRAME_BYTES:
                    logger.warning("Dropping oversized frame (%d chars)", len(frame))
                    continue
                self._dispatcher.dispatch(frame)

            if framer.pending > MAX_FRAME_BYTES:
                logger.warning("Discarding %d bytes without a line break", framer.pending)
                framer.reset()

        logger.debug("Serial reader stopped")

    # ─── NOTIFICATIONS ───────────────────────────────────────────────

    def _lose_transport(self, message: str, exc: BaseException) -> None:
        """A transport fault ends the connection until the caller reconnects."""
        if self._stop_reading is not None:
            self._stop_reading.set()
        self._transport.close()
        self._set_state(ConnectionState.ERROR)
        self._report_error(message, exc)

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.info("Connection %s -> %s", old_state.value, new_state.value)
        self.state_changed.emit(ConnectionStateChange(old_state, new_state, self._port))
        if new_state is ConnectionState.DISCONNECTED:
            self._port = None

    def _report_error(self, message: str, exc: BaseException | None = None) -> None:
        logger.error("%s", message)
        self.errors.emit(DeviceError(message, exc))
