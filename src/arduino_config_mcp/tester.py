"""Live input testing against a connected board.

Two sources feed the tester while it runs:

- a poll loop that asks for a full GET_STATE snapshot every interval and
  turns inactive -> active transitions into trigger counts, and
- INPUT_EVENT frames the board pushes on its own, which are reported as
  triggers but never written into the state table.

The board names inputs by their position in the uploaded configuration,
so a report for ``id: 2`` means "the third configured input". Reordering
inputs without re-uploading breaks that mapping.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from datetime import datetime

from .client import DeviceClient
from .events import EventHook
from .models.project import InputConfig, InputType, ProjectConfig
from .models.state import (
    ConnectionState,
    ConnectionStateChange,
    InputAction,
    InputState,
    InputTriggered,
    StatesUpdated,
    utcnow,
)
from .protocol.commands import (
    DisplayTestPattern,
    build_get_state,
    build_set_display,
    build_test_display,
    build_test_mode,
)
from .protocol.parser import Response, StateEntry, parse_input_event, parse_state_report

logger = logging.getLogger(__name__)

POLLING_INTERVAL = 0.05  # 20 Hz

# What an inactive -> active transition in a state report means per input type
ACTIVATION_ACTIONS: dict[InputType, InputAction] = {
    InputType.LATCHING_BUTTON: InputAction.PRESS,
    InputType.MOMENTARY_BUTTON: InputAction.PRESS,
    InputType.ROTARY_ENCODER: InputAction.ENCODER_PRESS,
    InputType.TOGGLE_SWITCH: InputAction.TOGGLE_ON,
}

ConfigSource = Callable[[], ProjectConfig | None]


class NotConnectedError(ConnectionError):
    """Raised when testing is started without a connected board."""


class InputStateTable:
    """The single owner of live input states.

    Every read hands out copies and every update is one locked
    read-modify-write of a single entry, so callers on any thread always
    see whole states.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, InputState] = {}

    def reset(self, inputs: list[InputConfig], now: datetime) -> None:
        """Start fresh: every input inactive, counts at zero."""
        with self._lock:
            self._states = {
                i.id: InputState(
                    input_id=i.id,
                    name=i.name,
                    encoder_value=i.current_value if i.is_encoder else None,
                    last_changed=now,
                )
                for i in inputs
            }

    def clear(self) -> None:
        with self._lock:
            self._states = {}

    def snapshot(self) -> dict[str, InputState]:
        with self._lock:
            return {k: v.copy() for k, v in self._states.items()}

    def get(self, input_id: str) -> InputState | None:
        with self._lock:
            state = self._states.get(input_id)
            return state.copy() if state is not None else None

    def apply_report(self, input_id: str, entry: StateEntry, now: datetime) -> bool:
        """Fold one GET_STATE entry into an input's state.

        Returns:
            True if the input went from inactive to active.
        """
        with self._lock:
            state = self._states.get(input_id)
            if state is None:
                return False

            was_active = state.is_active
            state.is_active = entry.is_active
            if entry.value is not None:
                state.encoder_value = entry.value
            if entry.is_active != was_active:
                state.last_changed = now
                if entry.is_active:
                    state.trigger_count += 1
                    return True
            return False

    def apply_action(
        self, input_id: str, action: InputAction, is_encoder: bool, now: datetime
    ) -> InputState | None:
        """Record a simulated action. Returns the updated copy."""
        with self._lock:
            state = self._states.get(input_id)
            if state is None:
                return None

            state.is_active = action in (InputAction.PRESS, InputAction.TOGGLE_ON)
            state.last_changed = now
            state.trigger_count += 1
            if is_encoder and state.encoder_value is not None:
                if action is InputAction.ROTATE_CW:
                    state.encoder_value += 1
                elif action is InputAction.ROTATE_CCW:
                    state.encoder_value -= 1
            return state.copy()


class InputTester:
    """Polls the board's inputs and reports what they do.

    Hooks:
        states_updated: :class:`StatesUpdated` after each applied report.
        input_triggered: :class:`InputTriggered` for state transitions,
            pushed INPUT_EVENT frames and simulated triggers.
    """

    def __init__(
        self,
        client: DeviceClient,
        config_source: ConfigSource,
        polling_interval: float = POLLING_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {polling_interval}")
        self._client = client
        self._config_source = config_source
        self.polling_interval = polling_interval
        self._clock = clock

        self._table = InputStateTable()
        self._active = False
        self._stop: asyncio.Event | None = None
        self._poll_task: asyncio.Task[None] | None = None

        self.states_updated: EventHook[StatesUpdated] = EventHook("states_updated")
        self.input_triggered: EventHook[InputTriggered] = EventHook("input_triggered")

        self._frames_subscription = client.frames.subscribe(self._on_frame)
        self._state_subscription = client.state_changed.subscribe(self._on_state_changed)

    @property
    def is_active(self) -> bool:
        return self._active

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Put the board in test mode and start polling.

        Raises:
            NotConnectedError: If the client is not connected.
        """
        if self._active:
            return
        if self._client.state is not ConnectionState.CONNECTED:
            raise NotConnectedError("Board not connected")
        await self._join_poller()

        response = await self._client.send_command(build_test_mode(True))
        if not response.success:
            logger.warning("Could not enable test mode: %s", response.error)

        config = self._config_source()
        self._table.reset(config.inputs if config else [], self._clock())

        self._stop = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll_loop(self._stop), name="input-poller")
        self._active = True
        logger.info("Input testing started (every %.0f ms)", self.polling_interval * 1000)

    async def stop(self) -> None:
        """Stop polling and take the board out of test mode."""
        if not self._active:
            await self._join_poller()
            return

        self._halt()
        await self._join_poller()

        response = await self._client.send_command(build_test_mode(False))
        if not response.success:
            logger.warning("Could not disable test mode: %s", response.error)
        logger.info("Input testing stopped")

    def close(self) -> None:
        """Detach from the client's hooks."""
        self._frames_subscription.unsubscribe()
        self._state_subscription.unsubscribe()

    def _halt(self) -> None:
        """Signal the poll loop to end and drop the live states."""
        if self._stop is not None:
            self._stop.set()
        self._active = False
        self._table.clear()

    async def _join_poller(self) -> None:
        task = self._poll_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            self._poll_task = None
            self._stop = None

    def _on_state_changed(self, change: ConnectionStateChange) -> None:
        # A reset or lost board has left test mode; polling it would only fail
        if self._active and change.new_state is not ConnectionState.CONNECTED:
            logger.warning("Connection %s; input testing stopped", change.new_state.value)
            self._halt()

    # ─── STATE ACCESS ────────────────────────────────────────────────

    def get_states(self) -> dict[str, InputState]:
        return self._table.snapshot()

    def get_state(self, input_id: str) -> InputState | None:
        return self._table.get(input_id)

    def simulate_trigger(self, input_id: str, action: InputAction) -> None:
        """Pretend an input fired, for trying things out without hardware."""
        config = self._config_source()
        input_config = config.find_input(input_id) if config else None
        if input_config is None:
            return

        now = self._clock()
        state = self._table.apply_action(input_id, action, input_config.is_encoder, now)
        self.input_triggered.emit(
            InputTriggered(
                input_id=input_id,
                input_name=input_config.name,
                action=action,
                value=state.encoder_value if state else None,
                timestamp=now,
            )
        )
        self._publish_states(now)

    # ─── DISPLAYS ────────────────────────────────────────────────────

    async def test_display(self, display_id: str, pattern: DisplayTestPattern) -> Response:
        index = self._display_index(display_id)
        if index is None:
            return Response(False, error=f"Unknown display {display_id}")
        return await self._client.send_command(build_test_display(index, pattern))

    async def set_display_value(self, display_id: str, value: int) -> Response:
        config = self._config_source()
        index = self._display_index(display_id)
        if config is None or index is None:
            return Response(False, error=f"Unknown display {display_id}")
        brightness = config.displays[index].brightness
        return await self._client.send_command(build_set_display(index, value, brightness))

    def _display_index(self, display_id: str) -> int | None:
        config = self._config_source()
        return config.display_index(display_id) if config else None

    # ─── POLLING ─────────────────────────────────────────────────────

    async def _poll_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                response = await self._client.send_command(
                    build_get_state(timeout=self.polling_interval * 2), cancel=stop
                )
                if response.success and not stop.is_set():
                    self._apply_report(response.payload)
                elif not stop.is_set():
                    logger.debug("State poll failed: %s", response.error)
            except Exception:
                logger.exception("State poll failed")

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.polling_interval)
            except asyncio.TimeoutError:
                pass

    def _apply_report(self, payload: dict) -> None:
        config = self._config_source()
        if config is None:
            return

        now = self._clock()
        triggered: list[InputTriggered] = []
        for entry in parse_state_report(payload):
            input_config = config.input_at(entry.index)
            if input_config is None:
                continue
            if self._table.apply_report(input_config.id, entry, now):
                triggered.append(
                    InputTriggered(
                        input_id=input_config.id,
                        input_name=input_config.name,
                        action=ACTIVATION_ACTIONS[input_config.input_type],
                        value=entry.value,
                        timestamp=now,
                    )
                )

        for event in triggered:
            self.input_triggered.emit(event)
        self._publish_states(now)

    def _publish_states(self, now: datetime) -> None:
        self.states_updated.emit(StatesUpdated(states=self._table.snapshot(), timestamp=now))

    # ─── PUSHED EVENTS ───────────────────────────────────────────────

    def _on_frame(self, frame: str) -> None:
        if not self._active:
            return

        event = parse_input_event(frame)
        if event is None:
            return

        config = self._config_source()
        input_config = config.input_at(event.index) if config else None
        if input_config is None:
            logger.debug("INPUT_EVENT for unknown input index %d", event.index)
            return

        self.input_triggered.emit(
            InputTriggered(
                input_id=input_config.id,
                input_name=input_config.name,
                action=event.action,
                value=event.value,
                timestamp=self._clock(),
            )
        )
