"""Relay between the host UI and embedded app frames.

Apps run sandboxed in frames and talk to the host UI by posting
messages. The relay validates each message and carries out its single
command against the host UI and the active machine.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from fabengine.relay.messages import (
    GetMachine,
    InvalidRelayMessage,
    RelayMessage,
    ShowDRO,
    SubmitJob,
    parse_message,
)

if TYPE_CHECKING:
    from fabengine.engine.services import MachineHandle

logger = logging.getLogger(__name__)

JOB_MANAGER_APP = "job-manager"


class MessageSource(Protocol):
    """The frame a message came from. Replies go back to it only."""

    def post_message(self, message: dict[str, Any]) -> None:
        ...


class DashboardHost(Protocol):
    """The host UI the relay acts on."""

    machine: "MachineHandle | None"

    def open_right_menu(self) -> None:
        ...

    def close_right_menu(self) -> None:
        ...

    def launch_app(self, app_id: str) -> None:
        ...


class MessageRelay:
    """Handles messages from app frames one at a time."""

    def __init__(self, host: DashboardHost):
        self.host = host

    async def handle(self, data: Any, source: MessageSource) -> RelayMessage | None:
        """Validate and dispatch one raw frame message.

        Invalid messages are ignored. Errors raised while carrying out a
        valid command propagate to the caller.

        Returns:
            The dispatched command, or None if the message was ignored
        """
        try:
            message = parse_message(data)
        except InvalidRelayMessage as e:
            logger.debug(f"Ignoring frame message: {e}")
            return None

        await self.dispatch(message, source)
        return message

    async def dispatch(self, message: RelayMessage, source: MessageSource) -> None:
        if isinstance(message, ShowDRO):
            self._show_dro(message.show)
        elif isinstance(message, SubmitJob):
            await self._submit_job(message.job)
        elif isinstance(message, GetMachine):
            self._reply_machine(source)
        else:
            raise TypeError(f"Unhandled relay message {message!r}")

    def _show_dro(self, show: bool) -> None:
        if self.host.machine is None:
            logger.debug("No active machine, ignoring DRO request")
            return
        if show:
            self.host.open_right_menu()
        else:
            self.host.close_right_menu()

    async def _submit_job(self, job: dict[str, Any]) -> None:
        machine = self.host.machine
        if machine is None:
            logger.error("Cannot submit job: no active machine")
            return
        try:
            await machine.add_job(job)
        except Exception as e:
            logger.error(f"Job submission failed: {e}")
            return
        self.host.launch_app(JOB_MANAGER_APP)

    def _reply_machine(self, source: MessageSource) -> None:
        machine = self.host.machine
        if machine is None:
            logger.warning("Machine requested but none is active")
            return
        logger.debug(f"Responding with machine {machine.ip}:{machine.port}")
        source.post_message({"ip": machine.ip, "port": machine.port})
