"""Host UI message relay for embedded app frames."""

from fabengine.relay.messages import (
    GetMachine,
    InvalidRelayMessage,
    RelayMessage,
    ShowDRO,
    SubmitJob,
    parse_message,
)
from fabengine.relay.relay import DashboardHost, MessageRelay, MessageSource

__all__ = [
    "DashboardHost",
    "GetMachine",
    "InvalidRelayMessage",
    "MessageRelay",
    "MessageSource",
    "RelayMessage",
    "ShowDRO",
    "SubmitJob",
    "parse_message",
]
