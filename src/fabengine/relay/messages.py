"""Messages exchanged between app frames and the host UI.

A frame message carries exactly one command. parse_message validates the
raw payload and returns one of the command models; payloads with no
command, several commands, or unknown fields are rejected before
dispatch.
"""

from __future__ import annotations

from typing import Any, Dict, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    field_validator,
)


class InvalidRelayMessage(ValueError):
    """Raised for payloads that are not exactly one known command."""


class _Command(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True, extra="forbid", frozen=True, strict=True
    )


class ShowDRO(_Command):
    """Open (true) or close (false) the right-hand DRO panel."""

    show: StrictBool = Field(alias="showDRO")


class SubmitJob(_Command):
    """Submit a job to the active machine."""

    job: Dict[str, Any]


class GetMachine(_Command):
    """Ask for the address of the active machine."""

    get_machine: StrictBool = Field(alias="getMachine")

    @field_validator("get_machine")
    @classmethod
    def _only_true(cls, value: bool) -> bool:
        if value is not True:
            raise ValueError("getMachine must be true")
        return value


RelayMessage = Union[ShowDRO, SubmitJob, GetMachine]

_COMMANDS: dict[str, type[_Command]] = {
    "showDRO": ShowDRO,
    "job": SubmitJob,
    "getMachine": GetMachine,
}


def parse_message(data: Any) -> RelayMessage:
    """Validate a raw frame payload into a single command.

    Raises:
        InvalidRelayMessage: If the payload is not a mapping holding
            exactly one known command with a valid value
    """
    if not isinstance(data, dict):
        raise InvalidRelayMessage(f"Expected an object, got {type(data).__name__}")

    tags = [key for key in data if key in _COMMANDS]
    if len(tags) != 1:
        raise InvalidRelayMessage(
            f"Expected exactly one of {sorted(_COMMANDS)}, got {sorted(data)}"
        )

    try:
        return _COMMANDS[tags[0]].model_validate(data)
    except ValidationError as e:
        raise InvalidRelayMessage(str(e)) from e
