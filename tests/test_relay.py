"""Tests for the app frame message relay."""

import pytest

from fabengine.relay import (
    GetMachine,
    InvalidRelayMessage,
    MessageRelay,
    ShowDRO,
    SubmitJob,
    parse_message,
)

from tests.fakes import FakeMachine


class FakeSource:
    def __init__(self):
        self.posted = []

    def post_message(self, message):
        self.posted.append(message)


class FakeHost:
    def __init__(self, machine=None):
        self.machine = machine
        self.events = []

    def open_right_menu(self):
        self.events.append("open")

    def close_right_menu(self):
        self.events.append("close")

    def launch_app(self, app_id):
        self.events.append(("launch", app_id))


class TestParseMessage:
    """Tests for frame payload validation."""

    def test_show_dro(self):
        assert parse_message({"showDRO": True}) == ShowDRO(show=True)

    def test_job(self):
        msg = parse_message({"job": {"file": "part.sbp"}})
        assert isinstance(msg, SubmitJob)
        assert msg.job == {"file": "part.sbp"}

    def test_get_machine(self):
        assert isinstance(parse_message({"getMachine": True}), GetMachine)

    def test_rejects_non_object(self):
        with pytest.raises(InvalidRelayMessage):
            parse_message(["showDRO"])

    def test_rejects_empty(self):
        with pytest.raises(InvalidRelayMessage):
            parse_message({})

    def test_rejects_several_commands(self):
        with pytest.raises(InvalidRelayMessage):
            parse_message({"showDRO": True, "getMachine": True})

    def test_rejects_unknown_extra_field(self):
        with pytest.raises(InvalidRelayMessage):
            parse_message({"showDRO": True, "color": "red"})

    def test_rejects_wrong_value_type(self):
        with pytest.raises(InvalidRelayMessage):
            parse_message({"job": "not-an-object"})

    @pytest.mark.parametrize("value", ["yes", "true", 1, "on", None])
    def test_rejects_non_bool_show_dro(self, value):
        """Only a real boolean toggles the DRO panel."""
        with pytest.raises(InvalidRelayMessage):
            parse_message({"showDRO": value})

    @pytest.mark.parametrize("value", [1, "true", False])
    def test_rejects_non_true_get_machine(self, value):
        with pytest.raises(InvalidRelayMessage):
            parse_message({"getMachine": value})

    @pytest.mark.asyncio
    async def test_ill_typed_show_dro_not_dispatched(self):
        host = FakeHost(FakeMachine())
        result = await MessageRelay(host).handle({"showDRO": "yes"}, FakeSource())
        assert result is None
        assert host.events == []


class TestMessageRelay:
    """Tests for command dispatch."""

    @pytest.mark.asyncio
    async def test_show_dro_opens_and_closes(self):
        host = FakeHost(FakeMachine())
        relay = MessageRelay(host)

        await relay.handle({"showDRO": True}, FakeSource())
        await relay.handle({"showDRO": False}, FakeSource())

        assert host.events == ["open", "close"]

    @pytest.mark.asyncio
    async def test_show_dro_without_machine_is_noop(self):
        host = FakeHost()
        await MessageRelay(host).handle({"showDRO": True}, FakeSource())
        assert host.events == []

    @pytest.mark.asyncio
    async def test_job_success_launches_job_manager(self):
        machine = FakeMachine()
        host = FakeHost(machine)

        await MessageRelay(host).handle({"job": {"file": "a.sbp"}}, FakeSource())

        assert machine.jobs == [{"file": "a.sbp"}]
        assert host.events == [("launch", "job-manager")]

    @pytest.mark.asyncio
    async def test_job_failure_does_not_launch(self):
        machine = FakeMachine(job_error=RuntimeError("queue full"))
        host = FakeHost(machine)

        result = await MessageRelay(host).handle({"job": {"file": "a.sbp"}}, FakeSource())

        assert isinstance(result, SubmitJob)
        assert host.events == []

    @pytest.mark.asyncio
    async def test_get_machine_replies_to_source_only(self):
        host = FakeHost(FakeMachine(ip="10.0.0.7", port=8080))
        source = FakeSource()
        bystander = FakeSource()

        await MessageRelay(host).handle({"getMachine": True}, source)

        assert source.posted == [{"ip": "10.0.0.7", "port": 8080}]
        assert bystander.posted == []

    @pytest.mark.asyncio
    async def test_get_machine_reply_has_no_other_fields(self):
        source = FakeSource()
        await MessageRelay(FakeHost(FakeMachine())).handle({"getMachine": True}, source)
        assert set(source.posted[0]) == {"ip", "port"}

    @pytest.mark.asyncio
    async def test_get_machine_without_machine_posts_nothing(self):
        source = FakeSource()
        await MessageRelay(FakeHost()).handle({"getMachine": True}, source)
        assert source.posted == []

    @pytest.mark.asyncio
    async def test_invalid_message_ignored(self):
        host = FakeHost(FakeMachine())
        source = FakeSource()

        result = await MessageRelay(host).handle(
            {"showDRO": True, "getMachine": True}, source
        )

        assert result is None
        assert host.events == []
        assert source.posted == []
