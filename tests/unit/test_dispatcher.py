"""Tests for outbound message dispatch."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models import AuditEventType
from src.session.dispatcher import MessageDispatcher
from src.session.errors import (
    InvalidRequestError,
    MediaFetchError,
    NotReadyError,
    TransportError,
    UnregisteredDestinationError,
)
from src.session.machine import SessionStateMachine
from src.session.client import MessageKey, SentMessage
from src.session.media import MessageMedia
from src.session.state import SessionPhase
from tests.conftest import SENT_ID, FakeClientFactory, FakeProtocolClient, make_ready, settle

MEDIA = MessageMedia(mimetype="image/png", data="iVBORw0KGgo=", filename="file", filesize=8)


def _make_dispatcher(machine: SessionStateMachine, **kwargs: object) -> MessageDispatcher:
    loader = MagicMock()
    loader.from_url = AsyncMock(return_value=MEDIA)
    defaults: dict[str, object] = {"media_loader": loader}
    defaults.update(kwargs)
    return MessageDispatcher(machine, **defaults)  # type: ignore[arg-type]


class TestNotReady:
    @pytest.mark.asyncio
    async def test_uninitialized_rejected(self, machine: SessionStateMachine) -> None:
        dispatcher = _make_dispatcher(machine)
        with pytest.raises(NotReadyError):
            await dispatcher.send_text("0812", "hi")
        with pytest.raises(NotReadyError):
            await dispatcher.send_media("0812", "http://x/img.png")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("events", [
        [],
        [("qr", "qr-data")],
        [("qr", "qr-data"), ("authenticated",)],
        [("auth_failure", "bad session")],
        [("ready",), ("disconnected", "LOGOUT")],
    ])
    async def test_every_non_ready_state_rejected(
        self,
        machine: SessionStateMachine,
        client_factory: FakeClientFactory,
        events: list[tuple[str, ...]],
    ) -> None:
        await machine.start()
        for event in events:
            client_factory.latest.emit(*event)
        await settle(machine)
        assert not machine.state.is_ready

        dispatcher = _make_dispatcher(machine)
        with pytest.raises(NotReadyError):
            await dispatcher.send_text("0812", "hi")
        with pytest.raises(NotReadyError):
            await dispatcher.send_media("0812", "http://x/img.png")

    @pytest.mark.asyncio
    async def test_not_ready_checked_before_fields(self, machine: SessionStateMachine) -> None:
        dispatcher = _make_dispatcher(machine)
        with pytest.raises(NotReadyError):
            await dispatcher.send_text(None, None)


class TestSendText:
    @pytest.mark.asyncio
    async def test_sends_to_normalized_destination(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        dispatcher = _make_dispatcher(machine)

        result = await dispatcher.send_text("0812-3456-7890", "hello")

        client.is_registered_user.assert_awaited_once_with("6281234567890@c.us")
        client.send_message.assert_awaited_once_with("6281234567890@c.us", "hello")
        assert result.phone == "6281234567890"
        assert result.message_id == SENT_ID
        assert result.to_data() == {"phone": "6281234567890", "messageId": SENT_ID}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("phone,body", [("", "hi"), ("0812", ""), (None, "hi"), ("0812", None)])
    async def test_missing_fields_rejected(
        self,
        machine: SessionStateMachine,
        client_factory: FakeClientFactory,
        phone: str | None,
        body: str | None,
    ) -> None:
        await make_ready(machine, client_factory)
        dispatcher = _make_dispatcher(machine)

        with pytest.raises(InvalidRequestError, match="Phone and message are required"):
            await dispatcher.send_text(phone, body)

    @pytest.mark.asyncio
    async def test_unregistered_destination_rejected(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        client.is_registered_user.return_value = False
        dispatcher = _make_dispatcher(machine)

        with pytest.raises(UnregisteredDestinationError) as exc_info:
            await dispatcher.send_text("081111", "hi")

        assert exc_info.value.chat_id == "6281111@c.us"
        assert exc_info.value.status_code == 400
        client.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        client.send_message.side_effect = RuntimeError("Evaluation failed: chat not found")
        dispatcher = _make_dispatcher(machine)

        with pytest.raises(TransportError) as exc_info:
            await dispatcher.send_text("0812", "hi")

        assert exc_info.value.message == "Evaluation failed: chat not found"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_registration_check_error_wrapped(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        client.is_registered_user.side_effect = RuntimeError("page closed")
        dispatcher = _make_dispatcher(machine)

        with pytest.raises(TransportError, match="page closed"):
            await dispatcher.send_text("0812", "hi")

    @pytest.mark.asyncio
    async def test_sent_message_audited(
        self,
        machine: SessionStateMachine,
        client_factory: FakeClientFactory,
        mock_audit_logger: MagicMock,
    ) -> None:
        await make_ready(machine, client_factory)
        dispatcher = _make_dispatcher(machine, audit_logger=mock_audit_logger)

        await dispatcher.send_text("0812", "hi")

        event = mock_audit_logger.log.call_args[0][0]
        assert event.event_type == AuditEventType.MESSAGE_SENT
        assert event.details["message_id"] == SENT_ID


class TestSendMedia:
    @pytest.mark.asyncio
    async def test_sends_media_with_caption(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        dispatcher = _make_dispatcher(machine)

        result = await dispatcher.send_media(
            "081234567890", "https://cdn.example/a.png", caption="look", filename="a.png",
        )

        dispatcher._media_loader.from_url.assert_awaited_once_with(  # type: ignore[attr-defined]
            "https://cdn.example/a.png", filename="a.png",
        )
        client.send_message.assert_awaited_once_with(
            "6281234567890@c.us", MEDIA, {"caption": "look"},
        )
        assert result.message_id == SENT_ID

    @pytest.mark.asyncio
    async def test_defaults_for_optional_fields(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        dispatcher = _make_dispatcher(machine)

        await dispatcher.send_media("0812", "https://cdn.example/doc")

        dispatcher._media_loader.from_url.assert_awaited_once_with(  # type: ignore[attr-defined]
            "https://cdn.example/doc", filename="file",
        )
        assert client.send_message.call_args[0][2] == {"caption": ""}

    @pytest.mark.asyncio
    async def test_no_registration_check(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        client.is_registered_user.return_value = False
        dispatcher = _make_dispatcher(machine)

        await dispatcher.send_media("0812", "https://cdn.example/a.png")

        client.is_registered_user.assert_not_awaited()
        client.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_media_url_rejected(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        await make_ready(machine, client_factory)
        dispatcher = _make_dispatcher(machine)

        with pytest.raises(InvalidRequestError, match="Phone and mediaUrl are required"):
            await dispatcher.send_media("0812", "")

    @pytest.mark.asyncio
    async def test_media_fetch_error_propagates(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        loader = MagicMock()
        loader.from_url = AsyncMock(side_effect=MediaFetchError("HTTP 404"))
        dispatcher = _make_dispatcher(machine, media_loader=loader)

        with pytest.raises(MediaFetchError):
            await dispatcher.send_media("0812", "https://cdn.example/missing.png")
        client.send_message.assert_not_awaited()


def _block_send(client: FakeProtocolClient, release: asyncio.Event) -> None:
    async def blocked(*args: object) -> SentMessage:
        await release.wait()
        return SentMessage(id=MessageKey(SENT_ID))

    client.send_message.side_effect = blocked


async def _until_sending(client: FakeProtocolClient) -> None:
    while client.send_message.await_count == 0:
        await asyncio.sleep(0)


class TestInFlightSends:
    @pytest.mark.asyncio
    async def test_logout_does_not_abort_pending_send(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        release = asyncio.Event()
        _block_send(client, release)
        dispatcher = _make_dispatcher(machine)

        task = asyncio.create_task(dispatcher.send_text("0812", "hi"))
        await _until_sending(client)
        await machine.logout()
        release.set()
        result = await task

        assert result.message_id == SENT_ID
        assert machine.state.phase == SessionPhase.UNINITIALIZED
        assert machine.client is None

    @pytest.mark.asyncio
    async def test_restart_does_not_abort_pending_send(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        release = asyncio.Event()
        _block_send(client, release)
        dispatcher = _make_dispatcher(machine)

        task = asyncio.create_task(dispatcher.send_text("0812", "hi"))
        await _until_sending(client)
        await machine.restart()
        await settle(machine)
        release.set()
        result = await task

        assert result.message_id == SENT_ID
        assert len(client_factory.clients) == 2
        assert machine.client is client_factory.latest

    @pytest.mark.asyncio
    async def test_restart_does_not_abort_pending_media_send(
        self, machine: SessionStateMachine, client_factory: FakeClientFactory,
    ) -> None:
        client = await make_ready(machine, client_factory)
        release = asyncio.Event()
        _block_send(client, release)
        dispatcher = _make_dispatcher(machine)

        task = asyncio.create_task(dispatcher.send_media("0812", "http://x/img.png"))
        await _until_sending(client)
        await machine.restart()
        release.set()
        result = await task

        assert result.message_id == SENT_ID
        assert client.destroy.await_count == 1
        await settle(machine)
