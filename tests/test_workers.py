"""
Tests for worker handlers and their collaborators.

Handlers are called directly with an envelope and a WorkerContext built
from in-memory sinks and transports.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from workrelay.messaging.models import DeliveryOutcome, LogEntry
from workrelay.services.log_sink import InMemoryLogSink, LoggingLogSink
from workrelay.services.realtime import InMemoryEventSink
from workrelay.services.transports import DeliveryResult, SimulatedTransport, SmtpTransport
from workrelay.config import ConfigLoader
from workrelay.config.services import MailSettings
from workrelay.workers import (
    WorkerContext,
    build_handlers,
    handle_analytics,
    handle_email,
    handle_image,
    handle_sms,
    queue_handlers,
    start_workers,
)
from workrelay.workers.email import render


@pytest.fixture
def ctx():
    return WorkerContext(
        log_sink=InMemoryLogSink(maxlen=50),
        mail_transport=SimulatedTransport("email"),
        sms_transport=SimulatedTransport("sms"),
        event_sink=InMemoryEventSink(),
    )


def failing_transport(error="421 service not available"):
    transport = MagicMock()
    transport.deliver = AsyncMock(return_value=DeliveryResult(success=False, transport="smtp", error=error))
    return transport


def raising_transport(exc):
    transport = MagicMock()
    transport.deliver = AsyncMock(side_effect=exc)
    return transport


class TestEmailWorker:
    @pytest.mark.asyncio
    async def test_welcome_email_is_sent_and_logged(self, ctx):
        payload = {
            "type": "welcome",
            "userId": "u1",
            "email": "ada@example.com",
            "data": {"userName": "Ada"},
            "messageId": "m-1",
        }

        outcome = await handle_email(payload, ctx)

        assert outcome is DeliveryOutcome.SUCCESS
        [entry] = ctx.log_sink.entries()
        assert entry.action == "email-welcome"
        assert entry.status == "success"
        assert entry.user_id == "u1"
        assert entry.message_id == "m-1"
        assert entry.data["sendInfo"]["success"] is True

    @pytest.mark.asyncio
    async def test_transport_failure_is_retryable(self, ctx):
        ctx.mail_transport = failing_transport()

        outcome = await handle_email({"type": "welcome", "email": "ada@example.com"}, ctx)

        assert outcome is DeliveryOutcome.RETRYABLE_FAILURE
        [entry] = ctx.log_sink.entries()
        assert entry.status == "error"
        assert entry.data["sendInfo"]["error"] == "421 service not available"

    @pytest.mark.asyncio
    async def test_raising_transport_is_logged_and_retryable(self, ctx):
        ctx.mail_transport = raising_transport(ConnectionError("mail relay down"))

        outcome = await handle_email({"type": "welcome", "email": "ada@example.com", "messageId": "m-2"}, ctx)

        assert outcome is DeliveryOutcome.RETRYABLE_FAILURE
        assert len(ctx.log_sink) == 1
        [entry] = ctx.log_sink.entries()
        assert entry.status == "error"
        assert entry.message_id == "m-2"
        assert entry.data["error"] == "mail relay down"

    @pytest.mark.asyncio
    async def test_missing_recipient_is_fatal(self, ctx):
        outcome = await handle_email({"type": "welcome", "data": {}}, ctx)

        assert outcome is DeliveryOutcome.FATAL_FAILURE
        assert ctx.log_sink.entries()[0].status == "error"

    @pytest.mark.asyncio
    async def test_transport_receives_rendered_template(self, ctx):
        ctx.mail_transport = MagicMock()
        ctx.mail_transport.deliver = AsyncMock(return_value=DeliveryResult(success=True, transport="smtp"))

        await handle_email(
            {"type": "password-reset", "email": "ada@example.com", "data": {"resetLink": "https://x/reset?t=1"}},
            ctx,
        )

        sent = ctx.mail_transport.deliver.await_args.args[0]
        assert sent["to"] == "ada@example.com"
        assert sent["subject"] == "Password reset request"
        assert 'href="https://x/reset?t=1"' in sent["body"]

    def test_render_overrides_and_fallback(self):
        subject, html = render("welcome", {"subject": "Hi!", "html": "<p>custom</p>"})
        assert (subject, html) == ("Hi!", "<p>custom</p>")

        subject, html = render("unknown", {})
        assert subject == "System notification"
        assert "System notification" in html

    def test_render_escapes_user_input(self):
        _, html = render("welcome", {"userName": "<script>"})
        assert "<script>" not in html


class TestSmsWorker:
    @pytest.mark.asyncio
    async def test_sms_sent(self, ctx):
        outcome = await handle_sms({"type": "verification", "phone": "+15550100", "content": "code 123456"}, ctx)

        assert outcome is DeliveryOutcome.SUCCESS
        [entry] = ctx.log_sink.entries()
        assert entry.action == "sms-verification"
        assert entry.data["phone"] == "+15550100"

    @pytest.mark.asyncio
    async def test_sms_failure_is_retryable(self, ctx):
        ctx.sms_transport = failing_transport("gateway timeout")

        outcome = await handle_sms({"type": "verification", "phone": "+15550100"}, ctx)

        assert outcome is DeliveryOutcome.RETRYABLE_FAILURE

    @pytest.mark.asyncio
    async def test_raising_transport_is_logged_and_retryable(self, ctx):
        ctx.sms_transport = raising_transport(TimeoutError("gateway timeout"))

        outcome = await handle_sms({"type": "verification", "phone": "+15550100"}, ctx)

        assert outcome is DeliveryOutcome.RETRYABLE_FAILURE
        [entry] = ctx.log_sink.entries()
        assert entry.status == "error"
        assert entry.data["error"] == "gateway timeout"

    @pytest.mark.asyncio
    async def test_missing_phone_is_fatal(self, ctx):
        assert await handle_sms({"type": "verification"}, ctx) is DeliveryOutcome.FATAL_FAILURE


class TestAnalyticsWorker:
    @pytest.mark.asyncio
    async def test_message_sent_notifies_room(self, ctx):
        payload = {"event": "message-sent", "userId": "u1", "data": {"roomId": "room-7", "messageLength": 12}}

        outcome = await handle_analytics(payload, ctx)

        assert outcome is DeliveryOutcome.SUCCESS
        [event] = ctx.event_sink.events
        assert event.event == "analytics-update"
        assert event.recipients == frozenset({"room-7"})
        assert ctx.log_sink.entries()[0].action == "analytics-message-sent"

    @pytest.mark.asyncio
    async def test_other_events_are_only_recorded(self, ctx):
        await handle_analytics({"event": "user-registered", "userId": "u1", "data": {"source": "api"}}, ctx)

        assert ctx.event_sink.events == []
        [entry] = ctx.log_sink.entries()
        assert entry.data == {"event": "user-registered", "data": {"source": "api"}}

    @pytest.mark.asyncio
    async def test_failed_room_update_is_logged_and_retryable(self, ctx):
        ctx.event_sink = MagicMock()
        ctx.event_sink.emit = AsyncMock(side_effect=RuntimeError("socket gateway gone"))
        payload = {"event": "message-sent", "userId": "u1", "data": {"roomId": "room-7"}}

        outcome = await handle_analytics(payload, ctx)

        assert outcome is DeliveryOutcome.RETRYABLE_FAILURE
        [entry] = ctx.log_sink.entries()
        assert entry.status == "error"
        assert entry.data["error"] == "socket gateway gone"


class TestImageWorker:
    @pytest.mark.asyncio
    async def test_known_operations(self, ctx):
        payload = {"userId": "u1", "imagePath": "/uploads/a.jpg", "operations": ["resize", "optimize", "thumbnail"]}

        outcome = await handle_image(payload, ctx)

        assert outcome is DeliveryOutcome.SUCCESS
        [entry] = ctx.log_sink.entries()
        assert entry.action == "image-processed"
        assert entry.data["operations"] == ["resize", "optimize", "thumbnail"]

    @pytest.mark.asyncio
    async def test_unknown_operation_is_fatal(self, ctx):
        payload = {"imagePath": "/uploads/a.jpg", "operations": ["resize", "sepia"]}

        assert await handle_image(payload, ctx) is DeliveryOutcome.FATAL_FAILURE
        assert ctx.log_sink.entries()[0].status == "error"


class TestRegistry:
    def test_handlers_cover_all_queues(self):
        assert set(queue_handlers()) == {"email-queue", "sms-queue", "analytics-queue", "image-processing-queue"}

    def test_registry_follows_configured_queue_names(self, monkeypatch):
        monkeypatch.setenv("RABBITMQ_EMAIL_QUEUE", "mail-jobs")
        ConfigLoader.clear_cache()

        handlers = queue_handlers()

        assert handlers["mail-jobs"] is handle_email
        assert "email-queue" not in handlers

    @pytest.mark.asyncio
    async def test_built_handlers_take_only_the_payload(self, ctx):
        handlers = build_handlers(ctx)

        outcome = await handlers["sms-queue"]({"type": "verification", "phone": "+1"})

        assert outcome is DeliveryOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_start_workers_subscribes_every_queue(self, ctx):
        service = MagicMock()
        service.consume = AsyncMock(side_effect=lambda name, handler: f"sub:{name}")

        subscriptions = await start_workers(service, ctx)

        assert sorted(subscriptions) == sorted(f"sub:{name}" for name in queue_handlers())


class TestCollaborators:
    @pytest.mark.asyncio
    async def test_in_memory_log_sink_is_bounded_and_filterable(self):
        sink = InMemoryLogSink(maxlen=3)
        for action in ["email-welcome", "sms-verification", "email-password-reset", "analytics-x"]:
            await sink.append_log(LogEntry(action=action, status="success"))

        assert len(sink) == 3
        assert [e.action for e in sink.entries()] == ["analytics-x", "email-password-reset", "sms-verification"]
        assert [e.action for e in sink.entries(action="EMAIL")] == ["email-password-reset"]
        assert len(sink.entries(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_logging_log_sink_emits_structured_event(self):
        with patch("workrelay.services.log_sink.logger") as mock_logger:
            await LoggingLogSink().append_log(LogEntry(action="sms-x", status="error", userId="u1"))

        level, event = mock_logger.structured.call_args.args
        assert (level, event) == ("warning", "action_log")
        assert mock_logger.structured.call_args.kwargs["userId"] == "u1"

    @pytest.mark.asyncio
    async def test_smtp_transport_not_configured(self):
        result = await SmtpTransport(MailSettings(smtp_host="")).deliver({"to": "a@example.com"})
        assert result.success is False

    @pytest.mark.asyncio
    async def test_smtp_transport_sends_message(self):
        mail = MailSettings(smtp_host="smtp.example.com", smtp_user="bot", smtp_password="pw", smtp_from="bot@example.com")

        with patch("workrelay.services.transports.smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            result = await SmtpTransport(mail).deliver({"to": "a@example.com", "subject": "Hi", "body": "<p>x</p>"})

        assert result.success is True
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "pw")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "a@example.com"
        assert sent["From"] == "bot@example.com"

    @pytest.mark.asyncio
    async def test_smtp_transport_reports_errors(self):
        import smtplib

        mail = MailSettings(smtp_host="smtp.example.com", smtp_user="bot", smtp_password="pw")
        with patch("workrelay.services.transports.smtplib.SMTP") as mock_smtp:
            mock_smtp.return_value.__enter__.return_value.login.side_effect = smtplib.SMTPAuthenticationError(
                535, b"bad credentials"
            )
            result = await SmtpTransport(mail).deliver({"to": "a@example.com"})

        assert result.success is False
        assert result.error == "SMTP authentication failed"
