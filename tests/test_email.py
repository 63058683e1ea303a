"""Tests for MJML email templates and Resend delivery"""

from unittest.mock import patch

import pytest

from portal import email_service
from portal.email_service import EmailNotConfiguredError, send_email, send_email_safe, send_sla_alert_email
from portal.email_templates import invoice_sent_template, sla_alert_template, ticket_update_template


class TestTemplates:
    def test_user_text_is_escaped(self):
        mjml = ticket_update_template("Jane <script>", 12, "Printer & fax", "<b>done</b>", 5)
        assert "<script>" not in mjml
        assert "Jane &lt;script&gt;" in mjml
        assert "Printer &amp; fax" in mjml
        assert "&lt;b&gt;done&lt;/b&gt;" in mjml

    def test_ticket_link(self):
        assert "/tickets/5" in ticket_update_template("Jane", 12, "Printer", "Fixed", 5)

    def test_breach_and_warning_headlines(self):
        breach = sla_alert_template("Agent", 3, "VPN down", "breach", "2024-05-01 13:00 UTC", 9)
        warning = sla_alert_template("Agent", 3, "VPN down", "warning", "2024-05-01 13:00 UTC", 9)
        assert "SLA deadline missed" in breach
        assert "SLA deadline approaching" in warning
        assert "Deadline: 2024-05-01 13:00 UTC" in breach

    def test_invoice_payment_link_is_optional(self):
        with_link = invoice_sent_template("Jane", "Portal Support", "INV-2024-0001", "$10.00", "2024-06-01", 1, "https://pay.example/x")
        without_link = invoice_sent_template("Jane", "Portal Support", "INV-2024-0001", "$10.00", "2024-06-01", 1)
        assert "https://pay.example/x" in with_link
        assert "https://pay.example/x" not in without_link


class TestDelivery:
    @pytest.mark.asyncio
    async def test_unconfigured_raises(self):
        with pytest.raises(EmailNotConfiguredError):
            await send_email("jane@contoso.example", "Hello", "<mjml></mjml>")

    @pytest.mark.asyncio
    async def test_safe_send_returns_none_when_unconfigured(self):
        assert await send_email_safe("jane@contoso.example", "Hello", "<mjml></mjml>") is None

    @pytest.mark.asyncio
    async def test_sends_compiled_html(self, monkeypatch):
        monkeypatch.setattr(email_service, "RESEND_API_KEY", "re_test")

        with patch.object(email_service, "compile_mjml_to_html", return_value="<html>hi</html>"), patch.object(
            email_service.resend.Emails, "send", return_value={"id": "em_1"}
        ) as send:
            response = await send_email("jane@contoso.example", "Hello", "<mjml></mjml>")

        assert response == {"id": "em_1"}
        params = send.call_args.args[0]
        assert params["to"] == ["jane@contoso.example"]
        assert params["html"] == "<html>hi</html>"
        assert params["from"] == email_service.EMAIL_FROM_ADDRESS

    @pytest.mark.asyncio
    async def test_provider_error_swallowed_by_safe_send(self, monkeypatch):
        monkeypatch.setattr(email_service, "RESEND_API_KEY", "re_test")

        with patch.object(email_service, "compile_mjml_to_html", return_value="<html></html>"), patch.object(
            email_service.resend.Emails, "send", side_effect=RuntimeError("rate limited")
        ):
            assert await send_email_safe("jane@contoso.example", "Hello", "<mjml></mjml>") is None

    @pytest.mark.asyncio
    async def test_sla_subject_line(self, monkeypatch):
        monkeypatch.setattr(email_service, "RESEND_API_KEY", "re_test")

        with patch.object(email_service, "compile_mjml_to_html", return_value="<html></html>"), patch.object(
            email_service.resend.Emails, "send", return_value={"id": "em_2"}
        ) as send:
            await send_sla_alert_email("agent@portal.example", "Agent", 7, "VPN down", "breach", "soon", 3)

        assert send.call_args.args[0]["subject"] == "[SLA BREACH] Ticket #7: VPN down"
