"""Tests for the Resend email sender."""

from unittest.mock import patch

import pytest

from trainfit.services.email_service import ResendEmailSender


class TestResendEmailSender:
    @pytest.mark.asyncio
    async def test_missing_api_key_fails_without_calling_resend(self):
        with patch("trainfit.services.email_service.resend.Emails.send") as mock_send:
            result = await ResendEmailSender(api_key="").send("a@test.com", "Hi", "<p>Hi</p>")

        assert result.success is False
        assert result.error == "Email service not configured"
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_send(self):
        with patch(
            "trainfit.services.email_service.resend.Emails.send", return_value={"id": "re_123"}
        ) as mock_send:
            sender = ResendEmailSender(api_key="re_test", from_address="TrainFit <t@test.com>")
            result = await sender.send("a@test.com", "Hi", "<p>Hi</p>")

        assert result.success is True
        assert result.message_id == "re_123"
        params = mock_send.call_args.args[0]
        assert params["to"] == ["a@test.com"]
        assert params["from"] == "TrainFit <t@test.com>"

    @pytest.mark.asyncio
    async def test_provider_error_is_returned(self):
        with patch(
            "trainfit.services.email_service.resend.Emails.send",
            side_effect=RuntimeError("rate limited"),
        ):
            result = await ResendEmailSender(api_key="re_test").send("a@test.com", "Hi", "x")

        assert result.success is False
        assert result.error == "rate limited"
