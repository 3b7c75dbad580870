"""
Integration tests for notification channels.

Tests Telegram, email and Slack delivery with proper authentication,
rate limiting, and error handling, and fan-out through the dispatcher.
"""

import pytest
import asyncio
import os
from unittest.mock import Mock, patch, AsyncMock

from prometheus_client import CollectorRegistry

from solmond.monitoring.notifications import (
    EmailNotificationChannel, NotificationDispatcher, SlackNotificationChannel,
    TelegramNotificationChannel,
)


def mock_response(status=200, json_data=None, text="Bad Request"):
    response = AsyncMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data or {})
    response.text = AsyncMock(return_value=text)
    return response


class TestTelegramNotificationChannel:
    """Test suite for TelegramNotificationChannel."""

    @pytest.fixture
    def telegram_channel(self):
        """Create TelegramNotificationChannel with mock credentials."""
        with patch.dict(os.environ, {
            'TELEGRAM_BOT_TOKEN': 'test_bot_token',
            'TELEGRAM_CHAT_ID': 'test_chat_id'
        }):
            return TelegramNotificationChannel(validator_name="my-validator")

    def test_telegram_channel_initialization(self):
        """Test Telegram channel initialization."""
        with patch.dict(os.environ, {
            'TELEGRAM_BOT_TOKEN': 'test_bot_token',
            'TELEGRAM_CHAT_ID': 'test_chat_id'
        }):
            channel = TelegramNotificationChannel()
            assert channel.bot_token == 'test_bot_token'
            assert channel.chat_id == 'test_chat_id'
            assert channel.rate_limit_per_minute == 30

    def test_explicit_credentials_take_precedence(self):
        with patch.dict(os.environ, {'TELEGRAM_BOT_TOKEN': 'env_token', 'TELEGRAM_CHAT_ID': 'env_chat'}):
            channel = TelegramNotificationChannel(bot_token='cfg_token', chat_id=42)

        assert channel.bot_token == 'cfg_token'
        assert channel.chat_id == 42
        assert channel.api_url.endswith('/botcfg_token/sendMessage')

    def test_telegram_channel_missing_credentials(self):
        """Test Telegram channel initialization without credentials."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN environment variable is required"):
                TelegramNotificationChannel()

        with patch.dict(os.environ, {'TELEGRAM_BOT_TOKEN': 'test_token'}, clear=True):
            with pytest.raises(ValueError, match="TELEGRAM_CHAT_ID environment variable is required"):
                TelegramNotificationChannel()

    def test_rate_limiting(self, telegram_channel):
        """Test Telegram rate limiting functionality."""
        assert telegram_channel._check_rate_limit() is True

        for _ in range(35):
            telegram_channel._track_send()

        assert telegram_channel._check_rate_limit() is False

    @pytest.mark.asyncio
    async def test_send_message_success(self, telegram_channel):
        """Test successful Telegram alert sending."""
        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.return_value.__aenter__.return_value = mock_response(json_data={'ok': True})

            result = await telegram_channel.send_message("Solana validator is VOTING")

            assert result is True
            mock_post.assert_called_once()
            payload = mock_post.call_args.kwargs['json']
            assert payload['chat_id'] == 'test_chat_id'
            assert payload['text'] == "my-validator: Solana validator is VOTING"

    @pytest.mark.asyncio
    async def test_send_message_api_error(self, telegram_channel):
        """Test Telegram alert sending with API error."""
        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.return_value.__aenter__.return_value = mock_response(
                json_data={'ok': False, 'description': 'Bad Request'})

            result = await telegram_channel.send_message("test")

            assert result is False

    @pytest.mark.asyncio
    async def test_send_message_http_error(self, telegram_channel):
        """Test Telegram alert sending with HTTP error."""
        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.return_value.__aenter__.return_value = mock_response(status=400)

            result = await telegram_channel.send_message("test")

            assert result is False

    @pytest.mark.asyncio
    async def test_send_message_timeout(self, telegram_channel):
        """Test Telegram alert sending timeout."""
        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.side_effect = asyncio.TimeoutError()

            result = await telegram_channel.send_message("test")

            assert result is False

    @pytest.mark.asyncio
    async def test_rate_limited_send_is_rejected(self, telegram_channel):
        for _ in range(30):
            telegram_channel._track_send()

        with patch('aiohttp.ClientSession.post') as mock_post:
            result = await telegram_channel.send_message("test")

            assert result is False
            mock_post.assert_not_called()


class TestEmailNotificationChannel:
    """Test suite for EmailNotificationChannel."""

    @pytest.fixture
    def email_channel(self):
        """Create EmailNotificationChannel with mock API key."""
        with patch.dict(os.environ, {'SENDGRID_API_KEY': 'test_api_key'}):
            return EmailNotificationChannel(
                receiver_email="ops@example.com",
                sender_email="alerts@example.com",
            )

    def test_email_channel_initialization(self, email_channel):
        """Test email channel initialization."""
        assert email_channel.api_key == 'test_api_key'
        assert email_channel.sender_name == "Solana Monitor"
        assert email_channel.rate_limit_per_minute == 60

    def test_email_channel_missing_api_key(self):
        """Test email channel initialization without API key."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="SENDGRID_API_KEY environment variable is required"):
                EmailNotificationChannel(receiver_email="ops@example.com", sender_email="alerts@example.com")

    def test_payload(self, email_channel):
        payload = email_channel._build_payload("Your solana validator is in DELINQUENT state")

        assert payload['personalizations'][0]['to'][0]['email'] == "ops@example.com"
        assert payload['from']['email'] == "alerts@example.com"
        assert payload['content'][0]['value'] == "Your solana validator is in DELINQUENT state"

    @pytest.mark.asyncio
    async def test_send_message_accepted(self, email_channel):
        """SendGrid answers 202 when it accepts a message."""
        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.return_value.__aenter__.return_value = mock_response(status=202)

            result = await email_channel.send_message("test")

            assert result is True
            headers = mock_post.call_args.kwargs['headers']
            assert headers['Authorization'] == 'Bearer test_api_key'

    @pytest.mark.asyncio
    async def test_send_message_failure(self, email_channel):
        """Test email alert sending failure."""
        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.return_value.__aenter__.return_value = mock_response(status=401, text="Unauthorized")

            result = await email_channel.send_message("test")

            assert result is False

    @pytest.mark.asyncio
    async def test_send_message_timeout(self, email_channel):
        """Test email alert sending timeout."""
        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.side_effect = asyncio.TimeoutError()

            result = await email_channel.send_message("test")

            assert result is False


class TestSlackNotificationChannel:
    """Test suite for SlackNotificationChannel."""

    def test_missing_webhook(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="SLACK_WEBHOOK_URL"):
                SlackNotificationChannel()

    @pytest.mark.asyncio
    async def test_send_message(self):
        channel = SlackNotificationChannel(webhook_url="https://hooks.slack.test/abc")

        with patch('aiohttp.ClientSession.post') as mock_post:
            mock_post.return_value.__aenter__.return_value = mock_response()

            result = await channel.send_message("Solana validator is NOT VOTING")

            assert result is True
            assert mock_post.call_args.args[0] == "https://hooks.slack.test/abc"
            assert mock_post.call_args.kwargs['json'] == {'text': "Solana validator is NOT VOTING"}


class TestNotificationDispatcher:
    """Fan-out across channels."""

    def make_channel(self, result=True, error=None):
        channel = Mock()
        channel.send_message = AsyncMock(return_value=result, side_effect=error)
        return channel

    @pytest.mark.asyncio
    async def test_dispatch_to_every_channel(self):
        telegram, email = self.make_channel(), self.make_channel()
        dispatcher = NotificationDispatcher({'telegram': telegram, 'email': email}, registry=CollectorRegistry())

        results = await dispatcher.dispatch("Solana validator is VOTING")

        assert results == {'telegram': True, 'email': True}
        telegram.send_message.assert_awaited_once_with("Solana validator is VOTING")
        email.send_message.assert_awaited_once_with("Solana validator is VOTING")

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self):
        registry = CollectorRegistry()
        telegram = self.make_channel(error=RuntimeError("network down"))
        email = self.make_channel()
        dispatcher = NotificationDispatcher({'telegram': telegram, 'email': email}, registry=registry)

        results = await dispatcher.dispatch("test")

        assert results == {'telegram': False, 'email': True}
        assert registry.get_sample_value(
            'solana_alert_notification_errors_total',
            {'channel': 'telegram', 'error_type': 'RuntimeError'}
        ) == 1

    @pytest.mark.asyncio
    async def test_rejected_send_is_counted(self):
        registry = CollectorRegistry()
        dispatcher = NotificationDispatcher({'slack': self.make_channel(result=False)}, registry=registry)

        results = await dispatcher.dispatch("test")

        assert results == {'slack': False}
        assert registry.get_sample_value(
            'solana_alert_notification_errors_total',
            {'channel': 'slack', 'error_type': 'rejected'}
        ) == 1

    @pytest.mark.asyncio
    async def test_unknown_channel(self):
        dispatcher = NotificationDispatcher({}, registry=CollectorRegistry())

        assert await dispatcher.send('pager', "test") is False
        assert await dispatcher.dispatch("test") == {}
