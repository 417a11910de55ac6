"""邮件：Resend 请求、模板、认证事件回调"""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from dollyland.core.config import settings
from dollyland.core.exceptions import ConfigurationError, ExternalServiceError
from dollyland.services import email_service


class _Captured(list):
    """请求列表，附带可修改的响应状态"""


@pytest.fixture
def resend(monkeypatch):
    """把 Resend 请求导向 MockTransport，返回已收到的请求列表"""
    captured = _Captured()
    state = {"status": 200}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        if state["status"] >= 400:
            return httpx.Response(state["status"], json={"message": "The from address is not verified"})
        return httpx.Response(200, json={"id": "email_123"})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        "dollyland.services.email_service.httpx.AsyncClient",
        lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
    )
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    captured.state = state
    return captured


class TestTemplates:
    """邮件模板"""

    def test_invite_with_inviter(self):
        body = email_service.render_invite_email("AB12CD34", "Alice <admin>")
        assert "AB12CD34" in body
        assert "Alice &lt;admin&gt; has invited you to" in body
        assert "/auth?invite=AB12CD34" in body

    def test_invite_without_inviter(self):
        assert "You've been invited to" in email_service.render_invite_email("AB12CD34")

    def test_confirmation_link_escaped(self):
        body = email_service.render_confirmation_email("https://x.test/confirm?token=a&b=1")
        assert "https://x.test/confirm?token=a&amp;b=1" in body


class TestSend:
    """Resend 发送"""

    async def test_invite_request(self, resend):
        message_id = await email_service.send_invite_email("bob@example.com", "AB12CD34", "Alice")
        assert message_id == "email_123"
        request = resend[0]
        assert str(request.url) == "https://api.resend.com/emails"
        assert request.headers["authorization"] == "Bearer re_test"
        payload = json.loads(request.content)
        assert payload["from"] == "Dolly AI <noreply@dolly.ai>"
        assert payload["to"] == ["bob@example.com"]
        assert payload["subject"] == "You're invited to join Dolly AI! 🚀"

    async def test_confirmation_sender(self, resend):
        await email_service.send_confirmation_email("bob@example.com", "https://x.test/c")
        payload = json.loads(resend[0].content)
        assert payload["from"] == "Dollyland AI <noreply@dollyland.ai>"
        assert payload["subject"] == "Welcome to Dollyland AI - Confirm Your Account 🚀"

    async def test_upstream_error(self, resend):
        resend.state["status"] = 422
        with pytest.raises(ExternalServiceError) as exc:
            await email_service.send_invite_email("bob@example.com", "AB12CD34")
        assert exc.value.message == "The from address is not verified"
        assert exc.value.status_code == 422

    async def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(settings, "RESEND_API_KEY", "")
        with pytest.raises(ConfigurationError):
            await email_service.send_confirmation_email("bob@example.com", "https://x.test/c")

    async def test_quiet_send_swallows_failures(self, monkeypatch):
        """后台发送失败不抛出"""
        monkeypatch.setattr(settings, "RESEND_API_KEY", "")
        assert await email_service.send_confirmation_email_quietly("bob@example.com", "https://x.test/c") is None


class TestEmailApi:
    """邮件接口"""

    async def test_send_invite(self, client, auth_headers):
        with patch("dollyland.api.v1.emails.send_invite_email", new=AsyncMock(return_value="email_1")) as send:
            resp = await client.post(
                "/api/v1/emails/invite",
                json={"email": "bob@example.com", "invite_code": "AB12CD34", "inviter_name": "Alice"},
                headers=auth_headers,
            )
        assert resp.json() == {"success": True, "message_id": "email_1", "message": "Invite email sent successfully"}
        send.assert_awaited_once_with("bob@example.com", "AB12CD34", "Alice")

    async def test_send_requires_auth(self, client):
        resp = await client.post(
            "/api/v1/emails/confirmation", json={"email": "bob@example.com", "confirmation_url": "https://x"}
        )
        assert resp.status_code == 401

    async def test_missing_key_is_server_error(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "RESEND_API_KEY", "")
        resp = await client.post(
            "/api/v1/emails/confirmation",
            json={"email": "bob@example.com", "confirmation_url": "https://x"},
            headers=auth_headers,
        )
        assert resp.status_code == 500
        assert resp.json()["error"] == "RESEND_API_KEY 未配置"


class TestAuthWebhook:
    """认证事件回调"""

    async def test_user_created_with_token(self, client, monkeypatch):
        """携带 confirmation_token 时直接拼确认链接"""
        monkeypatch.setattr(settings, "AUTH_WEBHOOK_SECRET", "")
        monkeypatch.setattr(settings, "FRONTEND_URL", "https://dollyland.ai/")
        with patch("dollyland.api.v1.emails.send_confirmation_email", new=AsyncMock(return_value="e1")) as send:
            resp = await client.post(
                "/api/v1/emails/auth-webhook",
                json={"type": "user.created", "record": {"email": "new@example.com", "confirmation_token": "tok"}},
            )
        assert resp.json() == {"success": True}
        send.assert_awaited_once_with("new@example.com", "https://dollyland.ai/auth/confirm?token=tok")

    async def test_user_created_without_token(self, client, monkeypatch):
        """无 token 时签发确认令牌"""
        monkeypatch.setattr(settings, "AUTH_WEBHOOK_SECRET", "")
        with patch("dollyland.api.v1.emails.send_confirmation_email", new=AsyncMock(return_value="e1")) as send:
            await client.post(
                "/api/v1/emails/auth-webhook", json={"type": "user.created", "record": {"email": "new@example.com"}}
            )
        email, url = send.await_args.args
        assert email == "new@example.com"
        assert "/auth/confirm?token=" in url

    async def test_confirmed_or_other_events_ignored(self, client, monkeypatch):
        monkeypatch.setattr(settings, "AUTH_WEBHOOK_SECRET", "")
        with patch("dollyland.api.v1.emails.send_confirmation_email", new=AsyncMock()) as send:
            await client.post(
                "/api/v1/emails/auth-webhook",
                json={"type": "user.created", "record": {"email": "a@example.com", "email_confirmed_at": "2024-01-01T00:00:00Z"}},
            )
            await client.post("/api/v1/emails/auth-webhook", json={"type": "user.deleted", "record": {"email": "a@example.com"}})
        send.assert_not_awaited()

    async def test_secret_checked(self, client, monkeypatch):
        """配置了密钥时请求头必须一致"""
        monkeypatch.setattr(settings, "AUTH_WEBHOOK_SECRET", "hook-secret")
        with patch("dollyland.api.v1.emails.send_confirmation_email", new=AsyncMock()) as send:
            denied = await client.post(
                "/api/v1/emails/auth-webhook",
                json={"type": "user.created", "record": {"email": "a@example.com"}},
                headers={"X-Webhook-Secret": "wrong"},
            )
            allowed = await client.post(
                "/api/v1/emails/auth-webhook",
                json={"type": "user.deleted"},
                headers={"X-Webhook-Secret": "hook-secret"},
            )
        assert denied.status_code == 401
        assert allowed.status_code == 200
        send.assert_not_awaited()
