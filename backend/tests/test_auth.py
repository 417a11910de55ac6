"""认证与邀请"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from sqlalchemy import select

from dollyland.core.config import settings
from dollyland.models.invite import Invite
from dollyland.services.auth_service import AuthService
from dollyland.services.invite_service import InviteService, generate_invite_code


REGISTER = {"username": "carol", "email": "Carol@Example.com", "password": "secret123"}


class TestAuthApi:
    """注册、登录与当前用户"""

    async def test_register_and_login(self, client):
        """注册后可用用户名或邮箱登录"""
        resp = await client.post("/api/v1/auth/register", json=REGISTER)
        assert resp.status_code == 201
        assert resp.json()["email"] == "carol@example.com"

        for username in ("carol", "carol@example.com"):
            login = await client.post("/api/v1/auth/login", data={"username": username, "password": "secret123"})
            assert login.status_code == 200
            assert login.json()["token_type"] == "bearer"

    async def test_register_duplicate_conflict(self, client):
        """重复用户名返回 409"""
        await client.post("/api/v1/auth/register", json=REGISTER)
        resp = await client.post("/api/v1/auth/register", json=REGISTER)
        assert resp.status_code == 409
        assert resp.json()["error"] == "用户名已存在"

    async def test_login_wrong_password(self, client):
        """密码错误返回 401"""
        await client.post("/api/v1/auth/register", json=REGISTER)
        resp = await client.post("/api/v1/auth/login", data={"username": "carol", "password": "nope123"})
        assert resp.status_code == 401

    async def test_me_requires_token(self, client):
        """未携带令牌返回 401，错误体带 request_id"""
        resp = await client.get("/api/v1/auth/me", headers={"X-Request-ID": "req-1"})
        assert resp.status_code == 401
        assert resp.json()["request_id"] == "req-1"
        assert resp.headers["X-Request-ID"] == "req-1"

    async def test_me(self, client, auth_headers):
        """返回当前用户"""
        resp = await client.get("/api/v1/auth/me", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"

    async def test_change_password(self, client, auth_headers):
        """原密码错误 400，正确则可用新密码登录"""
        bad = await client.put(
            "/api/v1/auth/me/password",
            json={"old_password": "wrong", "new_password": "newsecret"},
            headers=auth_headers,
        )
        assert bad.status_code == 400
        ok = await client.put(
            "/api/v1/auth/me/password",
            json={"old_password": "secret123", "new_password": "newsecret"},
            headers=auth_headers,
        )
        assert ok.status_code == 204
        login = await client.post("/api/v1/auth/login", data={"username": "alice", "password": "newsecret"})
        assert login.status_code == 200

    async def test_confirm_email(self, client, db_session, user_and_headers):
        """确认链接标记邮箱已确认"""
        user, _ = user_and_headers
        token = AuthService(db_session).create_email_confirm_token(user.email)
        resp = await client.get("/api/v1/auth/confirm", params={"token": token})
        assert resp.status_code == 200
        assert resp.json()["email"] == user.email

    async def test_confirm_token_cannot_login(self, client, db_session, user_and_headers):
        """确认令牌不能当作登录令牌使用"""
        user, _ = user_and_headers
        token = AuthService(db_session).create_email_confirm_token(user.email)
        resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_register_sends_confirmation(self, client, monkeypatch):
        """开启邮箱确认时后台发送确认邮件"""
        monkeypatch.setattr(settings, "EMAIL_CONFIRMATION_ENABLED", True)
        with patch("dollyland.api.v1.auth.send_confirmation_email_quietly", new=AsyncMock()) as sender:
            resp = await client.post("/api/v1/auth/register", json=REGISTER)
        assert resp.status_code == 201
        sender.assert_awaited_once()
        assert sender.await_args.args[0] == "carol@example.com"
        assert "/auth/confirm?token=" in sender.await_args.args[1]


class TestInvites:
    """邀请码"""

    def test_code_format(self):
        """8 位大写字母数字"""
        code = generate_invite_code()
        assert len(code) == 8
        assert code == code.upper() and code.isalnum()

    async def test_invite_only_registration(self, client, db_session, user_and_headers, monkeypatch):
        """仅邀请注册：无码拒绝，有效码注册后被核销"""
        monkeypatch.setattr(settings, "INVITE_ONLY", True)
        inviter, _ = user_and_headers
        invite = await InviteService(db_session).create_invite("dave@example.com", inviter.id)

        no_code = await client.post(
            "/api/v1/auth/register", json={"username": "dave", "email": "dave@example.com", "password": "secret123"}
        )
        assert no_code.status_code == 400

        resp = await client.post("/api/v1/auth/register", json={
            "username": "dave",
            "email": "dave@example.com",
            "password": "secret123",
            "invite_code": invite.invite_code.lower(),
        })
        assert resp.status_code == 201

        again = await client.get(f"/api/v1/invites/{invite.invite_code}/validate")
        assert again.json() == {"valid": False, "reason": "邀请码已被使用"}

    async def test_expired_invite(self, client, db_session, user_and_headers):
        """过期邀请码校验不通过"""
        inviter, _ = user_and_headers
        invite = await InviteService(db_session).create_invite("erin@example.com", inviter.id)
        invite.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        await db_session.commit()
        resp = await client.get(f"/api/v1/invites/{invite.invite_code}/validate")
        assert resp.json() == {"valid": False, "reason": "邀请码已过期"}

    async def test_create_invite_sends_email(self, client, auth_headers, db_session):
        """创建邀请并发送邮件，有效期 7 天"""
        with patch("dollyland.api.v1.invites.send_invite_email", new=AsyncMock(return_value="msg_1")) as sender:
            resp = await client.post("/api/v1/invites", json={"email": "Frank@Example.com"}, headers=auth_headers)
        assert resp.status_code == 201
        body = resp.json()
        assert body["email"] == "frank@example.com"
        assert body["email_sent"] is True
        sender.assert_awaited_once_with("frank@example.com", body["invite_code"], "alice")

        invite = (await db_session.execute(select(Invite).where(Invite.id == body["id"]))).scalar_one()
        expires = invite.expires_at if invite.expires_at.tzinfo else invite.expires_at.replace(tzinfo=timezone.utc)
        delta = expires - datetime.now(timezone.utc)
        assert timedelta(days=6, hours=23) < delta <= timedelta(days=7)

    async def test_create_invite_email_failure(self, client, auth_headers):
        """邮件未配置时邀请仍创建成功"""
        resp = await client.post("/api/v1/invites", json={"email": "gina@example.com"}, headers=auth_headers)
        assert resp.status_code == 201
        assert resp.json()["email_sent"] is False

    async def test_list_and_revoke(self, client, auth_headers):
        """列出并撤销未使用的邀请"""
        created = await client.post(
            "/api/v1/invites", json={"email": "hank@example.com", "send_email": False}, headers=auth_headers
        )
        invite_id = created.json()["id"]
        listing = await client.get("/api/v1/invites", headers=auth_headers)
        assert listing.json()["total"] == 1
        assert (await client.delete(f"/api/v1/invites/{invite_id}", headers=auth_headers)).status_code == 204
        assert (await client.delete(f"/api/v1/invites/{invite_id}", headers=auth_headers)).status_code == 404
