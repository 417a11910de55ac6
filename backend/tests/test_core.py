"""基础设施：加密、CORS、中间件、健康检查、实时语音中转、限流"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis
from starlette.websockets import WebSocketState

from dollyland.core.config import settings
from dollyland.core.cors import allowed_origins, is_origin_allowed
from dollyland.core.crypto import decrypt_secret, encrypt_secret, mask_secret
from dollyland.api.v1.realtime import realtime_relay
from dollyland.celery_app import redis_url_for_celery
from dollyland.services import rate_limit_service
from dollyland.services.realtime_service import RealtimeRelay, build_session_update, upstream_headers, upstream_url


class TestCrypto:
    """密钥加解密"""

    def test_round_trip(self):
        token = encrypt_secret("sk-abc")
        assert token != "sk-abc"
        assert decrypt_secret(token) == "sk-abc"

    def test_tampered(self):
        token = encrypt_secret("sk-abc")
        with pytest.raises(ValueError, match="密钥解密失败"):
            decrypt_secret(token[:-4] + "AAAA")

    def test_mask(self):
        assert mask_secret("sk-1234567890") == "****7890"
        assert mask_secret("") == ""


class TestCors:
    """来源判断"""

    def test_fixed_and_dev_origins(self):
        assert is_origin_allowed("https://dollyland.ai")
        assert "http://localhost:5173" in allowed_origins()

    def test_production_drops_dev_origins(self, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        assert "http://localhost:5173" not in allowed_origins()
        assert is_origin_allowed("https://dollyland.ai")

    def test_preview_regex(self):
        assert is_origin_allowed("https://my-preview-1.lovable.app")
        assert not is_origin_allowed("https://evil.lovable.app.attacker.com")
        assert not is_origin_allowed("http://my-preview.lovable.app")
        assert not is_origin_allowed(None)

    async def test_preflight(self, client):
        """预览域名的预检请求被放行"""
        resp = await client.options(
            "/api/v1/agents",
            headers={"Origin": "https://demo.lovable.app", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "https://demo.lovable.app"
        assert resp.headers["access-control-max-age"] == "86400"


class TestApp:
    """中间件与统一错误格式"""

    async def test_root_and_headers(self, client):
        resp = await client.get("/", headers={"X-Request-ID": "req-1"})
        assert resp.json()["version"] == "1.0.0"
        assert resp.headers["x-request-id"] == "req-1"
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-frame-options"] == "DENY"

    async def test_generated_request_id(self, client):
        resp = await client.get("/")
        assert len(resp.headers["x-request-id"]) == 36

    async def test_validation_error_body(self, client):
        """422 带 request_id 与 errors 明细"""
        resp = await client.post("/api/v1/auth/register", json={}, headers={"X-Request-ID": "req-2"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["request_id"] == "req-2"
        assert body["error"]
        assert {tuple(e["loc"]) for e in body["errors"]} >= {("body", "username"), ("body", "password")}

    async def test_http_error_body(self, client):
        resp = await client.get("/api/v1/agents/999", headers={"X-Request-ID": "req-3"})
        assert resp.status_code == 401
        assert resp.json()["request_id"] == "req-3"


class TestHealth:
    """健康检查"""

    async def test_healthy(self, client, monkeypatch):
        monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test")
        with patch("dollyland.core.health.check_db", new=AsyncMock(return_value=(True, "ok"))), \
                patch("dollyland.core.health.check_redis", return_value=(True, "ok")), \
                patch("dollyland.core.health.check_minio", return_value=(True, "ok")):
            body = (await client.get("/health")).json()
        assert body["status"] == "healthy"
        assert body["dependencies"]["redis"] == {"ok": True, "message": "ok"}
        assert body["stripe_configured"] is True

    async def test_degraded(self, client):
        with patch("dollyland.core.health.check_db", new=AsyncMock(return_value=(True, "ok"))), \
                patch("dollyland.core.health.check_redis", return_value=(False, "REDIS_URL 未配置")), \
                patch("dollyland.core.health.check_minio", return_value=(True, "ok")):
            body = (await client.get("/health")).json()
        assert body["status"] == "degraded"
        assert body["dependencies"]["redis"]["message"] == "REDIS_URL 未配置"


class FakeClientSocket:
    """服务端视角的客户端 WebSocket"""

    def __init__(self, incoming=(), expect_outgoing=0):
        self.incoming = list(incoming)
        self.sent = []
        self.closed = None
        self.accepted = False
        self.client_state = WebSocketState.CONNECTING
        self._expect = expect_outgoing
        self._drained = asyncio.Event()
        if not expect_outgoing:
            self._drained.set()

    async def accept(self):
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED

    async def close(self, code=1000, reason=None):
        self.closed = (code, reason)
        self.client_state = WebSocketState.DISCONNECTED

    async def send_text(self, text):
        self.sent.append(text)
        if len(self.sent) >= self._expect:
            self._drained.set()

    async def receive(self):
        if self.incoming:
            data = self.incoming.pop(0)
            key = "bytes" if isinstance(data, bytes) else "text"
            return {"type": "websocket.receive", key: data}
        await self._drained.wait()
        return {"type": "websocket.disconnect", "code": 1000}


class FakeUpstream:
    def __init__(self, messages):
        self.messages = messages
        self.sent = []
        self.closed = False
        self.url = None
        self.headers = None

    def connector(self, url, additional_headers=None):
        self.url = url
        self.headers = additional_headers
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def __aiter__(self):
        for message in self.messages:
            yield message
        await asyncio.Event().wait()

    async def send(self, text):
        self.sent.append(text)

    async def close(self):
        self.closed = True


class TestRealtimeRelay:
    """实时语音中转"""

    def test_session_update(self):
        update = build_session_update("Be kind.")
        assert update["type"] == "session.update"
        session = update["session"]
        assert session["instructions"] == "Be kind."
        assert session["modalities"] == ["text", "audio"]
        assert session["voice"] == "alloy"
        assert session["input_audio_transcription"] == {"model": "whisper-1"}
        assert session["turn_detection"] == {
            "type": "server_vad",
            "threshold": 0.5,
            "prefix_padding_ms": 300,
            "silence_duration_ms": 1000,
        }
        assert session["max_response_output_tokens"] == "inf"

    def test_upstream_target(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-rt")
        assert upstream_url().endswith(f"?model={settings.OPENAI_REALTIME_MODEL}")
        assert upstream_headers() == {"Authorization": "Bearer sk-rt", "OpenAI-Beta": "realtime=v1"}

    async def test_relay_both_directions(self):
        """session.created 后下发会话配置，双向消息原样转发"""
        created = json.dumps({"type": "session.created"})
        audio = json.dumps({"type": "response.audio.delta", "delta": "AAA"})
        upstream = FakeUpstream([created, audio.encode("utf-8")])
        client = FakeClientSocket(incoming=['{"type":"input_audio_buffer.append"}'], expect_outgoing=2)
        await client.accept()

        await RealtimeRelay(client, "Be kind.", connector=upstream.connector).run()

        assert client.sent == [created, audio]
        assert upstream.closed is True
        assert upstream.headers["OpenAI-Beta"] == "realtime=v1"
        sent_types = [json.loads(s)["type"] for s in upstream.sent]
        assert sorted(sent_types) == ["input_audio_buffer.append", "session.update"]
        update = next(json.loads(s) for s in upstream.sent if json.loads(s)["type"] == "session.update")
        assert update["session"]["instructions"] == "Be kind."

    async def test_binary_frames_forwarded(self):
        """客户端二进制帧原样转发，断开后关闭上游"""
        created = json.dumps({"type": "session.created"})
        upstream = FakeUpstream([created])
        pcm = b"\x00\x01\xfe\xff"
        client = FakeClientSocket(incoming=[pcm, '{"type":"response.create"}'], expect_outgoing=1)
        await client.accept()

        await RealtimeRelay(client, "Be kind.", connector=upstream.connector).run()

        assert pcm in upstream.sent
        assert '{"type":"response.create"}' in upstream.sent
        assert upstream.closed is True


class TestRealtimeEndpoint:
    """实时语音入口鉴权"""

    async def _agent(self, client, headers, **fields):
        return (await client.post("/api/v1/agents", json={"name": "Voice", **fields}, headers=headers)).json()

    async def test_missing_token(self, db_session):
        ws = FakeClientSocket()
        await realtime_relay(ws, agent_id=1, token=None, db=db_session)
        assert ws.accepted is True
        assert ws.closed[0] == 1008

    async def test_invalid_token(self, db_session):
        ws = FakeClientSocket()
        await realtime_relay(ws, agent_id=1, token="not-a-jwt", db=db_session)
        assert ws.closed == (1008, "无效的认证凭据")

    async def test_unknown_agent(self, db_session, auth_headers):
        ws = FakeClientSocket()
        token = auth_headers["Authorization"].split()[1]
        await realtime_relay(ws, agent_id=999, token=token, db=db_session)
        assert ws.closed[0] == 1011

    async def test_private_agent_of_other_user(self, client, db_session, auth_headers, make_user):
        agent = await self._agent(client, auth_headers)
        _, other_headers = await make_user("mallory")
        ws = FakeClientSocket()
        await realtime_relay(ws, agent_id=agent["id"], token=other_headers["Authorization"].split()[1], db=db_session)
        assert ws.closed[0] == 1008

    async def test_missing_openai_key(self, client, db_session, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        agent = await self._agent(client, auth_headers)
        ws = FakeClientSocket()
        await realtime_relay(ws, agent_id=agent["id"], token=auth_headers["Authorization"].split()[1], db=db_session)
        assert ws.closed == (1008, "OPENAI_API_KEY 未配置")

    async def test_public_agent_relayed(self, client, db_session, auth_headers, make_user, monkeypatch):
        """公开智能体可被他人连接，使用其系统提示词"""
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-rt")
        agent = await self._agent(client, auth_headers, is_public=True, system_prompt="Speak softly.")
        _, other_headers = await make_user("mallory")
        runs = []

        class FakeRelay:
            def __init__(self, websocket, instructions):
                runs.append(instructions)

            async def run(self):
                return None

        ws = FakeClientSocket()
        with patch("dollyland.api.v1.realtime.RealtimeRelay", new=FakeRelay):
            await realtime_relay(ws, agent_id=agent["id"], token=other_headers["Authorization"].split()[1], db=db_session)
        assert runs == ["Speak softly."]
        assert ws.closed == (1000, None)

    async def test_upstream_connect_failure(self, client, db_session, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-rt")
        agent = await self._agent(client, auth_headers)

        class BrokenRelay:
            def __init__(self, websocket, instructions):
                pass

            async def run(self):
                raise OSError("connection refused")

        ws = FakeClientSocket()
        with patch("dollyland.api.v1.realtime.RealtimeRelay", new=BrokenRelay):
            await realtime_relay(ws, agent_id=agent["id"], token=auth_headers["Authorization"].split()[1], db=db_session)
        assert ws.closed[0] == 1011


class TestCeleryConfig:
    """Celery 连接地址"""

    def test_rediss_gets_cert_reqs(self):
        assert redis_url_for_celery("rediss://:pw@cache:6380/0") == "rediss://:pw@cache:6380/0?ssl_cert_reqs=CERT_NONE"
        assert redis_url_for_celery("rediss://cache/0?ssl_cert_reqs=CERT_REQUIRED").endswith("ssl_cert_reqs=CERT_REQUIRED")

    def test_plain_redis_untouched(self):
        assert redis_url_for_celery("redis://localhost:6379/0") == "redis://localhost:6379/0"


class TestRateLimit:
    """Redis 计数限流"""

    @pytest.fixture
    def fake_redis(self, monkeypatch):
        r = MagicMock()
        monkeypatch.setattr(rate_limit_service, "get_redis", lambda: r)
        return r

    def test_first_hit_sets_expiry(self, fake_redis):
        fake_redis.incr.return_value = 1
        assert rate_limit_service.check_and_incr_upload(7) == (True, 1, settings.RATE_LIMIT_UPLOAD_PER_DAY)
        key = fake_redis.incr.call_args[0][0]
        assert key.startswith("rate:upload:user:7:day:")
        fake_redis.expire.assert_called_once_with(key, 86400 * 2)

    def test_over_limit(self, fake_redis):
        fake_redis.incr.return_value = settings.RATE_LIMIT_CONVERSATION_PER_DAY + 1
        allowed, n, _ = rate_limit_service.check_and_incr_conversation(7)
        assert allowed is False
        assert n == settings.RATE_LIMIT_CONVERSATION_PER_DAY + 1
        fake_redis.expire.assert_not_called()

    def test_deployment_hourly_window(self, fake_redis):
        """开放 API 按部署、按小时计数"""
        fake_redis.incr.return_value = 1
        assert rate_limit_service.check_and_incr_deployment(3, 10) == (True, 1, 10)
        key = fake_redis.incr.call_args[0][0]
        assert key.startswith("rate:agent_api:id:3:hour:")
        fake_redis.expire.assert_called_once_with(key, 3600 * 2)
        fake_redis.incr.return_value = 11
        assert rate_limit_service.check_and_incr_deployment(3, 10)[0] is False

    def test_redis_error_fails_open(self, fake_redis):
        fake_redis.incr.side_effect = redis.ConnectionError("down")
        assert rate_limit_service.check_and_incr_deployment(3, 10) == (True, 0, 10)

    def test_disabled(self, fake_redis, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
        assert rate_limit_service.check_and_incr_upload(7) == (True, 0, settings.RATE_LIMIT_UPLOAD_PER_DAY)
        fake_redis.incr.assert_not_called()
