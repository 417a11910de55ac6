"""
实时语音中转：客户端 WebSocket <-> OpenAI Realtime
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from dollyland.core.config import settings
from dollyland.models.agent import Agent

logger = logging.getLogger(__name__)


def instructions_for(agent: Agent) -> str:
    return agent.system_prompt or f"You are {agent.name}, a helpful AI assistant."


def build_session_update(instructions: str) -> Dict[str, Any]:
    """session.created 之后下发的会话配置"""
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text", "audio"],
            "instructions": instructions,
            "voice": "alloy",
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {"model": "whisper-1"},
            "turn_detection": {
                "type": "server_vad",
                "threshold": 0.5,
                "prefix_padding_ms": 300,
                "silence_duration_ms": 1000,
            },
            "temperature": 0.8,
            "max_response_output_tokens": "inf",
        },
    }


def upstream_url() -> str:
    return f"{settings.OPENAI_REALTIME_URL}?model={settings.OPENAI_REALTIME_MODEL}"


def upstream_headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {settings.OPENAI_API_KEY}",
        "OpenAI-Beta": "realtime=v1",
    }


class RealtimeRelay:
    """双向转发；任一侧关闭后另一侧随之关闭"""

    def __init__(self, client: WebSocket, instructions: str, connector: Optional[Callable[..., Any]] = None):
        self.client = client
        self.instructions = instructions
        self.connector = connector or connect
        self._session_configured = False

    async def _upstream_to_client(self, upstream) -> None:
        async for raw in upstream:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            if not self._session_configured:
                try:
                    event_type = json.loads(text).get("type")
                except (ValueError, AttributeError):
                    event_type = None
                if event_type == "session.created":
                    self._session_configured = True
                    await upstream.send(json.dumps(build_session_update(self.instructions)))
                    logger.info("实时会话已建立，已下发 session.update")
            await self.client.send_text(text)

    async def _client_to_upstream(self, upstream) -> None:
        """文本帧与二进制帧（音频）都原样转发，客户端断开即返回"""
        while True:
            message = await self.client.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("实时语音客户端断开 code=%s", message.get("code"))
                return
            data = message.get("bytes")
            if data is None:
                data = message.get("text")
            if data is not None:
                await upstream.send(data)

    async def run(self) -> None:
        async with self.connector(upstream_url(), additional_headers=upstream_headers()) as upstream:
            tasks = [
                asyncio.create_task(self._upstream_to_client(upstream)),
                asyncio.create_task(self._client_to_upstream(upstream)),
            ]
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                exc = task.exception()
                if exc and not isinstance(exc, (WebSocketDisconnect, ConnectionClosed)):
                    logger.error("实时中转异常: %s", exc)
            await upstream.close()
