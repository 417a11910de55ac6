"""
LLM 服务：按服务商转发流式对话
openai / deepseek 走 OpenAI 兼容接口（AsyncOpenAI），anthropic 走 Messages API 的 SSE 流（httpx）。
"""
import json
import logging
from typing import AsyncGenerator, Dict, List

import httpx
from openai import AsyncOpenAI, APIError

from dollyland.core.config import settings
from dollyland.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def _base_url(provider_name: str) -> str:
    if provider_name == "openai":
        return settings.OPENAI_BASE_URL
    if provider_name == "deepseek":
        return settings.DEEPSEEK_BASE_URL
    raise ValueError(f"不支持的 AI 服务商: {provider_name}")


def _client(provider_name: str, api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=api_key,
        base_url=_base_url(provider_name),
        timeout=settings.LLM_REQUEST_TIMEOUT,
    )


async def _stream_openai_compatible(
    provider_name: str,
    api_key: str,
    model: str,
    system_prompt: str,
    messages: List[Dict[str, str]],
) -> AsyncGenerator[str, None]:
    client = _client(provider_name, api_key)
    try:
        stream = await client.chat.completions.create(
            model=model,
            messages=[{"role": "system", "content": system_prompt}, *messages],
            max_tokens=settings.CHAT_MAX_TOKENS,
            temperature=settings.CHAT_TEMPERATURE,
            stream=True,
        )
        async for chunk in stream:
            delta = chunk.choices[0].delta.content if chunk.choices else None
            if delta:
                yield delta
    except APIError as e:
        logger.error("%s 流式请求失败: %s", provider_name, e)
        raise ExternalServiceError(provider_name, str(e), getattr(e, "status_code", None))


def parse_anthropic_event(line: str) -> str:
    """解析 Anthropic SSE 的一行 data，返回文本增量（非文本事件返回空串）"""
    if not line.startswith("data:"):
        return ""
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return ""
    try:
        event = json.loads(data)
    except ValueError:
        return ""
    if event.get("type") == "error":
        err = event.get("error") or {}
        raise ExternalServiceError("anthropic", err.get("message") or "upstream error")
    if event.get("type") != "content_block_delta":
        return ""
    return (event.get("delta") or {}).get("text") or ""


async def _stream_anthropic(
    api_key: str,
    model: str,
    system_prompt: str,
    messages: List[Dict[str, str]],
) -> AsyncGenerator[str, None]:
    url = f"{settings.ANTHROPIC_BASE_URL.rstrip('/')}/v1/messages"
    headers = {
        "x-api-key": api_key,
        "anthropic-version": settings.ANTHROPIC_VERSION,
        "content-type": "application/json",
    }
    body = {
        "model": model,
        "system": system_prompt,
        # Messages API 不接受 system 角色
        "messages": [m for m in messages if m.get("role") in ("user", "assistant")],
        "max_tokens": settings.CHAT_MAX_TOKENS,
        "temperature": settings.CHAT_TEMPERATURE,
        "stream": True,
    }
    async with httpx.AsyncClient(timeout=settings.LLM_REQUEST_TIMEOUT) as client:
        try:
            async with client.stream("POST", url, headers=headers, json=body) as resp:
                if resp.status_code >= 400:
                    detail = (await resp.aread()).decode("utf-8", errors="ignore")[:500]
                    logger.error("anthropic 流式请求失败 status=%s body=%s", resp.status_code, detail)
                    raise ExternalServiceError("anthropic", detail, resp.status_code)
                async for line in resp.aiter_lines():
                    text = parse_anthropic_event(line)
                    if text:
                        yield text
        except httpx.TransportError as e:
            # 连接失败、超时、读流中断
            logger.error("anthropic 连接失败: %r", e)
            raise ExternalServiceError("anthropic", str(e) or type(e).__name__)


async def stream_chat(
    provider_name: str,
    api_key: str,
    model: str,
    system_prompt: str,
    messages: List[Dict[str, str]],
) -> AsyncGenerator[str, None]:
    """流式对话：逐段产出上游返回的文本增量。messages 为 OpenAI 格式的历史（不含 system）。"""
    if provider_name in ("openai", "deepseek"):
        async for delta in _stream_openai_compatible(provider_name, api_key, model, system_prompt, messages):
            yield delta
    elif provider_name == "anthropic":
        async for delta in _stream_anthropic(api_key, model, system_prompt, messages):
            yield delta
    else:
        raise ValueError(f"不支持的 AI 服务商: {provider_name}")
