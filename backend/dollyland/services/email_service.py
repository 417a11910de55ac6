"""
邮件服务：通过 Resend HTTP API 发送邀请邮件、注册确认邮件
"""
import html
import logging
from typing import List, Optional

import httpx

from dollyland.core.config import settings
from dollyland.core.exceptions import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)

INVITE_SUBJECT = "You're invited to join Dolly AI! 🚀"
CONFIRMATION_SUBJECT = "Welcome to Dollyland AI - Confirm Your Account 🚀"


def render_invite_email(invite_code: str, inviter_name: Optional[str] = None) -> str:
    """邀请邮件 HTML"""
    code = html.escape(invite_code)
    if inviter_name:
        lead = f"{html.escape(inviter_name)} has invited you to"
    else:
        lead = "You've been invited to"
    signup_url = f"{settings.FRONTEND_URL.rstrip('/')}/auth?invite={code}"
    return f"""<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; background: #f5f5f5; padding: 24px;">
    <div style="max-width: 600px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 32px;">
      <h1 style="color: #333;">You're invited! 🎉</h1>
      <p>{lead} join <strong>Dolly AI</strong>, the platform for building and deploying intelligent AI agents.</p>
      <p>Your invite code:</p>
      <div style="font-size: 24px; font-weight: bold; letter-spacing: 4px; background: #f0f0ff; padding: 16px; text-align: center; border-radius: 8px;">
        {code}
      </div>
      <p style="margin-top: 24px;">
        <a href="{signup_url}" style="background: #667eea; color: #ffffff; padding: 12px 24px; border-radius: 6px; text-decoration: none;">Accept invite</a>
      </p>
      <p style="color: #888; font-size: 12px;">This invite expires in {settings.INVITE_EXPIRE_DAYS} days.</p>
    </div>
  </body>
</html>"""


def render_confirmation_email(confirmation_url: str) -> str:
    """注册确认邮件 HTML"""
    url = html.escape(confirmation_url, quote=True)
    return f"""<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; background: #f5f5f5; padding: 24px;">
    <div style="max-width: 600px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 32px;">
      <h1 style="color: #333;">Welcome to Dollyland AI</h1>
      <p>Thanks for signing up! Please confirm your email address to start building AI agents.</p>
      <p style="text-align: center; margin: 32px 0;">
        <a href="{url}" style="background: #667eea; color: #ffffff; padding: 14px 28px; border-radius: 6px; text-decoration: none;">Confirm my account</a>
      </p>
      <p style="color: #888; font-size: 12px;">If the button does not work, copy this link into your browser:<br>
        <span style="color: #667eea; word-break: break-all;">{url}</span>
      </p>
    </div>
  </body>
</html>"""


async def send_email(to: List[str], subject: str, html_body: str, sender: str) -> str:
    """调用 Resend 发送邮件，返回消息 ID"""
    if not settings.RESEND_API_KEY:
        raise ConfigurationError("RESEND_API_KEY 未配置")
    url = f"{settings.RESEND_API_URL.rstrip('/')}/emails"
    headers = {"Authorization": f"Bearer {settings.RESEND_API_KEY}"}
    payload = {"from": sender, "to": to, "subject": subject, "html": html_body}
    async with httpx.AsyncClient(timeout=settings.INTEGRATION_TIMEOUT) as client:
        try:
            resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Resend 请求失败: %s", e)
            raise ExternalServiceError("resend", str(e))
    if resp.status_code >= 400:
        logger.error("Resend 发送失败 status=%s body=%s", resp.status_code, resp.text[:500])
        try:
            message = resp.json().get("message") or resp.text
        except ValueError:
            message = resp.text
        raise ExternalServiceError("resend", message, resp.status_code)
    data = resp.json()
    logger.info("邮件已发送 to=%s subject=%s id=%s", to, subject, data.get("id"))
    return data.get("id", "")


async def send_invite_email(email: str, invite_code: str, inviter_name: Optional[str] = None) -> str:
    return await send_email(
        [email],
        INVITE_SUBJECT,
        render_invite_email(invite_code, inviter_name),
        settings.EMAIL_FROM_INVITE,
    )


async def send_confirmation_email(email: str, confirmation_url: str) -> str:
    return await send_email(
        [email],
        CONFIRMATION_SUBJECT,
        render_confirmation_email(confirmation_url),
        settings.EMAIL_FROM_CONFIRMATION,
    )


async def send_confirmation_email_quietly(email: str, confirmation_url: str) -> None:
    """注册后台任务使用：发送失败只记日志"""
    try:
        await send_confirmation_email(email, confirmation_url)
    except (ConfigurationError, ExternalServiceError) as e:
        logger.warning("注册确认邮件发送失败 email=%s: %s", email, e)
