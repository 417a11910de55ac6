"""
网页内容抓取：配置了 Firecrawl 时走 Firecrawl，否则直接请求并清洗 HTML
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from dollyland.core.config import settings
from dollyland.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

_GOOGLE_DOC_RE = re.compile(r"^https://docs\.google\.com/document/d/([A-Za-z0-9_-]+)")


@dataclass
class ScrapedPage:
    url: str
    title: str
    content: str


def is_valid_url(url: str) -> bool:
    """仅允许 http / https"""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_url(url: str) -> str:
    """Google 文档链接转为纯文本导出地址"""
    url = url.strip()
    m = _GOOGLE_DOC_RE.match(url)
    if m:
        return f"https://docs.google.com/document/d/{m.group(1)}/export?format=txt"
    return url


def display_name(url: str) -> str:
    """URL 来源的展示名：主机名 + 路径"""
    parsed = urlparse(url)
    path = parsed.path.rstrip("/")
    return f"{parsed.netloc}{path}" or url


def _squash(text: str) -> str:
    return " ".join(text.split())


def clean_html(raw: str) -> str:
    """去除 script/style/noscript，取可见文本并压缩空白"""
    soup = BeautifulSoup(raw, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return _squash(soup.get_text(" ", strip=True))


def extract_title(raw: str, url: str) -> str:
    soup = BeautifulSoup(raw, "html.parser")
    if soup.title is not None:
        title = _squash(soup.title.get_text())
        if title:
            return title
    return urlparse(url).hostname or url


async def scrape_with_firecrawl(url: str) -> ScrapedPage:
    """调用 Firecrawl scrape 接口获取正文（markdown 优先）"""
    endpoint = f"{settings.FIRECRAWL_API_URL.rstrip('/')}/v0/scrape"
    payload = {
        "url": url,
        "formats": ["markdown", "html"],
        "onlyMainContent": True,
        "includeTags": ["title", "meta"],
    }
    headers = {"Authorization": f"Bearer {settings.FIRECRAWL_API_KEY}"}
    async with httpx.AsyncClient(timeout=settings.URL_FETCH_TIMEOUT) as client:
        try:
            resp = await client.post(endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ExternalServiceError("firecrawl", str(e))
    if resp.status_code >= 400:
        logger.error("Firecrawl 抓取失败 url=%s status=%s", url, resp.status_code)
        raise ExternalServiceError("firecrawl", resp.text[:300], resp.status_code)
    body = resp.json()
    if body.get("success") is False:
        raise ExternalServiceError("firecrawl", body.get("error") or "scrape failed")
    data = body.get("data") or {}
    content = data.get("markdown") or data.get("content") or ""
    title = (data.get("metadata") or {}).get("title") or url
    return ScrapedPage(url=url, title=title, content=content)


async def fetch_directly(url: str) -> ScrapedPage:
    """直接请求页面；HTML 清洗为纯文本，其他文本类型原样返回"""
    async with httpx.AsyncClient(timeout=settings.URL_FETCH_TIMEOUT, follow_redirects=True) as client:
        try:
            resp = await client.get(url, headers={"User-Agent": "Dollyland-Knowledge/1.0"})
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError("http", f"{e.response.status_code} {url}", e.response.status_code)
        except httpx.HTTPError as e:
            raise ExternalServiceError("http", str(e))
    content_type = resp.headers.get("content-type", "")
    raw = resp.text
    if "html" in content_type or raw.lstrip()[:15].lower().startswith(("<!doctype", "<html")):
        return ScrapedPage(url=url, title=extract_title(raw, url), content=clean_html(raw))
    return ScrapedPage(url=url, title=urlparse(url).hostname or url, content=raw.strip())


async def scrape_url(url: str, use_firecrawl: Optional[bool] = None) -> ScrapedPage:
    if use_firecrawl is None:
        use_firecrawl = bool(settings.FIRECRAWL_API_KEY)
    if use_firecrawl:
        return await scrape_with_firecrawl(url)
    return await fetch_directly(url)
