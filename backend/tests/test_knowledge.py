"""知识库：切分、文件校验、网页抓取与上传/处理接口"""
import io
import json
from typing import Dict
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from dollyland.api.v1.tasks import describe_task
from dollyland.services import scrape_service
from dollyland.services.file_security_service import validate_filename, validate_file_content
from dollyland.services.knowledge_base_service import chunk_content, extract_text, EMPTY_CONTENT_ERROR
from dollyland.services.scrape_service import ScrapedPage
from dollyland.tasks.knowledge_tasks import new_task_id, task_belongs_to


class FakeFileService:
    """内存版对象存储，替换 MinIO"""

    objects: Dict[str, bytes] = {}

    def __init__(self, client=None):
        pass

    def put(self, object_name, content, content_type="application/octet-stream"):
        self.objects[object_name] = content
        return object_name

    def get(self, object_name):
        return self.objects[object_name]

    def remove(self, object_name):
        self.objects.pop(object_name, None)

    def remove_many(self, names):
        for name in names:
            self.remove(name)


@pytest.fixture
def fake_storage():
    FakeFileService.objects = {}
    with patch("dollyland.services.knowledge_base_service.FileService", FakeFileService):
        yield FakeFileService.objects


LONG_TEXT = " ".join(
    f"Sentence number {i} talks about the agent platform and its knowledge features." for i in range(40)
)


class TestChunkContent:
    """句子贪心拼块"""

    def test_packs_sentences_until_size(self):
        """超出块大小时另起新块，每句补回句号"""
        text = "A" * 30 + ". " + "B" * 30 + ". " + "C" * 30 + "."
        chunks = chunk_content(text, chunk_size=70, min_length=10)
        assert chunks == ["A" * 30 + ". " + "B" * 30 + ".", "C" * 30 + "."]

    def test_drops_short_chunks(self):
        """长度不超过最小值的块被丢弃"""
        assert chunk_content("Short. Tiny!", chunk_size=1000) == []

    def test_splits_on_any_terminal_punctuation(self):
        """连续的 .!? 视为一个分隔符"""
        text = "Is this the first question?!! Yes it is the answer..." + " Padding words" * 5
        chunks = chunk_content(text, chunk_size=1000, min_length=0)
        assert len(chunks) == 1
        assert chunks[0].startswith("Is this the first question. Yes it is the answer.")

    def test_empty_input(self):
        """空文本不产生块"""
        assert chunk_content("", chunk_size=100) == []


class TestFileSecurity:
    """上传文件校验"""

    def test_rejects_path_traversal(self):
        """文件名不得包含路径"""
        with pytest.raises(ValueError):
            validate_filename("../etc/passwd.txt")

    def test_rejects_forbidden_extension(self):
        """可执行文件扩展名被拒绝"""
        with pytest.raises(ValueError, match="禁止上传"):
            validate_filename("setup.exe")

    def test_rejects_fake_pdf(self):
        """扩展名为 pdf 但文件头不符"""
        with pytest.raises(ValueError, match="不符"):
            validate_file_content(b"hello world", "pdf")

    def test_rejects_binary_text(self):
        """文本类文件带二进制标记"""
        with pytest.raises(ValueError):
            validate_file_content(b"MZ\x90\x00binary", "txt")

    def test_rejects_unknown_type(self):
        """不在白名单内的扩展名"""
        with pytest.raises(ValueError, match="不支持的文件类型"):
            validate_file_content(b"data", "zip")

    def test_accepts_plain_text(self):
        """普通文本通过校验"""
        validate_file_content(b"plain text", "txt")


class TestScrapeHelpers:
    """网页来源辅助函数"""

    def test_only_http_urls(self):
        """仅允许 http/https"""
        assert scrape_service.is_valid_url("https://example.com/a")
        assert not scrape_service.is_valid_url("ftp://example.com/a")
        assert not scrape_service.is_valid_url("not a url")

    def test_google_docs_export(self):
        """Google 文档链接转为纯文本导出地址"""
        url = "https://docs.google.com/document/d/abc_123-X/edit#heading=h.1"
        assert scrape_service.normalize_url(url) == "https://docs.google.com/document/d/abc_123-X/export?format=txt"

    def test_display_name(self):
        """展示名为主机名加路径"""
        assert scrape_service.display_name("https://example.com/docs/intro/") == "example.com/docs/intro"

    def test_clean_html(self):
        """去除脚本样式与标签，反转义实体"""
        raw = "<html><head><style>p{}</style><script>var x = '<b>';</script></head><body><p>Fish &amp; chips</p>\n\n<p>are   good</p></body></html>"
        assert scrape_service.clean_html(raw) == "Fish & chips are good"

    def test_clean_html_tricky_markup(self):
        """注释、属性中的 >、未闭合的 script 都不进入正文"""
        raw = (
            '<p title="a > b">Visible</p><!-- hidden <b>note</b> -->'
            "<noscript>enable js</noscript><p>text</p><script>var tail = 1;"
        )
        assert scrape_service.clean_html(raw) == "Visible text"

    def test_extract_title(self):
        """title 反转义并压缩空白"""
        raw = "<html><head><title>\n  Fish &amp; Chips\n</title></head></html>"
        assert scrape_service.extract_title(raw, "https://example.com") == "Fish & Chips"

    def test_extract_title_fallback(self):
        """没有 title 时用主机名"""
        assert scrape_service.extract_title("<p>x</p>", "https://example.com/page") == "example.com"

    def test_extract_text_html(self):
        """html 文件按 HTML 清洗"""
        assert extract_text(b"<h1>Title</h1><p>Body</p>", "html") == "Title Body"

    async def test_firecrawl_payload(self, monkeypatch):
        """Firecrawl 请求体与 markdown 优先的解析"""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["json"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True,
                "data": {"markdown": "# Hello", "metadata": {"title": "Hello page"}},
            })

        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            "dollyland.services.scrape_service.httpx.AsyncClient",
            lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
        )
        monkeypatch.setattr("dollyland.services.scrape_service.settings.FIRECRAWL_API_KEY", "fc-key")
        page = await scrape_service.scrape_url("https://example.com")
        assert captured["url"] == "https://api.firecrawl.dev/v0/scrape"
        assert captured["json"]["formats"] == ["markdown", "html"]
        assert captured["json"]["onlyMainContent"] is True
        assert page.title == "Hello page"
        assert page.content == "# Hello"


def _one_page_pdf(text: str) -> bytes:
    """单页 PDF，Helvetica 写一行文字"""
    stream = f"BT /F1 24 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = io.BytesIO()
    out.write(b"%PDF-1.4\n")
    offsets = []
    for i, body in enumerate(objects, start=1):
        offsets.append(out.tell())
        out.write(b"%d 0 obj\n" % i + body + b"\nendobj\n")
    xref_at = out.tell()
    out.write(b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1))
    for off in offsets:
        out.write(b"%010d 00000 n \n" % off)
    out.write(b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at))
    return out.getvalue()


class TestExtractText:
    """按文件类型提取文本"""

    def test_pdf(self):
        assert extract_text(_one_page_pdf("Hello PDF"), "pdf") == "Hello PDF"

    def test_broken_pdf_returns_empty(self):
        """损坏的文件不抛异常，返回空串"""
        assert extract_text(b"%PDF-1.4 garbage", "pdf") == ""

    def test_docx_paragraphs_and_tables(self):
        """段落与表格单元格都提取"""
        from docx import Document

        doc = Document()
        doc.add_paragraph("Quarterly report")
        doc.add_paragraph("   ")
        table = doc.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "Revenue"
        table.rows[0].cells[1].text = "42"
        buf = io.BytesIO()
        doc.save(buf)
        lines = extract_text(buf.getvalue(), "docx").splitlines()
        assert lines == ["Quarterly report", "Revenue", "42"]

    def test_pptx_shapes(self):
        from pptx import Presentation

        prs = Presentation()
        slide = prs.slides.add_slide(prs.slide_layouts[1])
        slide.shapes.title.text = "Roadmap"
        slide.placeholders[1].text = "Ship v2"
        buf = io.BytesIO()
        prs.save(buf)
        lines = extract_text(buf.getvalue(), "pptx").splitlines()
        assert lines == ["Roadmap", "Ship v2"]

    def test_xlsx_cells(self):
        """逐行读取非空单元格"""
        from openpyxl import Workbook

        wb = Workbook()
        ws = wb.active
        ws.append(["name", "score"])
        ws.append(["alice", 42])
        ws.append([None, " "])
        buf = io.BytesIO()
        wb.save(buf)
        assert extract_text(buf.getvalue(), "xlsx").splitlines() == ["name", "score", "alice", "42"]

    def test_unknown_type_as_text(self):
        assert extract_text("  纯文本内容\n".encode("utf-8"), "md") == "纯文本内容"


async def _create_agent_and_kb(client, headers):
    agent = (await client.post("/api/v1/agents", json={"name": "Helper"}, headers=headers)).json()
    kb = await client.post(
        "/api/v1/knowledge-bases",
        json={"agent_id": agent["id"], "name": "Docs"},
        headers=headers,
    )
    assert kb.status_code == 201
    return agent, kb.json()


class TestKnowledgeApi:
    """知识库接口"""

    async def test_kb_requires_own_agent(self, client, auth_headers):
        """智能体不存在时 404"""
        resp = await client.post(
            "/api/v1/knowledge-bases", json={"agent_id": 999, "name": "Docs"}, headers=auth_headers
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "智能体不存在"

    async def test_upload_and_process(self, client, auth_headers, user_and_headers, fake_storage):
        """上传后立即处理生成知识块"""
        _, kb = await _create_agent_and_kb(client, auth_headers)
        resp = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/files",
            files={"file": ("notes.txt", LONG_TEXT.encode("utf-8"), "text/plain")},
            data={"process": "true"},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["source_type"] == "file"
        assert body["processing_status"] == "completed"
        user = user_and_headers[0]
        [object_name] = fake_storage.keys()
        assert object_name.startswith(f"{user.id}/{kb['id']}/")
        assert object_name.endswith("_notes.txt")

        chunks = await client.get(f"/api/v1/knowledge-files/{body['id']}/chunks", headers=auth_headers)
        data = chunks.json()
        assert data["total"] >= 2
        meta = data["chunks"][0]["metadata"]
        assert meta["file_name"] == "notes.txt"
        assert meta["source_type"] == "file"
        assert meta["total_chunks"] == data["total"]

        detail = await client.get(f"/api/v1/knowledge-bases/{kb['id']}", headers=auth_headers)
        assert detail.json()["file_count"] == 1
        assert detail.json()["chunk_count"] == data["total"]

    async def test_upload_rejects_fake_type(self, client, auth_headers, fake_storage):
        """魔数不符的文件 400，且不落存储"""
        _, kb = await _create_agent_and_kb(client, auth_headers)
        resp = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/files",
            files={"file": ("report.pdf", b"not a pdf", "application/pdf")},
            headers=auth_headers,
        )
        assert resp.status_code == 400
        assert fake_storage == {}

    async def test_empty_content_marks_failed(self, client, auth_headers, fake_storage):
        """内容过短时处理失败并记录原因"""
        _, kb = await _create_agent_and_kb(client, auth_headers)
        upload = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/files",
            files={"file": ("tiny.txt", b"hi", "text/plain")},
            headers=auth_headers,
        )
        file_id = upload.json()["id"]
        resp = await client.post("/api/v1/knowledge/process", json={"file_id": file_id}, headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["processed"] == 1 and body["failed"] == 1
        assert body["results"][0]["error"] == EMPTY_CONTENT_ERROR
        files = await client.get(f"/api/v1/knowledge-bases/{kb['id']}/files", headers=auth_headers)
        assert files.json()["files"][0]["processing_status"] == "failed"

    async def test_add_url_rewrites_google_docs(self, client, auth_headers):
        """Google 文档链接入库为导出地址"""
        _, kb = await _create_agent_and_kb(client, auth_headers)
        resp = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/urls",
            json={"url": "https://docs.google.com/document/d/DOC1/edit"},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["source_type"] == "url"
        assert body["source_url"] == "https://docs.google.com/document/d/DOC1/export?format=txt"
        assert body["file_name"] == "docs.google.com/document/d/DOC1/edit"
        assert body["processing_status"] == "pending"

    async def test_add_url_rejects_other_schemes(self, client, auth_headers):
        """非 http/https 链接 400"""
        _, kb = await _create_agent_and_kb(client, auth_headers)
        resp = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/urls", json={"url": "file:///etc/passwd"}, headers=auth_headers
        )
        assert resp.status_code == 400

    async def test_batch_process_urls(self, client, auth_headers):
        """批量处理知识库内全部待处理文件，单个失败不影响其他"""
        _, kb = await _create_agent_and_kb(client, auth_headers)
        for url in ("https://example.com/a", "https://example.com/b"):
            await client.post(f"/api/v1/knowledge-bases/{kb['id']}/urls", json={"url": url}, headers=auth_headers)

        async def fake_scrape(url, use_firecrawl=None):
            if url.endswith("/b"):
                raise ValueError("boom")
            return ScrapedPage(url=url, title="A page", content=LONG_TEXT)

        with patch("dollyland.services.scrape_service.scrape_url", new=AsyncMock(side_effect=fake_scrape)):
            resp = await client.post(
                "/api/v1/knowledge/process",
                json={"knowledge_base_id": kb["id"], "batch_process": True},
                headers=auth_headers,
            )
        body = resp.json()
        assert body["processed"] == 2
        assert body["successful"] == 1
        assert body["failed"] == 1
        failed = [r for r in body["results"] if not r["success"]][0]
        assert failed["error"] == "boom"

    async def test_process_requires_target(self, client, auth_headers):
        """既无 file_id 也无 knowledge_base_id 时 400"""
        resp = await client.post("/api/v1/knowledge/process", json={}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "需要提供 file_id 或 knowledge_base_id"

    async def test_process_unknown_file(self, client, auth_headers):
        """文件不存在 404"""
        resp = await client.post("/api/v1/knowledge/process", json={"file_id": 12345}, headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "文件不存在"

    async def test_async_falls_back_when_broker_down(self, client, auth_headers):
        """Celery 不可用时降级为同步执行"""
        _, kb = await _create_agent_and_kb(client, auth_headers)

        class BrokerConnectionError(Exception):
            pass

        with patch(
            "dollyland.api.v1.knowledge_bases.process_knowledge_task.apply_async",
            side_effect=BrokerConnectionError("redis down"),
        ):
            resp = await client.post(
                "/api/v1/knowledge/process/async",
                json={"knowledge_base_id": kb["id"], "batch_process": True},
                headers=auth_headers,
            )
        assert resp.status_code == 200
        body = resp.json()
        assert body["sync"] is True
        assert body["task_id"] is None
        assert body["result"]["processed"] == 0

    async def test_async_task_id_bound_to_user(self, client, user_and_headers):
        """提交的任务 ID 带上提交者"""
        user, headers = user_and_headers
        _, kb = await _create_agent_and_kb(client, headers)
        submitted = {}

        def fake_apply_async(args, task_id):
            submitted.update(args=args, task_id=task_id)
            return MagicMock(id=task_id)

        with patch(
            "dollyland.api.v1.knowledge_bases.process_knowledge_task.apply_async",
            side_effect=fake_apply_async,
        ):
            resp = await client.post(
                "/api/v1/knowledge/process/async",
                json={"knowledge_base_id": kb["id"], "batch_process": True},
                headers=headers,
            )
        assert resp.status_code == 200
        task_id = resp.json()["task_id"]
        assert task_id == submitted["task_id"]
        assert task_id.startswith(f"u{user.id}-")
        assert submitted["args"] == (user.id, None, kb["id"], True)

    async def test_delete_kb_removes_objects(self, client, auth_headers, fake_storage):
        """删除知识库连带删除文件与存储对象"""
        _, kb = await _create_agent_and_kb(client, auth_headers)
        await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/files",
            files={"file": ("notes.txt", LONG_TEXT.encode("utf-8"), "text/plain")},
            headers=auth_headers,
        )
        assert len(fake_storage) == 1
        resp = await client.delete(f"/api/v1/knowledge-bases/{kb['id']}", headers=auth_headers)
        assert resp.status_code == 204
        assert fake_storage == {}
        assert (await client.get(f"/api/v1/knowledge-bases/{kb['id']}", headers=auth_headers)).status_code == 404


class TestTaskStatus:
    """异步任务轮询"""

    def _result(self, state, value=None):
        result = MagicMock()
        result.id = "task-1"
        result.state = state
        result.ready.return_value = state in ("SUCCESS", "FAILURE")
        result.successful.return_value = state == "SUCCESS"
        result.failed.return_value = state == "FAILURE"
        result.result = value
        return result

    def test_pending(self):
        out = describe_task(self._result("PENDING"))
        assert (out.state, out.ready, out.result, out.error) == ("PENDING", False, None, None)

    def test_success_parsed(self):
        out = describe_task(self._result("SUCCESS", {
            "success": True, "processed": 1, "successful": 1, "failed": 0,
            "results": [{"success": True, "file_id": 3, "chunks_created": 2}],
        }))
        assert out.ready is True
        assert out.result.results[0].chunks_created == 2

    def test_failure(self):
        out = describe_task(self._result("FAILURE", RuntimeError("worker lost")))
        assert out.error == "worker lost"

    def test_task_owner_prefix(self):
        task_id = new_task_id(1)
        assert task_belongs_to(task_id, 1)
        assert not task_belongs_to(task_id, 12)
        assert not task_belongs_to("task-1", 1)

    async def test_poll_own_task(self, client, user_and_headers):
        user, headers = user_and_headers
        task_id = new_task_id(user.id)
        result = self._result("PENDING")
        result.id = task_id
        with patch("dollyland.api.v1.tasks.AsyncResult", return_value=result) as lookup:
            resp = await client.get(f"/api/v1/tasks/{task_id}", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["state"] == "PENDING"
        assert lookup.call_args[0][0] == task_id

    async def test_poll_other_users_task(self, client, user_and_headers, make_user):
        """他人的任务 404，不查询结果后端"""
        user, _ = user_and_headers
        _, other_headers = await make_user("mallory")
        with patch("dollyland.api.v1.tasks.AsyncResult") as lookup:
            resp = await client.get(f"/api/v1/tasks/{new_task_id(user.id)}", headers=other_headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "任务不存在"
        lookup.assert_not_called()
