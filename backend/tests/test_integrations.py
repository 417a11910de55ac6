"""GitHub / Linear 集成：请求构造、集成日志、错误映射"""
import base64
import json
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import select

from dollyland.core.config import settings
from dollyland.core.exceptions import ConfigurationError
from dollyland.models.integration_log import IntegrationLog
from dollyland.services.github_service import GitHubService, template_files
from dollyland.services.linear_service import LinearService, is_success

REPO = {
    "id": 42,
    "name": "demo",
    "full_name": "dolly/demo",
    "html_url": "https://github.com/dolly/demo",
    "clone_url": "https://github.com/dolly/demo.git",
    "ssh_url": "git@github.com:dolly/demo.git",
    "default_branch": "main",
}


class FakeGitHub:
    def __init__(self, existing=None, fail_create=False):
        self.existing = existing or {}
        self.fail_create = fail_create
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/user/repos" and request.method == "POST":
            if self.fail_create:
                return httpx.Response(422, json={"message": "name already exists on this account"})
            return httpx.Response(201, json=REPO)
        if path == "/user/repos":
            return httpx.Response(200, json=[REPO])
        if path.startswith("/repos/dolly/demo/contents/"):
            file_path = path[len("/repos/dolly/demo/contents/"):]
            if request.method == "GET":
                if file_path in self.existing:
                    return httpx.Response(200, json={"sha": self.existing[file_path]})
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(201, json={"content": {"path": file_path}})
        return httpx.Response(404, json={"message": "Not Found"})

    def service(self, *args, **kwargs):
        return GitHubService(token="ghp_test", transport=httpx.MockTransport(self.handler))


class FakeLinear:
    def __init__(self, response=None):
        self.response = response or {"data": {"teams": {"nodes": [{"id": "t1", "name": "Core"}]}}}
        self.payloads = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append({"auth": request.headers["authorization"], **json.loads(request.content)})
        return httpx.Response(200, json=self.response)

    def service(self, *args, **kwargs):
        return LinearService(api_key="lin_test", transport=httpx.MockTransport(self.handler))


async def integration_logs(db_session):
    return (await db_session.execute(select(IntegrationLog).order_by(IntegrationLog.id))).scalars().all()


class TestGitHubService:
    """GitHub 服务"""

    def test_templates(self):
        """每个模板都有文件，未知模板为空"""
        assert set(template_files("react", "demo")) == {"package.json", "src/App.js", "src/index.js", "public/index.html"}
        assert json.loads(template_files("node", "demo")["package.json"])["dependencies"] == {"express": "^4.18.0"}
        assert "Welcome to demo" in template_files("vanilla", "demo")["index.html"]
        assert template_files("django", "demo") == {}

    def test_missing_token(self, monkeypatch):
        monkeypatch.setattr(settings, "GITHUB_TOKEN", "")
        with pytest.raises(ConfigurationError) as exc:
            GitHubService()
        assert str(exc.value) == "GITHUB_TOKEN 未配置"

    async def test_commit_overwrites_existing(self):
        """已存在的文件带 sha 覆盖，新文件不带"""
        fake = FakeGitHub(existing={"README.md": "abc123"})
        committed = await fake.service().commit_files(
            "dolly/demo", {"README.md": "# hi", "src/new.py": "print(1)"}, branch="dev"
        )
        assert committed == ["README.md", "src/new.py"]
        puts = [json.loads(r.content) for r in fake.requests if r.method == "PUT"]
        assert puts[0]["sha"] == "abc123"
        assert puts[0]["message"] == "Update README.md"
        assert puts[0]["branch"] == "dev"
        assert base64.b64decode(puts[0]["content"]).decode() == "# hi"
        assert "sha" not in puts[1]
        assert fake.requests[0].url.params["ref"] == "dev"

    async def test_auth_headers(self):
        fake = FakeGitHub()
        await fake.service().list_repositories()
        request = fake.requests[0]
        assert request.headers["authorization"] == "Bearer ghp_test"
        assert request.headers["accept"] == "application/vnd.github.v3+json"
        assert request.url.params["sort"] == "updated"
        assert request.url.params["per_page"] == "50"


class TestGitHubApi:
    """GitHub 接口"""

    async def test_create_with_template(self, client, auth_headers, db_session):
        """创建仓库后写入模板文件并记录集成日志"""
        fake = FakeGitHub()
        with patch("dollyland.api.v1.integrations.GitHubService", new=fake.service):
            resp = await client.post(
                "/api/v1/integrations/github/repos",
                json={"name": "demo", "template": "node", "agent_id": 3},
                headers=auth_headers,
            )
        assert resp.status_code == 200
        body = resp.json()
        assert body["repository"]["full_name"] == "dolly/demo"
        assert body["repository"]["url"] == "https://github.com/dolly/demo"
        assert sorted(body["files_created"]) == ["README.md", "index.js", "package.json"]

        create = json.loads(fake.requests[0].content)
        assert create["auto_init"] is True
        assert create["gitignore_template"] == "Node"
        assert create["description"] == "Repository created by AI Agent (Agent ID: 3)"

        logs = await integration_logs(db_session)
        assert [(log.integration_type, log.action, log.success) for log in logs] == [("github", "create_repo", True)]
        assert logs[0].log_metadata["repository"] == "dolly/demo"

    async def test_upstream_error(self, client, auth_headers, db_session):
        """GitHub 报错返回 502 并记录失败日志"""
        fake = FakeGitHub(fail_create=True)
        with patch("dollyland.api.v1.integrations.GitHubService", new=fake.service):
            resp = await client.post(
                "/api/v1/integrations/github/repos", json={"name": "demo"}, headers=auth_headers
            )
        assert resp.status_code == 502
        assert resp.json()["error"] == "GitHub API error: name already exists on this account"
        logs = await integration_logs(db_session)
        assert logs[0].success is False

    async def test_missing_token(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "GITHUB_TOKEN", "")
        resp = await client.get("/api/v1/integrations/github/repos", headers=auth_headers)
        assert resp.status_code == 500
        assert resp.json()["error"] == "GITHUB_TOKEN 未配置"

    async def test_list_and_commit(self, client, auth_headers):
        fake = FakeGitHub()
        with patch("dollyland.api.v1.integrations.GitHubService", new=fake.service):
            listing = await client.get("/api/v1/integrations/github/repos", headers=auth_headers)
            commit = await client.post(
                "/api/v1/integrations/github/repos/dolly/demo/files",
                json={"files": {"a.txt": "A"}, "message": "add a"},
                headers=auth_headers,
            )
        assert listing.json()["repositories"][0]["name"] == "demo"
        assert commit.json() == {"success": True, "committed": ["a.txt"]}

    async def test_requires_auth(self, client):
        resp = await client.get("/api/v1/integrations/github/repos")
        assert resp.status_code in (401, 403)


class TestLinear:
    """Linear 接口"""

    def test_is_success(self):
        assert is_success({"data": {}}) is True
        assert is_success({"errors": [{"message": "bad"}]}) is False

    async def test_create_issue_drops_empty_fields(self, client, auth_headers, db_session):
        """未填字段不进入 GraphQL input"""
        fake = FakeLinear({"data": {"issueCreate": {"success": True, "issue": {"id": "i1"}}}})
        with patch("dollyland.api.v1.integrations.LinearService", new=fake.service):
            resp = await client.post(
                "/api/v1/integrations/linear/issues",
                json={"team_id": "t1", "title": "Bug", "priority": 2},
                headers=auth_headers,
            )
        assert resp.json()["data"]["issueCreate"]["success"] is True
        payload = fake.payloads[0]
        assert payload["auth"] == "lin_test"
        assert payload["variables"]["input"] == {"teamId": "t1", "title": "Bug", "priority": 2}
        logs = await integration_logs(db_session)
        assert (logs[0].integration_type, logs[0].action, logs[0].success) == ("linear", "createIssue", True)

    async def test_graphql_errors_logged_as_failure(self, client, auth_headers, db_session):
        """GraphQL errors 原样返回，日志记为失败"""
        fake = FakeLinear({"errors": [{"message": "Authentication required"}]})
        with patch("dollyland.api.v1.integrations.LinearService", new=fake.service):
            resp = await client.get("/api/v1/integrations/linear/teams", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["errors"][0]["message"] == "Authentication required"
        logs = await integration_logs(db_session)
        assert logs[0].success is False
        assert "variables" not in fake.payloads[0]

    async def test_issue_filters(self, client, auth_headers):
        fake = FakeLinear({"data": {"issues": {"nodes": []}}})
        with patch("dollyland.api.v1.integrations.LinearService", new=fake.service):
            await client.get("/api/v1/integrations/linear/issues", params={"team_id": "t1", "limit": 5}, headers=auth_headers)
            await client.get("/api/v1/integrations/linear/issues", headers=auth_headers)
            await client.get("/api/v1/integrations/linear/issues/search", params={"query": "login"}, headers=auth_headers)
        assert fake.payloads[0]["variables"] == {"filter": {"team": {"id": {"eq": "t1"}}}, "first": 5}
        assert fake.payloads[1]["variables"] == {"filter": {}, "first": 20}
        assert fake.payloads[2]["variables"] == {"query": "login", "first": 10}

    async def test_update_only_sent_fields(self, client, auth_headers):
        fake = FakeLinear({"data": {"issueUpdate": {"success": True}}})
        with patch("dollyland.api.v1.integrations.LinearService", new=fake.service):
            await client.patch(
                "/api/v1/integrations/linear/issues/i1", json={"state_id": "s2"}, headers=auth_headers
            )
        assert fake.payloads[0]["variables"]["input"] == {"id": "i1", "stateId": "s2"}

    async def test_missing_key(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "LINEAR_API_KEY", "")
        resp = await client.get("/api/v1/integrations/linear/teams", headers=auth_headers)
        assert resp.status_code == 500
        assert resp.json()["error"] == "LINEAR_API_KEY 未配置"
