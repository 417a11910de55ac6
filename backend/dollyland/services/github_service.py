"""
GitHub 集成：创建仓库、模板初始化、列出仓库、提交文件
"""
import base64
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from dollyland.core.config import settings
from dollyland.core.exceptions import ConfigurationError, ExternalServiceError
from dollyland.schemas.integrations import RepositorySummary

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github.v3+json"


def _package_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2)


def template_files(template: str, repo_name: str) -> Dict[str, str]:
    """项目模板文件：path -> 内容；未知模板返回空"""
    if template == "react":
        return {
            "package.json": _package_json({
                "name": repo_name,
                "version": "0.1.0",
                "private": True,
                "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0", "react-scripts": "5.0.1"},
                "scripts": {
                    "start": "react-scripts start",
                    "build": "react-scripts build",
                    "test": "react-scripts test",
                },
            }),
            "src/App.js": (
                "import React from 'react';\n\n"
                "function App() {\n"
                "  return (\n"
                "    <div className=\"App\">\n"
                f"      <h1>Welcome to {repo_name}</h1>\n"
                "      <p>This project was created by an AI Agent!</p>\n"
                "    </div>\n"
                "  );\n"
                "}\n\n"
                "export default App;\n"
            ),
            "src/index.js": (
                "import React from 'react';\n"
                "import ReactDOM from 'react-dom/client';\n"
                "import App from './App';\n\n"
                "const root = ReactDOM.createRoot(document.getElementById('root'));\n"
                "root.render(<App />);\n"
            ),
            "public/index.html": (
                "<!DOCTYPE html>\n<html lang=\"en\">\n  <head>\n    <meta charset=\"utf-8\" />\n"
                f"    <title>{repo_name}</title>\n  </head>\n"
                "  <body>\n    <div id=\"root\"></div>\n  </body>\n</html>\n"
            ),
        }
    if template == "nextjs":
        return {
            "package.json": _package_json({
                "name": repo_name,
                "version": "0.1.0",
                "private": True,
                "scripts": {"dev": "next dev", "build": "next build", "start": "next start"},
                "dependencies": {"next": "latest", "react": "^18", "react-dom": "^18"},
            }),
            "pages/index.js": (
                "export default function Home() {\n"
                "  return (\n    <div>\n"
                f"      <h1>Welcome to {repo_name}</h1>\n"
                "      <p>This Next.js project was created by an AI Agent!</p>\n"
                "    </div>\n  );\n}\n"
            ),
            "next.config.js": "module.exports = { reactStrictMode: true };\n",
        }
    if template == "vanilla":
        return {
            "index.html": (
                "<!DOCTYPE html>\n<html lang=\"en\">\n<head>\n    <meta charset=\"UTF-8\">\n"
                f"    <title>{repo_name}</title>\n    <link rel=\"stylesheet\" href=\"style.css\">\n</head>\n"
                f"<body>\n    <h1>Welcome to {repo_name}</h1>\n    <script src=\"script.js\"></script>\n</body>\n</html>\n"
            ),
            "style.css": "body {\n    font-family: Arial, sans-serif;\n    max-width: 800px;\n    margin: 0 auto;\n}\n",
            "script.js": f"console.log('{repo_name} is ready!');\n",
        }
    if template == "node":
        return {
            "package.json": _package_json({
                "name": repo_name,
                "version": "1.0.0",
                "main": "index.js",
                "scripts": {"start": "node index.js"},
                "dependencies": {"express": "^4.18.0"},
            }),
            "index.js": (
                "const express = require('express');\n"
                "const app = express();\n"
                "const port = process.env.PORT || 3000;\n\n"
                f"app.get('/', (req, res) => res.json({{ message: 'Welcome to {repo_name}!' }}));\n\n"
                "app.listen(port, () => console.log(`Server running on port ${port}`));\n"
            ),
            "README.md": f"# {repo_name}\n\nThis Node.js project was created by an AI Agent.\n\n```bash\nnpm install\nnpm start\n```\n",
        }
    return {}


def to_summary(repo: Dict[str, Any]) -> RepositorySummary:
    return RepositorySummary(
        id=repo["id"],
        name=repo["name"],
        full_name=repo["full_name"],
        url=repo.get("html_url") or "",
        clone_url=repo.get("clone_url"),
        ssh_url=repo.get("ssh_url"),
        default_branch=repo.get("default_branch"),
    )


class GitHubService:
    """GitHub REST API 封装（平台级 GITHUB_TOKEN）"""

    def __init__(self, token: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token if token is not None else settings.GITHUB_TOKEN
        if not self.token:
            raise ConfigurationError("GITHUB_TOKEN 未配置")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.GITHUB_API_URL.rstrip("/"),
            headers={"Authorization": f"Bearer {self.token}", "Accept": GITHUB_ACCEPT},
            timeout=settings.INTEGRATION_TIMEOUT,
            transport=self._transport,
        )

    @staticmethod
    def _raise_for(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            message = resp.json().get("message") or resp.text
        except ValueError:
            message = resp.text
        raise ExternalServiceError("github", f"GitHub API error: {message}", resp.status_code)

    async def create_repository(
        self,
        name: str,
        description: Optional[str] = None,
        private: bool = False,
        agent_id: Optional[int] = None,
        template: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValueError("仓库名称不能为空")
        default_desc = "Repository created by AI Agent" + (f" (Agent ID: {agent_id})" if agent_id else "")
        payload: Dict[str, Any] = {
            "name": name.strip(),
            "description": description or default_desc,
            "private": private,
            "auto_init": True,
        }
        if template == "node":
            payload["gitignore_template"] = "Node"
        async with self._client() as client:
            try:
                resp = await client.post("/user/repos", json=payload)
            except httpx.HTTPError as e:
                raise ExternalServiceError("github", str(e))
        self._raise_for(resp)
        repo = resp.json()
        logger.info("GitHub 仓库已创建: %s", repo.get("full_name"))
        return repo

    async def setup_template(self, repo: Dict[str, Any], template: str) -> List[str]:
        """按模板逐个创建文件；单个文件失败只记录日志"""
        created: List[str] = []
        for path, content in template_files(template, repo["name"]).items():
            try:
                await self.put_file(repo["full_name"], path, content, f"Add {path}")
                created.append(path)
            except ExternalServiceError as e:
                logger.warning("模板文件创建失败 %s/%s: %s", repo["full_name"], path, e)
        return created

    async def list_repositories(self, limit: int = 50) -> List[Dict[str, Any]]:
        async with self._client() as client:
            try:
                resp = await client.get("/user/repos", params={"sort": "updated", "per_page": limit})
            except httpx.HTTPError as e:
                raise ExternalServiceError("github", str(e))
        self._raise_for(resp)
        return resp.json()

    async def get_file_sha(self, full_name: str, path: str, branch: Optional[str] = None) -> Optional[str]:
        params = {"ref": branch} if branch else None
        async with self._client() as client:
            try:
                resp = await client.get(f"/repos/{full_name}/contents/{path}", params=params)
            except httpx.HTTPError as e:
                raise ExternalServiceError("github", str(e))
        if resp.status_code == 404:
            return None
        self._raise_for(resp)
        return resp.json().get("sha")

    async def put_file(
        self,
        full_name: str,
        path: str,
        content: str,
        message: str,
        sha: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if sha:
            body["sha"] = sha
        if branch:
            body["branch"] = branch
        async with self._client() as client:
            try:
                resp = await client.put(f"/repos/{full_name}/contents/{path}", json=body)
            except httpx.HTTPError as e:
                raise ExternalServiceError("github", str(e))
        self._raise_for(resp)
        return resp.json()

    async def commit_files(
        self,
        full_name: str,
        files: Dict[str, str],
        message: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> List[str]:
        """逐个提交文件，已存在的文件带 sha 覆盖"""
        committed: List[str] = []
        for path, content in files.items():
            sha = await self.get_file_sha(full_name, path, branch)
            await self.put_file(full_name, path, content, message or f"Update {path}", sha=sha, branch=branch)
            committed.append(path)
        return committed
