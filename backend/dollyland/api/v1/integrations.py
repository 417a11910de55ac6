"""
第三方集成API：GitHub、Linear（平台级凭据，每次调用记录 integration_logs）
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from dollyland.core.database import get_db
from dollyland.core.exceptions import ExternalServiceError
from dollyland.schemas.integrations import (
    CreateRepoRequest,
    CreateRepoResponse,
    RepositoryListResponse,
    CommitFilesRequest,
    CommitFilesResponse,
    LinearIssueCreate,
    LinearIssueUpdate,
)
from dollyland.schemas.auth import UserResponse
from dollyland.api.v1.auth import get_current_active_user
from dollyland.services.audit_service import log_integration
from dollyland.services.github_service import GitHubService, to_summary
from dollyland.services.linear_service import LinearService, is_success

router = APIRouter()


# ---------- GitHub ----------

@router.post("/github/repos", response_model=CreateRepoResponse)
async def create_repository(
    body: CreateRepoRequest,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """创建仓库；指定模板时初始化项目文件"""
    github = GitHubService()
    try:
        repo = await github.create_repository(
            body.name, body.description, body.private, body.agent_id, body.template
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExternalServiceError as e:
        await log_integration(db, current_user.id, "github", "create_repo", False, {"name": body.name, "error": e.message})
        raise
    files_created = await github.setup_template(repo, body.template) if body.template else []
    await log_integration(db, current_user.id, "github", "create_repo", True, {
        "repository": repo.get("full_name"),
        "agent_id": body.agent_id,
        "template": body.template,
    })
    return CreateRepoResponse(repository=to_summary(repo), files_created=files_created)


@router.get("/github/repos", response_model=RepositoryListResponse)
async def list_repositories(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """最近更新的仓库（最多 50 个）"""
    try:
        repos = await GitHubService().list_repositories()
    except ExternalServiceError as e:
        await log_integration(db, current_user.id, "github", "list_repos", False, {"error": e.message})
        raise
    await log_integration(db, current_user.id, "github", "list_repos", True, {"count": len(repos)})
    return RepositoryListResponse(repositories=[to_summary(r) for r in repos])


@router.post("/github/repos/{owner}/{repo}/files", response_model=CommitFilesResponse)
async def commit_files(
    owner: str,
    repo: str,
    body: CommitFilesRequest,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """提交文件到仓库，已存在的文件覆盖"""
    full_name = f"{owner}/{repo}"
    try:
        committed = await GitHubService().commit_files(full_name, body.files, body.message, body.branch)
    except ExternalServiceError as e:
        await log_integration(db, current_user.id, "github", "commit_files", False, {"repository": full_name, "error": e.message})
        raise
    await log_integration(db, current_user.id, "github", "commit_files", True, {"repository": full_name, "files": committed})
    return CommitFilesResponse(success=True, committed=committed)


# ---------- Linear ----------

async def _linear_call(db: AsyncSession, user_id: int, action: str, result: Dict[str, Any], meta: Optional[dict] = None):
    await log_integration(db, user_id, "linear", action, is_success(result), meta)
    return result


@router.get("/linear/teams")
async def linear_teams(
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LinearService().get_teams()
    return await _linear_call(db, current_user.id, "getTeams", result)


@router.post("/linear/issues")
async def linear_create_issue(
    body: LinearIssueCreate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LinearService().create_issue(
        body.team_id, body.title, body.description, body.assignee_id, body.priority, body.label_ids
    )
    return await _linear_call(db, current_user.id, "createIssue", result, {"team_id": body.team_id})


@router.get("/linear/issues/search")
async def linear_search_issues(
    query: str,
    limit: int = 10,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LinearService().search_issues(query, limit)
    return await _linear_call(db, current_user.id, "searchIssues", result, {"query": query})


@router.get("/linear/issues")
async def linear_get_issues(
    team_id: Optional[str] = None,
    limit: int = 20,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LinearService().get_issues(team_id, limit)
    return await _linear_call(db, current_user.id, "getIssues", result, {"team_id": team_id})


@router.patch("/linear/issues/{issue_id}")
async def linear_update_issue(
    issue_id: str,
    body: LinearIssueUpdate,
    current_user: UserResponse = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LinearService().update_issue(issue_id, **body.model_dump(exclude_unset=True))
    return await _linear_call(db, current_user.id, "updateIssue", result, {"issue_id": issue_id})
