"""
第三方集成 Schema：GitHub、Linear
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Literal

RepoTemplate = Literal["react", "nextjs", "vanilla", "node"]


class CreateRepoRequest(BaseModel):
    """创建 GitHub 仓库"""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    private: bool = False
    agent_id: Optional[int] = None
    template: Optional[RepoTemplate] = None


class RepositorySummary(BaseModel):
    id: int
    name: str
    full_name: str
    url: str
    clone_url: Optional[str] = None
    ssh_url: Optional[str] = None
    default_branch: Optional[str] = None


class CreateRepoResponse(BaseModel):
    success: bool = True
    repository: RepositorySummary
    files_created: List[str] = []


class RepositoryListResponse(BaseModel):
    repositories: List[RepositorySummary]


class CommitFilesRequest(BaseModel):
    """向仓库提交文件：path -> 文本内容"""
    files: Dict[str, str] = Field(..., min_length=1)
    message: Optional[str] = None
    branch: Optional[str] = None


class CommitFilesResponse(BaseModel):
    success: bool
    committed: List[str]


class LinearIssueCreate(BaseModel):
    """创建 Linear Issue"""
    team_id: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = Field(None, ge=0, le=4)
    label_ids: Optional[List[str]] = None


class LinearIssueUpdate(BaseModel):
    """更新 Linear Issue（仅传入字段）"""
    state_id: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = Field(None, ge=0, le=4)
    title: Optional[str] = None
    description: Optional[str] = None
