"""
Linear 集成（GraphQL）
"""
from typing import Any, Dict, Optional

import httpx

from dollyland.core.config import settings
from dollyland.core.exceptions import ConfigurationError, ExternalServiceError

TEAMS_QUERY = """
query {
  teams {
    nodes {
      id
      name
      description
      states { nodes { id name color type } }
    }
  }
}
"""

ISSUE_CREATE_MUTATION = """
mutation IssueCreate($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id title identifier url state { name } team { name } }
  }
}
"""

ISSUES_QUERY = """
query Issues($filter: IssueFilter, $first: Int) {
  issues(filter: $filter, first: $first) {
    nodes {
      id
      title
      identifier
      description
      url
      state { name color type }
      assignee { name email }
      team { name }
      labels { nodes { name color } }
      createdAt
      updatedAt
    }
  }
}
"""

ISSUE_UPDATE_MUTATION = """
mutation IssueUpdate($input: IssueUpdateInput!) {
  issueUpdate(input: $input) {
    success
    issue { id title state { name } }
  }
}
"""

SEARCH_ISSUES_QUERY = """
query SearchIssues($query: String!, $first: Int) {
  searchIssues(query: $query, first: $first) {
    nodes {
      id
      title
      identifier
      description
      url
      state { name color }
      team { name }
      assignee { name }
    }
  }
}
"""


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


class LinearService:
    """Linear GraphQL 封装；结果原样返回，errors 由调用方判断"""

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key if api_key is not None else settings.LINEAR_API_KEY
        if not self.api_key:
            raise ConfigurationError("LINEAR_API_KEY 未配置")
        self._transport = transport

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables
        async with httpx.AsyncClient(timeout=settings.INTEGRATION_TIMEOUT, transport=self._transport) as client:
            try:
                resp = await client.post(
                    settings.LINEAR_API_URL,
                    json=payload,
                    headers={"Authorization": self.api_key, "Content-Type": "application/json"},
                )
            except httpx.HTTPError as e:
                raise ExternalServiceError("linear", str(e))
        try:
            return resp.json()
        except ValueError:
            raise ExternalServiceError("linear", resp.text[:300], resp.status_code)

    async def get_teams(self) -> Dict[str, Any]:
        return await self.execute(TEAMS_QUERY)

    async def create_issue(
        self,
        team_id: str,
        title: str,
        description: Optional[str] = None,
        assignee_id: Optional[str] = None,
        priority: Optional[int] = None,
        label_ids: Optional[list] = None,
    ) -> Dict[str, Any]:
        return await self.execute(ISSUE_CREATE_MUTATION, {"input": _compact({
            "teamId": team_id,
            "title": title,
            "description": description,
            "assigneeId": assignee_id,
            "priority": priority,
            "labelIds": label_ids,
        })})

    async def get_issues(self, team_id: Optional[str] = None, limit: int = 20) -> Dict[str, Any]:
        return await self.execute(ISSUES_QUERY, {
            "filter": {"team": {"id": {"eq": team_id}}} if team_id else {},
            "first": limit,
        })

    async def update_issue(self, issue_id: str, **fields: Any) -> Dict[str, Any]:
        key_map = {
            "state_id": "stateId",
            "assignee_id": "assigneeId",
            "priority": "priority",
            "title": "title",
            "description": "description",
        }
        data = {"id": issue_id}
        for key, value in fields.items():
            if key in key_map and value is not None:
                data[key_map[key]] = value
        return await self.execute(ISSUE_UPDATE_MUTATION, {"input": data})

    async def search_issues(self, query: str, limit: int = 10) -> Dict[str, Any]:
        return await self.execute(SEARCH_ISSUES_QUERY, {"query": query, "first": limit})


def is_success(result: Dict[str, Any]) -> bool:
    return not result.get("errors")
