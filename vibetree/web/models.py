"""Pydantic models for web API requests.

Request bodies accept both snake_case and the camelCase names the browser
client sends (repoPath, taskId, ...).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConfigUpdate(ApiModel):
    """Config update request. Omitted fields are left unchanged."""

    repo_path: Optional[str] = None
    ai_tool: Optional[str] = None
    copy_files: Optional[str] = None


class RepositoryCreate(ApiModel):
    path: str
    copy_files: Optional[str] = None


class RepositoryUpdate(ApiModel):
    """Repository update request. An empty worktree_path or ai_tool clears the override."""

    path: Optional[str] = None
    copy_files: Optional[str] = None
    worktree_path: Optional[str] = None
    ai_tool: Optional[str] = None


class TaskCreate(ApiModel):
    repo_path: str
    title: str = ""
    description: str = ""


class TaskUpdate(ApiModel):
    title: Optional[str] = None
    description: Optional[str] = None


class RepoRef(ApiModel):
    repo_path: str


class TaskRef(ApiModel):
    repo_path: str
    task_id: str


class CommitRequest(ApiModel):
    repo_path: str
    task_id: Optional[str] = None
    message: str


class RebaseRequest(TaskRef):
    base_branch: str


class PushRequest(TaskRef):
    commit_message: str


class PullRequestCreate(TaskRef):
    title: str
    body: str = ""
    base_branch: str


class PathRequest(ApiModel):
    path: str
