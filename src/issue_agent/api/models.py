"""Request bodies accepted by the analyze endpoints."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, model_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError


class ProviderOverrides(BaseModel):
    """Per-request provider connection overrides; blank values defer to settings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    type: Literal["openai"] = "openai"
    base_url: Optional[str] = Field(default=None, alias="baseURL")
    api_key: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None
    name: Optional[str] = None


class AnalyzeRequestBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    issue_url: Optional[HttpUrl] = None
    repo: Optional[str] = Field(default=None, pattern=r"^[^/]+/[^/]+$")
    issue_number: Optional[int] = Field(default=None, gt=0)
    github_token: Optional[str] = None
    lang: Optional[str] = Field(default=None, min_length=2, max_length=40)
    model: Optional[str] = Field(default=None, min_length=2, max_length=80)
    api_type: Optional[Literal["responses", "chat"]] = None
    mode: Optional[Literal["markdown", "structured"]] = None
    provider: Optional[ProviderOverrides] = None

    @model_validator(mode="after")
    def _require_issue_identity(self) -> "AnalyzeRequestBody":
        if self.issue_url is None and not (self.repo and self.issue_number):
            raise PydanticCustomError("issue_identity", "Provide issueUrl OR repo + issueNumber")
        return self

    def run_meta(self, lang: str, model: str, api_type: str) -> dict:
        return {
            "issueUrl": str(self.issue_url) if self.issue_url is not None else None,
            "repo": self.repo,
            "issueNumber": self.issue_number,
            "model": model,
            "apiType": api_type,
            "lang": lang,
        }


__all__ = ["AnalyzeRequestBody", "ProviderOverrides"]
