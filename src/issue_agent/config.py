"""Application configuration using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ApiType = Literal["responses", "chat"]
AnalysisMode = Literal["markdown", "structured"]

PACKAGE_SKILLS_DIR = Path(__file__).resolve().parent / "data" / "skills"


class EvidenceBudget(BaseModel):
    """Bounds applied by the evidence collector to a single run."""

    max_queries: int = Field(default=8, ge=1)
    max_files: int = Field(default=10, ge=1)
    search_per_query: int = Field(default=8, ge=1, le=100)
    max_chars_per_file: int = Field(default=4500, ge=1)


class RunStoreConfig(BaseModel):
    """Retention policy for the in-memory run registry."""

    ttl_seconds: float = Field(default=60 * 60, gt=0)
    max_runs: int = Field(default=60, ge=1)


class Settings(BaseSettings):
    """Central application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ISSUE_AGENT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    openai_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ISSUE_AGENT_OPENAI_API_KEY", "OPENAI_API_KEY")
    )
    openai_base_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ISSUE_AGENT_OPENAI_BASE_URL", "OPENAI_BASE_URL")
    )
    openai_organization: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ISSUE_AGENT_OPENAI_ORGANIZATION", "OPENAI_ORGANIZATION")
    )
    openai_project: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ISSUE_AGENT_OPENAI_PROJECT", "OPENAI_PROJECT")
    )
    openai_provider_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ISSUE_AGENT_OPENAI_PROVIDER_NAME", "OPENAI_PROVIDER_NAME")
    )
    openai_api_type: ApiType = Field(
        default="responses", validation_alias=AliasChoices("ISSUE_AGENT_OPENAI_API_TYPE", "OPENAI_API_TYPE")
    )
    github_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ISSUE_AGENT_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")
    )

    github_api_url: str = "https://api.github.com"
    github_timeout: float = 30.0
    provider_timeout: float = 120.0
    provider_max_attempts: int = Field(default=3, ge=1)

    model: str = "gpt-4.1"
    language: str = "zh-CN"
    mode: AnalysisMode = "markdown"
    output_dir: Path = Field(default=Path("reports"))
    skills_dir: Path = Field(default=PACKAGE_SKILLS_DIR)

    evidence: EvidenceBudget = Field(default_factory=EvidenceBudget)
    runs: RunStoreConfig = Field(default_factory=RunStoreConfig)

    @field_validator("openai_api_type", mode="before")
    @classmethod
    def _normalise_api_type(cls, value: Any) -> str:
        # Anything other than an explicit "chat" selects the Responses API.
        return "chat" if str(value or "").strip().lower() == "chat" else "responses"

    def to_dict(self) -> Dict[str, Any]:
        """Return settings as a dictionary with secrets masked."""

        payload = self.model_dump(mode="json")
        for key in ("openai_api_key", "github_token"):
            payload[key] = "set" if payload.get(key) else "unset"
        return payload


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return process-wide settings loaded from the environment."""

    return Settings()


__all__ = [
    "AnalysisMode",
    "ApiType",
    "EvidenceBudget",
    "PACKAGE_SKILLS_DIR",
    "RunStoreConfig",
    "Settings",
    "get_settings",
]
