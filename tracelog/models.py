"""Pydantic models for the normalized run result handed to renderers and clients."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Any, Optional


class RunOverview(BaseModel):
    success: bool = False
    executionId: str = "N/A"
    userId: str = "N/A"
    projectId: str = "N/A"
    duration: str = "N/A"
    startedAt: str = "N/A"
    finishedAt: str = "N/A"
    format: str = "UNKNOWN"  # "STANDARD" | "DIRECT" | "UNKNOWN"
    error: Optional[str] = None


class RunSummary(BaseModel):
    userInput: Any = ""
    finalOutput: Any = ""


class StepError(BaseModel):
    stepId: Optional[str] = None
    stepType: Optional[str] = None
    message: str


class ParseResult(BaseModel):
    overview: RunOverview = Field(default_factory=RunOverview)
    summary: RunSummary = Field(default_factory=RunSummary)
    # Canonical steps keep their type-specific keys; absent optional fields are omitted.
    steps: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[StepError] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload = self.model_dump()
        if payload["overview"].get("error") is None:
            payload["overview"].pop("error", None)
        payload["errors"] = [
            {key: value for key, value in entry.items() if value is not None}
            for entry in payload["errors"]
        ]
        return payload


class RunStats(BaseModel):
    stepCount: int = 0
    failedStepCount: int = 0
    stepsByType: dict[str, int] = Field(default_factory=dict)
    totalTokens: int = 0
    models: list[str] = Field(default_factory=list)
