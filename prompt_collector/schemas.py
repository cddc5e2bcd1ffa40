# prompt_collector/schemas.py
from typing import List, Optional, Any, Dict, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime

Complexity = Literal["simple", "moderate", "complex"]
IssueSeverity = Literal["low", "medium", "high"]
InsightSeverity = Literal["info", "suggestion", "warning"]


class StructuralSignals(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_context: bool
    has_examples: bool
    has_constraints: bool
    has_expected_output: bool
    clarity_score: float = Field(ge=0.0, le=10.0)


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str  # "missing_context" | "too_broad" | "ambiguity" | "bias"
    description: str
    severity: IssueSeverity


class Analysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    quality_score: float = Field(ge=0.0, le=10.0)
    complexity: Complexity
    structure: StructuralSignals
    issues: List[Issue]
    suggested_technique: str
    technique_rationale: str


class InsightDraft(BaseModel):
    """An insight as produced by a miner detector, before the store assigns id/created_at."""
    type: str
    severity: InsightSeverity
    title: str
    description: Optional[str] = None
    evidence: Dict[str, Any] = Field(default_factory=dict)
    prompt_ids: List[str] = Field(default_factory=list)
    acknowledged: bool = False

    @field_validator("prompt_ids")
    @classmethod
    def cap_evidence_sample(cls, v):
        # evidence sample is at most 10 prompt ids
        return v[:10]


class Insight(InsightDraft):
    id: str
    created_at: datetime
