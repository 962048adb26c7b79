"""State and result models for the Page Summary pipeline."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from flowstate.graph import Input, UpsertByKey, WorkflowState

Importance = Literal["critical", "important", "optional"]
RiskLevel = Literal["low", "medium", "high", "critical"]


class PageContent(BaseModel):
    """Readable page content produced by the (external) extractor."""

    title: str = ""
    text_content: str = ""
    excerpt: str = ""
    url: str = ""


class PageAction(BaseModel):
    """An interactive element found on the page."""

    label: str
    type: str = "button"
    href: str | None = None
    disabled: bool = False
    importance: str = "unknown"


class IdentifiedCTA(BaseModel):
    label: str
    purpose: str = ""
    importance: Importance = "optional"
    original_action: PageAction | None = None


class PageSection(BaseModel):
    title: str
    summary: str = ""


class PageStructure(BaseModel):
    page_type: str = "unknown"
    main_purpose: str = "Unknown purpose"
    sections: list[PageSection] = Field(default_factory=list)
    complexity: Literal["simple", "moderate", "complex"] = "moderate"


class FinancialAction(BaseModel):
    action: str
    description: str = ""
    risk: Literal["low", "medium", "high"] = "medium"
    reversible: bool = False
    warning: str = ""


class DarkPattern(BaseModel):
    type: str = "other"
    description: str = ""
    location: str = ""
    severity: Literal["minor", "moderate", "severe"] = "minor"


class SecurityAnalysis(BaseModel):
    risk_level: RiskLevel = "low"
    financial_actions: list[FinancialAction] = Field(default_factory=list)
    data_collection_warnings: list[str] = Field(default_factory=list)
    dark_patterns: list[DarkPattern] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class LegalNote(BaseModel):
    original: str = ""
    simplified: str
    importance: Literal["high", "medium", "low"] = "medium"


class SummaryContent(BaseModel):
    """The user-facing part of a summary, shared by writers and the arbiter."""

    title: str = "Page Summary"
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    legal_notes: list[LegalNote] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class WriterOutput(SummaryContent):
    writer_id: Literal["compassionate", "technical"]
    tone: str = ""
    reasoning: str = ""


class WriterReply(SummaryContent):
    """What a writer model is asked to return; the stage adds writer_id."""

    tone: str = ""
    reasoning: str = ""


class Disagreement(BaseModel):
    topic: str
    compassionate_view: str = ""
    technical_view: str = ""
    resolution: str = ""


class ArbiterDecision(BaseModel):
    chosen_writer: Literal["compassionate", "technical", "merged"] = "merged"
    reasoning: str = ""
    merged_content: SummaryContent
    disagreements: list[Disagreement] = Field(default_factory=list)


class QualityReport(BaseModel):
    is_complete: bool = True
    missing_critical_info: list[str] = Field(default_factory=list)
    oversimplifications: list[str] = Field(default_factory=list)
    security_concerns_addressed: bool = True
    accuracy: Literal["high", "medium", "low"] = "medium"
    suggestions: list[str] = Field(default_factory=list)
    approved: bool = True
    revision_instructions: str | None = None


class NavigatorReply(BaseModel):
    page_type: str = "unknown"
    main_purpose: str = "Unknown purpose"
    complexity: Literal["simple", "moderate", "complex"] = "moderate"
    sections: list[PageSection] = Field(default_factory=list)
    identified_ctas: list[IdentifiedCTA] = Field(default_factory=list)


class PageSummaryState(WorkflowState):
    """State of one summarization run."""

    # Inputs
    page: Annotated[PageContent, Input()] = Field(default_factory=PageContent)
    actions: Annotated[list[PageAction], Input()] = Field(default_factory=list)
    custom_prompt: Annotated[str, Input()] = ""

    # Navigator
    identified_ctas: list[IdentifiedCTA] = Field(default_factory=list)
    page_structure: PageStructure | None = None

    # Security sentinel
    security_analysis: SecurityAnalysis | None = None

    # Writers (one entry per writer, revised in place)
    writer_outputs: Annotated[list[WriterOutput], UpsertByKey("writer_id")] = Field(
        default_factory=list
    )

    # Arbiter / guardian
    arbiter_decision: ArbiterDecision | None = None
    quality_report: QualityReport | None = None

    final_summary: str | None = None
