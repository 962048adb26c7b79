"""Stage definitions for the Page Summary pipeline.

Every stage takes the State snapshot it is handed and returns a partial
update. The model-backed stages ask a CompletionBackend for JSON and parse
it at the stage boundary: the writers parse strictly, so a bad reply
becomes a contained stage failure, while the security sentinel, arbiter and
guardian fall back to safe defaults.
"""

import logging
from typing import Any

from flowstate.graph import FallbackStrategy, Stage, StructuredOutput
from flowstate.runtime import ActionKind, create_log_entry

from ..backend import CompletionBackend
from ..models import (
    ArbiterDecision,
    IdentifiedCTA,
    NavigatorReply,
    PageAction,
    PageStructure,
    PageSummaryState,
    QualityReport,
    SecurityAnalysis,
    SummaryContent,
    WriterOutput,
    WriterReply,
)

logger = logging.getLogger(__name__)

STATE = "state"
CONTENT_LIMIT = 8000
WRITER_CONTENT_LIMIT = 6000
REVIEW_CONTENT_LIMIT = 4000
MAX_PROMPT_ACTIONS = 20

JSON_ONLY = "Respond with ONLY valid JSON. No markdown fences, no text before or after."

# Stage 1: Navigator
# Maps the page: what it is for, its sections, and the calls to action.
NAVIGATOR_SYSTEM = f"""\
You are the Navigator agent. You map unfamiliar web pages for people who find them hard to read.

Work out what kind of page this is, what it is for, how it is organised, and which
buttons or links actually matter to the visitor.

{JSON_ONLY}
Shape:
{{
  "page_type": "article | form | checkout | login | search | product | settings | other",
  "main_purpose": "one sentence",
  "complexity": "simple | moderate | complex",
  "sections": [{{"title": "...", "summary": "..."}}],
  "identified_ctas": [{{"label": "...", "purpose": "...", "importance": "critical | important | optional"}}]
}}
"""

# Stage 2: Security sentinel
# Looks for money, data and manipulation risks before anything is written.
SECURITY_SYSTEM = f"""\
You are the Security Sentinel agent. You protect visitors from costly or manipulative pages.

Look for hidden fees, automatic renewals, data collection that is easy to miss,
dark patterns (urgency, scarcity, confirmshaming, misdirection, hidden costs,
forced continuity) and actions that cannot be undone. When the page is safe,
say so with risk_level "low" and a reassuring recommendation.

{JSON_ONLY}
Shape:
{{
  "risk_level": "low | medium | high | critical",
  "financial_actions": [{{"action": "...", "description": "...", "risk": "low | medium | high",
                         "reversible": true, "warning": "..."}}],
  "data_collection_warnings": ["..."],
  "dark_patterns": [{{"type": "...", "description": "...", "location": "...",
                     "severity": "minor | moderate | severe"}}],
  "recommendations": ["..."]
}}
"""

_WRITER_SHAPE = f"""\
{JSON_ONLY}
Shape:
{{
  "title": "...",
  "summary": "...",
  "key_points": ["..."],
  "legal_notes": [{{"original": "...", "simplified": "...", "importance": "high | medium | low"}}],
  "warnings": ["..."],
  "tone": "...",
  "reasoning": "why you wrote it this way"
}}
"""

# Stage 3a: Compassionate writer (parallel)
COMPASSIONATE_SYSTEM = f"""\
You are the Compassionate Writer agent. You explain pages to readers who are anxious or overwhelmed.

Your readers may be older, new to the web, living with a cognitive disability or
reading in a second language. Write warmly and simply: short sentences, everyday
words, never condescending.

{_WRITER_SHAPE}"""

# Stage 3b: Technical writer (parallel)
TECHNICAL_SYSTEM = f"""\
You are the Technical Writer agent. You distil pages into precise, actionable facts.

Your readers want the specifics (prices, dates, requirements) and the next step,
without filler. Prefer bullet points and numbers over prose.

{_WRITER_SHAPE}"""

# Stage 4: Arbiter
# Compares both drafts and produces the version the reader will see.
ARBITER_SYSTEM = f"""\
You are the Arbiter agent. You judge two competing drafts of the same page summary.

Decide whether this page calls for the warm or the precise approach, note where
the drafts disagree and how you settled it, and produce the merged content.

{JSON_ONLY}
Shape:
{{
  "chosen_writer": "compassionate | technical | merged",
  "reasoning": "...",
  "disagreements": [{{"topic": "...", "compassionate_view": "...", "technical_view": "...",
                     "resolution": "..."}}],
  "merged_content": {{"title": "...", "summary": "...", "key_points": ["..."],
                     "legal_notes": [{{"original": "...", "simplified": "...", "importance": "high"}}],
                     "warnings": ["..."]}}
}}
"""

# Stage 5: Guardian (quality gate)
# Reviews the merged content; a rejection sends it back for revision.
GUARDIAN_SYSTEM = f"""\
You are the Guardian agent. You are the last check before a summary reaches a vulnerable reader.

Check completeness (every critical action mentioned), accuracy (the meaning
survived simplification), security (every risk communicated) and clarity.
When you do not approve, say exactly what to change in revision_instructions.

{JSON_ONLY}
Shape:
{{
  "is_complete": true,
  "missing_critical_info": [],
  "oversimplifications": [],
  "security_concerns_addressed": true,
  "accuracy": "high | medium | low",
  "suggestions": [],
  "approved": true,
  "revision_instructions": null
}}
"""


def _format_actions(actions: list[PageAction]) -> str:
    if not actions:
        return "No actions detected"
    lines = []
    for action in actions[:MAX_PROMPT_ACTIONS]:
        line = f'- [{action.type}] "{action.label}"'
        if action.href:
            line += f" -> {action.href}"
        if action.disabled:
            line += " (disabled)"
        lines.append(f"{line} [{action.importance}]")
    return "\n".join(lines)


def _format_ctas(ctas: list[IdentifiedCTA]) -> str:
    if not ctas:
        return "No CTAs identified"
    return "\n".join(f'- "{c.label}" [{c.importance}]: {c.purpose}' for c in ctas)


def _dump(model) -> str:
    return "null" if model is None else model.model_dump_json(indent=2)


def _match_action(label: str, actions: list[PageAction]) -> PageAction:
    """Find the page element a CTA label refers to, or synthesise one."""
    needle = label.lower()
    for action in actions:
        candidate = action.label.lower()
        if needle in candidate or candidate in needle:
            return action
    return PageAction(label=label)


def _cautious_security() -> SecurityAnalysis:
    return SecurityAnalysis(
        risk_level="medium",
        recommendations=["Security analysis was inconclusive - proceed with caution"],
    )


def _adopt(output: WriterOutput, reasoning: str) -> ArbiterDecision:
    """Take one writer's draft as the decision unchanged."""
    content = output.model_dump(include=set(SummaryContent.model_fields))
    return ArbiterDecision(
        chosen_writer=output.writer_id,
        reasoning=reasoning,
        merged_content=SummaryContent.model_validate(content),
    )


def _writer_output(state: PageSummaryState, writer_id: str) -> WriterOutput | None:
    return next((w for w in state.writer_outputs if w.writer_id == writer_id), None)


class SummaryStages:
    """
    The model-backed stages, bound to one completion backend.

    Example:
        stages = SummaryStages(backend)
        for name, fn in stages.as_mapping().items():
            graph.add_stage(name, fn)
    """

    def __init__(self, backend: CompletionBackend):
        self.backend = backend
        self._navigator_reply = StructuredOutput(NavigatorReply, stage="navigator")
        self._security_reply = StructuredOutput(
            SecurityAnalysis,
            strategy=FallbackStrategy.LENIENT,
            fallback=_cautious_security,
            stage="security",
        )
        self._writer_replies = {
            "compassionate": StructuredOutput(WriterReply, stage="compassionate_writer"),
            "technical": StructuredOutput(WriterReply, stage="technical_writer"),
        }
        self._guardian_reply = StructuredOutput(
            QualityReport,
            strategy=FallbackStrategy.LENIENT,
            fallback=QualityReport,
            stage="guardian",
        )

    def as_mapping(self) -> dict[str, Stage]:
        return {
            "navigator": self.navigator,
            "security": self.security,
            "compassionate_writer": self.compassionate_writer,
            "technical_writer": self.technical_writer,
            "arbiter": self.arbiter,
            "guardian": self.guardian,
            "assemble": assemble,
        }

    async def navigator(self, state: PageSummaryState) -> dict[str, Any]:
        title = state.page.title or "Untitled"
        log = [
            create_log_entry(
                "navigator",
                STATE,
                ActionKind.ANALYZE,
                "Beginning page structure analysis",
                f"Analyzing page: {title}",
            )
        ]
        prompt = (
            f"PAGE TITLE: {title}\n\n"
            f"PAGE CONTENT:\n{state.page.text_content[:CONTENT_LIMIT]}\n\n"
            f"INTERACTIVE ELEMENTS:\n{_format_actions(state.actions)}"
        )
        reply = self._navigator_reply.parse(await self.backend.complete(NAVIGATOR_SYSTEM, prompt))

        ctas = [
            cta.model_copy(update={"original_action": _match_action(cta.label, state.actions)})
            for cta in reply.identified_ctas
        ]
        log.append(
            create_log_entry(
                "navigator",
                "security",
                ActionKind.OUTPUT,
                f"Identified {len(ctas)} CTAs, page type: {reply.page_type}",
                f"Complexity: {reply.complexity}, Purpose: {reply.main_purpose}",
            )
        )
        return {
            "page_structure": PageStructure(
                page_type=reply.page_type,
                main_purpose=reply.main_purpose,
                sections=reply.sections,
                complexity=reply.complexity,
            ),
            "identified_ctas": ctas,
            "communication_log": log,
        }

    async def security(self, state: PageSummaryState) -> dict[str, Any]:
        log = [
            create_log_entry(
                "security",
                STATE,
                ActionKind.ANALYZE,
                "Beginning security analysis",
                f"Analyzing {len(state.identified_ctas)} actions for risks",
            )
        ]
        prompt = (
            f"PAGE STRUCTURE:\n{_dump(state.page_structure)}\n\n"
            f"PAGE CONTENT:\n{state.page.text_content[:CONTENT_LIMIT]}\n\n"
            f"IDENTIFIED ACTIONS:\n{_format_ctas(state.identified_ctas)}"
        )
        analysis = self._security_reply.parse(await self.backend.complete(SECURITY_SYSTEM, prompt))

        log.append(
            create_log_entry(
                "security",
                "compassionate_writer",
                ActionKind.OUTPUT,
                f"Security analysis complete. Risk level: {analysis.risk_level}",
                f"Found {len(analysis.dark_patterns)} dark patterns, "
                f"{len(analysis.financial_actions)} financial actions",
            )
        )
        return {"security_analysis": analysis, "communication_log": log}

    async def compassionate_writer(self, state: PageSummaryState) -> dict[str, Any]:
        return await self._write(state, "compassionate", COMPASSIONATE_SYSTEM, default_tone="warm")

    async def technical_writer(self, state: PageSummaryState) -> dict[str, Any]:
        return await self._write(state, "technical", TECHNICAL_SYSTEM, default_tone="direct")

    async def _write(
        self,
        state: PageSummaryState,
        writer_id: str,
        system: str,
        default_tone: str,
    ) -> dict[str, Any]:
        stage = f"{writer_id}_writer"
        structure = state.page_structure or PageStructure()
        risk = state.security_analysis.risk_level if state.security_analysis else "unknown"
        log = [
            create_log_entry(
                stage,
                STATE,
                ActionKind.ANALYZE,
                f"Drafting {writer_id} summary",
                f"Page complexity: {structure.complexity}, Risk: {risk}",
            )
        ]

        prompt = (
            f"PAGE PURPOSE: {structure.main_purpose}\n"
            f"PAGE TYPE: {structure.page_type}\n"
            f"COMPLEXITY: {structure.complexity}\n\n"
            f"SECURITY CONCERNS:\n{_dump(state.security_analysis)}\n\n"
            f"ORIGINAL CONTENT:\n{state.page.text_content[:WRITER_CONTENT_LIMIT]}\n\n"
            f"KEY ACTIONS:\n{_format_ctas(state.identified_ctas)}"
        )
        report = state.quality_report
        if state.needs_revision and report is not None:
            feedback = report.revision_instructions or "; ".join(
                report.missing_critical_info + report.oversimplifications
            )
            prompt += f"\n\nREVISION REQUESTED BY QUALITY REVIEW:\n{feedback or 'Improve accuracy.'}"
        if state.custom_prompt:
            prompt += f"\n\nADDITIONAL INSTRUCTIONS:\n{state.custom_prompt}"

        reply = self._writer_replies[writer_id].parse(await self.backend.complete(system, prompt))
        output = WriterOutput(
            writer_id=writer_id,
            **reply.model_dump(exclude={"tone"}),
            tone=reply.tone or default_tone,
        )

        log.append(
            create_log_entry(
                stage,
                "arbiter",
                ActionKind.OUTPUT,
                f'Completed {writer_id} summary: "{output.title}"',
                f"Tone: {output.tone}",
            )
        )
        return {"writer_outputs": [output], "communication_log": log}

    async def arbiter(self, state: PageSummaryState) -> dict[str, Any]:
        compassionate = _writer_output(state, "compassionate")
        technical = _writer_output(state, "technical")

        if compassionate is None and technical is None:
            return {
                "errors": ["Arbiter missing all writer outputs"],
                "communication_log": [
                    create_log_entry("arbiter", STATE, ActionKind.OUTPUT, "No writer outputs available")
                ],
                "arbiter_decision": ArbiterDecision(
                    chosen_writer="merged",
                    reasoning="No writer outputs available, using fallback",
                    merged_content=SummaryContent(
                        title=state.page.title or "Page Summary",
                        summary=state.page.excerpt or "Unable to generate summary.",
                    ),
                ),
            }

        if compassionate is None or technical is None:
            available = compassionate or technical
            return {
                "communication_log": [
                    create_log_entry(
                        "arbiter",
                        STATE,
                        ActionKind.DECIDE,
                        f"Using only available output: {available.writer_id}",
                    )
                ],
                "arbiter_decision": _adopt(available, "Only one writer output available"),
            }

        structure = state.page_structure or PageStructure()
        risk = state.security_analysis.risk_level if state.security_analysis else "unknown"
        prompt = (
            f"PAGE CONTEXT:\n- Type: {structure.page_type}\n- Purpose: {structure.main_purpose}\n"
            f"- Risk Level: {risk}\n- Complexity: {structure.complexity}\n\n"
            f"COMPASSIONATE DRAFT:\n{_dump(compassionate)}\n\n"
            f"TECHNICAL DRAFT:\n{_dump(technical)}\n\n"
            f"SECURITY ANALYSIS:\n{_dump(state.security_analysis)}"
        )
        parser = StructuredOutput(
            ArbiterDecision,
            strategy=FallbackStrategy.LENIENT,
            fallback=lambda: _adopt(
                compassionate, "Arbiter reply unusable, defaulting to compassionate output"
            ),
            stage="arbiter",
        )
        decision = parser.parse(await self.backend.complete(ARBITER_SYSTEM, prompt))

        log = [
            create_log_entry(
                "arbiter",
                "guardian",
                ActionKind.DECIDE,
                f"Decision: {decision.chosen_writer}. "
                f"{len(decision.disagreements)} disagreements resolved.",
                decision.reasoning or None,
            )
        ]
        return {"arbiter_decision": decision, "communication_log": log}

    async def guardian(self, state: PageSummaryState) -> dict[str, Any]:
        decision = state.arbiter_decision
        if decision is None:
            return {
                "errors": ["Guardian missing arbiter decision"],
                "needs_revision": False,
                "quality_report": QualityReport(
                    is_complete=False,
                    missing_critical_info=["No arbiter decision"],
                    security_concerns_addressed=False,
                    accuracy="low",
                    approved=False,
                ),
            }

        log = [
            create_log_entry(
                "guardian",
                STATE,
                ActionKind.ANALYZE,
                "Reviewing merged summary",
                f"Review {state.revision_count + 1}",
            )
        ]
        prompt = (
            f"ORIGINAL PAGE CONTENT:\n{state.page.text_content[:REVIEW_CONTENT_LIMIT]}\n\n"
            f"SECURITY ANALYSIS:\n{_dump(state.security_analysis)}\n\n"
            f"IDENTIFIED CTAs:\n{_format_ctas(state.identified_ctas)}\n\n"
            f"SUMMARY TO REVIEW:\n{_dump(decision.merged_content)}\n\n"
            f"ARBITER'S REASONING:\n{decision.reasoning}"
        )
        report = self._guardian_reply.parse(await self.backend.complete(GUARDIAN_SYSTEM, prompt))
        needs_revision = not report.approved

        if report.approved:
            log.append(
                create_log_entry(
                    "guardian",
                    STATE,
                    ActionKind.APPROVE,
                    f"✓ Approved. Accuracy: {report.accuracy}",
                    f"Suggestions: {'; '.join(report.suggestions)}" if report.suggestions else None,
                )
            )
        else:
            log.append(
                create_log_entry(
                    "guardian",
                    "compassionate_writer",
                    ActionKind.CRITIQUE,
                    f"✗ Not approved. Missing: {len(report.missing_critical_info)}",
                    report.revision_instructions,
                )
            )
            logger.info(f"Guardian rejected review {state.revision_count + 1}")

        return {
            "quality_report": report,
            "needs_revision": needs_revision,
            "revision_count": state.revision_count + 1,
            "communication_log": log,
        }


def assemble(state: PageSummaryState) -> dict[str, Any]:
    """Render the final markdown summary from the arbiter's merged content."""
    log = [
        create_log_entry(
            "assemble",
            STATE,
            ActionKind.OUTPUT,
            "Assembling final output",
            f"Total communication entries: {len(state.communication_log)}",
        )
    ]
    if state.arbiter_decision is None:
        return {
            "final_summary": "Unable to generate summary. Please try again.",
            "communication_log": log,
        }

    content = state.arbiter_decision.merged_content
    security = state.security_analysis
    report = state.quality_report

    sections = [f"# {content.title or 'Page Summary'}", content.summary]

    if security and security.risk_level in ("high", "critical"):
        sections.append(
            f"\n> ⚠️ **{security.risk_level.upper()} RISK**: Please read carefully before proceeding."
        )

    if content.key_points:
        sections.append("\n## What You Need to Know")
        sections.append("\n".join(f"• {point}" for point in content.key_points))

    if security and security.financial_actions:
        sections.append("\n## 💰 Financial Actions")
        for fa in security.financial_actions:
            note = "✓ Can be undone" if fa.reversible else "⚠️ Cannot be undone"
            sections.append(f"• **{fa.action}** - {fa.warning} ({note})")

    severe = [p for p in security.dark_patterns if p.severity == "severe"] if security else []
    if severe:
        sections.append("\n## ⚠️ Watch Out For")
        sections.extend(f"• **{p.type}**: {p.description}" for p in severe)

    critical = [c for c in state.identified_ctas if c.importance == "critical"]
    if critical:
        sections.append("\n## Main Actions")
        sections.extend(f"• **{c.label}**: {c.purpose}" for c in critical)

    if content.warnings:
        sections.append("\n## ⚠️ Important Warnings")
        sections.append("\n".join(f"• {w}" for w in content.warnings))

    fine_print = [n for n in content.legal_notes if n.importance == "high"]
    if fine_print:
        sections.append("\n## Fine Print (Simplified)")
        sections.extend(f"• {note.simplified}" for note in fine_print)

    if report is not None and not report.approved:
        sections.append("\n---")
        sections.append(
            "*Note: This summary may be incomplete. Please review the original page carefully.*"
        )

    return {"final_summary": "\n".join(sections), "communication_log": log}


__all__ = [
    "SummaryStages",
    "assemble",
    "NAVIGATOR_SYSTEM",
    "SECURITY_SYSTEM",
    "COMPASSIONATE_SYSTEM",
    "TECHNICAL_SYSTEM",
    "ARBITER_SYSTEM",
    "GUARDIAN_SYSTEM",
]
