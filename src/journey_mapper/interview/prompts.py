"""System prompt and canned requests for the interview LLM.

Everything here is pure: the same inputs always produce the same text.
"""

import json
from typing import Any, Sequence

from journey_mapper.config import settings
from journey_mapper.db.models import SME, Conflict, Gap, Process, TechSystem
from journey_mapper.models import JourneyStage, QuickAction

STEPS_SUMMARY_CHARS = 200

SESSION_START_TEMPLATE = (
    "SESSION_START: Begin the interview. Greet the SME warmly and ask your first "
    "question about the {stage} stage."
)

QUICK_ACTION_COMMANDS = {
    QuickAction.NEXT: "COMMAND:NEXT - Skip this topic. Move to the next area.",
    QuickAction.BACK: "COMMAND:BACK - Let's revisit the previous topic.",
    QuickAction.CORRECT: "COMMAND:CORRECT - I need to correct record {record_id}.",
}

SESSION_SUMMARY_SYSTEM_PROMPT = (
    "You are summarising a completed journey mapping interview. "
    "Respond with a comprehensive plain-text summary."
)

RESPONSE_SCHEMA = """{
  "reply": "Your conversational message. Be warm, professional. Acknowledge what they said. After extracting data, show it with '\U0001F4CB EXTRACTED:' prefix as a bulleted list. Show conflicts with '⚠️ CONFLICT:' prefix. End with 1-2 clear follow-up questions. After 2-3 follow-ups on a topic, offer 'Type next to move on.'",
  "extractions": {
    "systems": [
      {
        "system_name": "",
        "vendor": "",
        "category": "PMS|CRM|Channel Manager|Accounting|Communication|Operations|Compliance|Analytics|Other",
        "fields_or_workflows_mentioned": [],
        "integration_with": [{"system_name":"","direction":"one_way_push|one_way_pull|bidirectional","method":"native|API|webhook|file_export|manual","data_transferred":[]}],
        "is_new": true,
        "existing_system_id": null
      }
    ],
    "process_steps": [
      {
        "description": "",
        "actor": "guest|staff|system|automated",
        "system_name": "",
        "field_or_workflow_name": "",
        "manual_or_automated": "manual|automated|semi_automated",
        "time_to_complete": "",
        "belongs_to_process": null,
        "journey_stage": "",
        "as_documented": "",
        "as_practiced": ""
      }
    ],
    "gaps": [
      {
        "title": "",
        "description": "",
        "gap_type": "broken_handoff|missing_process|manual_workaround|data_loss|system_gap|communication_failure|compliance_risk|guest_experience|other",
        "frequency": "rare|occasional|frequent|systemic",
        "guest_impact": "none|low|medium|high|critical",
        "root_cause": ""
      }
    ],
    "journey_touchpoints": [
      {
        "channel": "email|SMS|app|portal|phone|OTA|in_person|automated_message",
        "description": "",
        "timing": "",
        "system_name": "",
        "journey_stage": ""
      }
    ],
    "sme_updates": {
      "new_systems_used": [],
      "new_domains": [],
      "new_stages_owned": []
    }
  },
  "conflicts_detected": [
    {
      "field": "",
      "new_value_from_current_sme": "",
      "existing_value": "",
      "existing_sme_id": "",
      "existing_record_id": "",
      "severity": "low|medium|high"
    }
  ],
  "open_questions": [
    {
      "question": "",
      "reason": "",
      "priority": "high|medium|low"
    }
  ],
  "conversation_state": {
    "current_stage": "",
    "current_topic": "",
    "topics_covered_this_message": [],
    "should_move_to_next_stage": false,
    "stage_completion_estimate": 0.0,
    "as_documented_vs_practiced_asked": false
  }
}"""

BEHAVIORAL_RULES = [
    "After every substantive answer, show extracted data with \U0001F4CB EXTRACTED:",
    "Never accept just a system name - always ask for the specific field, workflow, or screen",
    'For every process, ALWAYS ask "Is that how it\'s documented, or how it actually happens in practice?"',
    "When you detect a conflict with existing data, surface it immediately with ⚠️ CONFLICT:",
    "Keep follow-ups focused - max 2-3 before offering \"type 'next' to move on\"",
    'If user says "next", acknowledge and move to the next topic',
    'If user says "done", produce a comprehensive session summary',
    "Track stage progress - when a stage is fully covered, suggest the next stage",
    "Be conversational and warm - this is a friendly interview, not an interrogation",
    f"Journey stages in order: {', '.join(JourneyStage.ordered())}",
]


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str, ensure_ascii=False)


def _tail(records: Sequence[Any], limit: int) -> list[Any]:
    return list(records[-limit:]) if limit > 0 else []


def compact_existing_records(
    systems: Sequence[TechSystem],
    processes: Sequence[Process],
    gaps: Sequence[Gap],
    limit: int | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Reduce knowledge records to the few fields the LLM needs.

    At most ``limit`` of each category are kept (the most recent ones).
    """
    limit = settings.SNAPSHOT_MAX_RECORDS if limit is None else limit
    return {
        "systems": [
            {
                "system_id": s.system_id,
                "system_name": s.system_name,
                "category": s.category,
                "source_sme_ids": list(s.source_sme_ids or []),
            }
            for s in _tail(systems, limit)
        ],
        "processes": [
            {
                "process_id": p.process_id,
                "process_name": p.process_name,
                "steps_summary": "; ".join(
                    str(step.get("description", "")) for step in (p.steps or []) if isinstance(step, dict)
                )[:STEPS_SUMMARY_CHARS],
                "source_sme_ids": list(p.source_sme_ids or []),
            }
            for p in _tail(processes, limit)
        ],
        "gaps": [
            {"gap_id": g.gap_id, "title": g.title, "gap_type": g.gap_type}
            for g in _tail(gaps, limit)
        ],
    }


def compact_conflicts(conflicts: Sequence[Conflict], limit: int | None = None) -> list[dict[str, Any]]:
    """Prompt view of open conflicts, keeping the most recent ``limit``."""
    limit = settings.SNAPSHOT_MAX_RECORDS if limit is None else limit
    return [
        {
            "conflict_id": c.conflict_id,
            "conflict_type": c.conflict_type,
            "field": c.field,
            "description": c.description,
            "sme_a_id": c.sme_a_id,
            "sme_b_id": c.sme_b_id,
            "severity": c.severity,
        }
        for c in _tail(conflicts, limit)
    ]


def compact_open_questions(
    questions: Sequence[dict[str, Any]], limit: int | None = None
) -> list[dict[str, Any]]:
    """The most recent ``limit`` open questions."""
    limit = settings.SNAPSHOT_MAX_RECORDS if limit is None else limit
    return _tail(questions, limit)


def _describe_sme(sme: SME | None) -> tuple[str, str]:
    if sme is None:
        return "Unknown SME", "not specified"
    info = f"{sme.full_name} ({sme.role or ''}, {sme.department or ''})"
    stages = ", ".join(sme.journey_stages_owned or []) or "not specified"
    return info, stages


def build_system_prompt(
    sme: SME | None,
    session_state: dict[str, Any] | None,
    existing_records: dict[str, list[dict[str, Any]]] | None,
    open_conflicts: list[dict[str, Any]] | None,
    open_questions: list[dict[str, Any]] | None,
) -> str:
    """Assemble the interviewer system prompt for one turn."""
    sme_info, stages_owned = _describe_sme(sme)
    state = session_state or {}
    records = existing_records or {}
    rules = "\n".join(f"{i}. {rule}" for i, rule in enumerate(BEHAVIORAL_RULES, start=1))

    return f"""You are a Guest Journey Mapping Agent conducting an interview with a Subject Matter Expert (SME) at a hospitality company.

YOUR ROLE:
- You drive the conversation by asking targeted questions about guest journey stages
- You extract structured data from every response into specific categories
- You dig for detail - never accept vague answers
- You detect conflicts with existing data collected from other SMEs
- For every process described, you ask: "Is this how it's documented or how it actually happens?"
- You move through journey stages systematically

CURRENT SESSION CONTEXT:
- SME: {sme_info}
- Journey stages this SME covers: {stages_owned}
- Current stage focus: {state.get("current_stage") or JourneyStage.DISCOVERY.value}
- Current topic: {state.get("current_topic") or "not set"}
- Topics already covered: {json.dumps(state.get("topics_covered") or [])}
- Topics remaining: {json.dumps(state.get("topics_remaining") or [])}

EXISTING DATA FROM OTHER SMEs (check for conflicts):
Systems: {_dump(records.get("systems") or [])}
Processes: {_dump(records.get("processes") or [])}
Gaps: {_dump(records.get("gaps") or [])}

OPEN CONFLICTS involving this SME: {_dump(open_conflicts or [])}
OPEN QUESTIONS from prior sessions: {_dump(open_questions or [])}

RESPONSE FORMAT - respond with ONLY valid JSON, no markdown, no preamble:
{RESPONSE_SCHEMA}

If the user's message has no extractable data (e.g., "ok", "yes", "next"), return empty arrays for extractions/conflicts/open_questions but still update conversation_state and provide a reply.

BEHAVIORAL RULES:
{rules}"""


def session_start_cue(stage: str) -> str:
    """Synthetic first user turn that asks the agent to open the interview."""
    return SESSION_START_TEMPLATE.format(stage=stage)


def build_opening_request(stage: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": session_start_cue(stage)}]


def quick_action_command(action: QuickAction, record_id: str | None = None) -> str:
    """Canonical command text routed through the turn pipeline."""
    template = QUICK_ACTION_COMMANDS[action]
    return template.format(record_id=record_id or "")


def build_session_summary_request(
    message_count: int, counts: dict[str, int]
) -> tuple[str, list[dict[str, str]]]:
    """System prompt and transcript asking for a closing session summary."""
    content = (
        "Generate a session summary. Include: key findings, systems documented, "
        "processes mapped, gaps identified, conflicts found, open questions, and "
        f"recommended next steps. Session had {message_count} messages, extracted "
        f"{counts.get('systems', 0)} systems, {counts.get('process_steps', 0)} process steps, "
        f"{counts.get('gaps', 0)} gaps, and {counts.get('conflicts', 0)} conflicts. "
        'Respond as valid JSON: {"reply": "...full summary text..."}'
    )
    return SESSION_SUMMARY_SYSTEM_PROMPT, [{"role": "user", "content": content}]
