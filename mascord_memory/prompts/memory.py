from __future__ import annotations

from typing import Iterable

from .overrides import load_prompt_overrides

_DEFAULTS = {
    "summary_first_prompt_template": (
        "Summarize the following channel messages.\n"
        "Focus on key topics, decisions, constraints, and ongoing threads; omit trivial chatter.\n\n"
        "MILESTONES:\n{milestones}\n\n"
        "MESSAGES:\n{messages}\n\n"
        "SUMMARY:"
    ),
    "summary_update_prompt_template": (
        "You maintain a rolling channel summary. Update the summary using the new messages.\n"
        "Keep continuity, only add important new information, and remove outdated details.\n"
        "Prefer durable facts, decisions, and ongoing threads.\n\n"
        "MILESTONES:\n{milestones}\n\n"
        "PREVIOUS SUMMARY:\n{previous_summary}\n\n"
        "NEW MESSAGES:\n{messages}\n\n"
        "UPDATED SUMMARY:"
    ),
    "summary_refresh_prompt_template": (
        "Rewrite the channel summary from scratch to reduce drift and improve stability.\n"
        "Use the previous summary as historical context, and the recent messages as ground truth.\n"
        "Keep it concise and factual; omit trivial chatter.\n\n"
        "MILESTONES:\n{milestones}\n\n"
        "PREVIOUS SUMMARY:\n{previous_summary}\n\n"
        "RECENT MESSAGES:\n{messages}\n\n"
        "REFRESHED SUMMARY:"
    ),
    "summary_compress_prompt_template": (
        "Condense the following channel summary to be under {max_tokens} tokens. "
        "Keep it accurate and preserve key decisions, constraints, and ongoing threads.\n\n"
        "SUMMARY:\n{summary}\n\n"
        "CONDENSED SUMMARY:"
    ),
    "milestone_extract_prompt_template": (
        "Extract up to {max_items} durable milestones (decisions, commitments, constraints, or ongoing threads) "
        "from the summary below. Respond with one per line prefixed with '- '. "
        "If there are none, respond with 'None'.\n\n"
        "SUMMARY:\n{summary}\n\n"
        "MILESTONES:"
    ),
    "user_memory_update_prompt_template": (
        "You maintain a concise global user memory profile. Update it only with durable preferences, "
        "ongoing projects, or stable facts the user explicitly shared. Do NOT store secrets, credentials, "
        "health data, financial data, precise location, or sensitive personal data unless the user explicitly "
        "asked you to remember it. If there is nothing new to add, respond with exactly: NO_UPDATE.\n\n"
        "CURRENT MEMORY:\n{current_memory}\n\n"
        "NEW USER MESSAGE:\n{user_message}\n\n"
        "ASSISTANT RESPONSE (context only):\n{assistant_response}\n\n"
        "Return updated memory as 1-6 bullet points, max {max_chars} characters."
    ),
    "user_memory_snippet_template": "User memory (short, read-only; use only if relevant): {summary}",
    "working_memory_header": "Earlier conversation summary for this channel:",
}


def _cfg() -> dict[str, object]:
    return load_prompt_overrides("memory.json", _DEFAULTS)


def _template(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def _join_lines(lines: Iterable[str]) -> str:
    joined = "\n".join(str(line) for line in lines if str(line).strip())
    return joined or "(none)"


def build_summary_prompt(
    previous_summary: str | None,
    milestones: Iterable[str],
    message_lines: Iterable[str],
    *,
    refresh: bool = False,
) -> str:
    """Pick the first-summary, incremental or full-refresh variant."""
    milestones_block = _join_lines(milestones)
    messages_block = _join_lines(message_lines)
    if not (previous_summary or "").strip():
        return _template("summary_first_prompt_template").format(
            milestones=milestones_block,
            messages=messages_block,
        )
    key = "summary_refresh_prompt_template" if refresh else "summary_update_prompt_template"
    return _template(key).format(
        milestones=milestones_block,
        previous_summary=previous_summary.strip(),
        messages=messages_block,
    )


def build_summary_compress_prompt(summary: str, max_tokens: int) -> str:
    return _template("summary_compress_prompt_template").format(summary=summary, max_tokens=int(max_tokens))


def build_milestone_extract_prompt(summary: str, max_items: int) -> str:
    return _template("milestone_extract_prompt_template").format(summary=summary, max_items=int(max_items))


def build_user_memory_update_prompt(
    current_memory: str,
    user_message: str,
    assistant_response: str,
    max_chars: int,
) -> str:
    return _template("user_memory_update_prompt_template").format(
        current_memory=current_memory.strip() or "(none)",
        user_message=user_message.strip(),
        assistant_response=assistant_response.strip(),
        max_chars=int(max_chars),
    )


def build_user_memory_snippet(summary: str) -> str:
    return _template("user_memory_snippet_template").format(summary=summary)


def build_working_memory_block(summary: str) -> str:
    return f"{_template('working_memory_header')}\n{summary.strip()}"
