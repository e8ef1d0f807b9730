# src/infrastructure/prompt/context.py
from typing import Any, Dict, Iterable, List, Optional


def _join(xs: Optional[Iterable[Any]], default: str = "Not specified", sep: str = ", ") -> str:
    items = [str(x) for x in (xs or []) if x]
    return sep.join(items) if items else default


def _specification(spec: Dict[str, Any]) -> str:
    return "\n".join(
        [
            "## Novel Specification",
            f"- Title: {spec.get('workingTitle') or 'Untitled'}",
            f"- Genre: {_join(spec.get('genre'))}",
            f"- Subgenre: {_join(spec.get('subgenre'))}",
            f"- Target Audience: {spec.get('targetAudience') or 'Adult'}",
            f"- POV: {spec.get('pov') or 'Third Limited'}",
            f"- Tense: {spec.get('tense') or 'Past'}",
            f"- Tone: {spec.get('tone') or 'Not specified'}",
            f"- Themes: {_join(spec.get('themes'))}",
            f"- Word Count Target: {spec.get('targetWordCount') or 80000}",
        ]
    )


def _characters(chars: List[Dict[str, Any]]) -> str:
    lines = ["## Characters"]
    for c in chars:
        lines.append(f"### {c.get('name', 'Unnamed')} ({c.get('role') or 'Supporting'})")
        lines.append(f"- Age: {c.get('age') or 'Unknown'}")
        lines.append(f"- Description: {c.get('physicalDescription') or 'Not described'}")
        lines.append(f"- Personality: {_join(c.get('personality'))}")
        lines.append(f"- Speech Patterns: {c.get('speechPatterns') or 'Standard'}")
    return "\n".join(lines)


def _titled_items(heading: str, items: List[Dict[str, Any]], text_key: str) -> str:
    lines = [heading]
    for it in items:
        lines.append(f"- {it.get('title', 'Untitled')}: {it.get(text_key) or ''}".rstrip())
    return "\n".join(lines)


def _story_memory(memory: Dict[str, Any]) -> List[str]:
    parts: List[str] = []
    summaries = memory.get("relevantSummaries") or []
    if summaries:
        lines = ["## Story Memory - Previous Chapter Summaries"]
        for s in summaries:
            cliff = " (ends with cliffhanger)" if s.get("cliffhanger") else ""
            events = [e if isinstance(e, str) else e.get("event", "") for e in (s.get("keyEvents") or [])]
            lines.append(f"### Chapter {s.get('chapterNumber', '?')}{cliff}")
            lines.append(str(s.get("summary") or ""))
            lines.append(f"- Key events: {_join(events, default='None', sep='; ')}")
            lines.append(f"- Characters present: {_join(s.get('charactersPresent'), default='None')}")
        parts.append("\n".join(lines))

    subplots = memory.get("activeSubplots") or []
    if subplots:
        lines = ["## Active Subplots (consider weaving these in)"]
        for sp in subplots:
            lines.append(f"- {sp.get('name')} ({sp.get('status')}): {sp.get('description') or 'No description'}")
        parts.append("\n".join(lines))

    questions = memory.get("openQuestions") or []
    if questions:
        parts.append("## Reader's Open Questions (maintain these mysteries)\n" + "\n".join(f"- {q}" for q in questions))

    setups = memory.get("unresolvedSetups") or []
    if setups:
        parts.append("## Foreshadowing/Setups (consider paying off)\n" + "\n".join(f"- {s}" for s in setups))
    return parts


def build_context(context: Dict[str, Any]) -> str:
    """
    Flattens the project context sent by the client into a markdown block for the prompt.
    Unknown keys are ignored.
    """
    parts: List[str] = []

    if isinstance(context.get("specification"), dict):
        parts.append(_specification(context["specification"]))
    if context.get("characters"):
        parts.append(_characters(context["characters"]))
    if context.get("plotBeats"):
        parts.append(_titled_items("## Plot Beats", context["plotBeats"], "summary"))
    if context.get("scenes"):
        parts.append(_titled_items("## Scenes", context["scenes"], "description"))
    if isinstance(context.get("storyMemory"), dict):
        parts.extend(_story_memory(context["storyMemory"]))
    if context.get("previousContent"):
        parts.append(f"## Previous Content\n{context['previousContent']}")
    if context.get("selectedText"):
        parts.append(f"## Selected Text\n{context['selectedText']}")
    if context.get("currentChapter"):
        parts.append(f"## Current Chapter Content\n{context['currentChapter']}")

    return "\n\n".join(parts)
