"""Teams meeting transcripts, speaker analysis and meeting notes.

Actions
───────
• ``get_meeting_transcript``  recap (or the full text) of the latest
                              transcript of this chat's meeting
• ``list_recent_meetings``    online meetings on the user's calendar in the
                              request's time range
• ``analyze_speakers``        who spoke, how often and how much
• ``get_meeting_notes``       notes saved to this conversation earlier
• ``save_meeting_notes``      store notes in the conversation log

Transcripts are only reachable from a meeting chat: the chat's
``onlineMeetingInfo`` names the organizer, whose meeting owns the transcripts.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from collaborator.capabilities.base import HANDLED_ERRORS, CapabilityDescriptor, failure_result
from collaborator.errors import ValidationError
from collaborator.llm import content_text
from collaborator.models import (
    ErrorKind,
    MessageRecord,
    RequestContext,
    Result,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from collaborator.services.graph_client import GraphClient
from collaborator.services.metrics import metrics

logger = logging.getLogger(__name__)

NAME = "meeting_manager"
ACTIONS = (
    "get_meeting_transcript",
    "list_recent_meetings",
    "analyze_speakers",
    "get_meeting_notes",
    "save_meeting_notes",
)
NOTE_TYPES = ("summary", "action_items", "notes", "transcript")
NOTE_TAGS = ("[MEETING NOTES]", "[MEETING SUMMARY]")

MAX_TRANSCRIPT_CHARS = 60_000
SAMPLES_PER_SPEAKER = 3
SAMPLE_CHARS = 200

ROUTING_DESCRIPTION = (
    "**meeting_manager**: Teams meetings: the meeting transcript or recap "
    "(\"what was discussed in the meeting?\"), who spoke and how much, listing "
    "recent meetings, and saving or reading meeting notes. Not for summarising "
    "the chat messages themselves."
)

PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": list(ACTIONS)},
        "include_transcript": {
            "type": "boolean",
            "description": "Return the full transcript text instead of a recap (get_meeting_transcript).",
        },
        "speaker_name": {
            "type": "string",
            "description": "Only report speakers whose name contains this (analyze_speakers).",
        },
        "limit": {"type": "integer", "description": "Maximum meetings to list (default 10)."},
        "meeting_id": {"type": "string", "description": "Meeting id to look up notes for."},
        "meeting_subject": {"type": "string", "description": "Meeting title (save_meeting_notes)."},
        "notes": {"type": "string", "description": "Notes to save (save_meeting_notes)."},
        "note_type": {"type": "string", "enum": list(NOTE_TYPES)},
    },
    "required": ["action"],
}

RECAP_PROMPT = (
    "You recap a Teams meeting from its transcript.\n"
    "- Start with a one-sentence overview.\n"
    "- Then the main topics, decisions and action items as bullets, naming who said what.\n"
    "- Only use information present in the transcript; never invent content.\n"
    "- Be concise: at most ~250 words."
)

_NO_MEETING_SUGGESTION = "Ask me to summarise the chat messages instead."


class TranscriptUnavailable(Exception):
    """No transcript can be read for this chat's meeting."""


# ── WebVTT ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TranscriptSegment:
    speaker: str
    text: str
    timestamp: str


_VOICE_RE = re.compile(r"<v\s+([^>]+)>(.*?)(?:</v>)?$")
_TAG_RE = re.compile(r"</?[^>]+>")


def parse_vtt(content: str) -> list[TranscriptSegment]:
    """Split WebVTT into speaker-attributed segments, one per cue.

    Cue identifiers (the line before the ``-->`` timing line) are skipped.
    A cue without a ``<v Speaker>`` tag keeps the previous speaker.
    """
    segments: list[TranscriptSegment] = []
    speaker = ""
    for block in re.split(r"\n\s*\n", content.replace("\r\n", "\n")):
        lines = [line.strip() for line in block.strip().splitlines()]
        timing = next((i for i, line in enumerate(lines) if "-->" in line), None)
        if timing is None:
            continue  # header, NOTE or STYLE block
        timestamp = lines[timing].split("-->")[0].strip()

        texts = []
        for line in lines[timing + 1:]:
            if match := _VOICE_RE.match(line):
                speaker = match.group(1).strip()
                line = match.group(2)
            line = _TAG_RE.sub("", line).strip()
            if line:
                texts.append(line)
        if texts and speaker:
            segments.append(TranscriptSegment(speaker=speaker, text=" ".join(texts), timestamp=timestamp))
    return segments


def speaker_stats(segments: list[TranscriptSegment]) -> list[dict[str, Any]]:
    """Per-speaker contribution counts, most active first."""
    stats: dict[str, dict[str, Any]] = {}
    for segment in segments:
        entry = stats.setdefault(
            segment.speaker, {"speaker": segment.speaker, "contributions": 0, "word_count": 0, "samples": []},
        )
        entry["contributions"] += 1
        entry["word_count"] += len(segment.text.split())
        if len(entry["samples"]) < SAMPLES_PER_SPEAKER:
            entry["samples"].append(segment.text[:SAMPLE_CHARS])
    return sorted(stats.values(), key=lambda e: (-e["contributions"], e["speaker"]))


def format_segments(segments: list[TranscriptSegment]) -> tuple[str, bool]:
    """Transcript text, cut at ``MAX_TRANSCRIPT_CHARS``.  Returns (text, truncated)."""
    lines, size = [], 0
    for segment in segments:
        line = f"[{segment.timestamp}] {segment.speaker}: {segment.text}"
        size += len(line) + 1
        if size > MAX_TRANSCRIPT_CHARS:
            return "\n".join(lines), True
        lines.append(line)
    return "\n".join(lines), False


# ── Capability ───────────────────────────────────────────────────────


class MeetingCapability:
    def __init__(self, graph: GraphClient, llm: BaseChatModel):
        self._graph = graph
        self._llm = llm

    def handle(self, context: RequestContext, args: dict[str, Any]) -> Result:
        action = args.get("action")
        if action not in ACTIONS:
            return Result.fail(
                f"I can't do {action!r} with meetings. I can: {', '.join(ACTIONS)}.",
                ErrorKind.VALIDATION,
            )
        try:
            return getattr(self, action)(context, args)
        except TranscriptUnavailable as exc:
            return Result.fail(str(exc), ErrorKind.NOT_FOUND, suggestion=_NO_MEETING_SUGGESTION)
        except HANDLED_ERRORS as exc:
            logger.warning("Meeting %s failed: %s", action, exc)
            return failure_result(exc, action.replace("_", " "))

    def _load_transcript(self, context: RequestContext) -> tuple[dict[str, Any], list[TranscriptSegment]]:
        info = self._graph.get_chat_online_meeting(context.conversation_id)
        if info is None:
            raise TranscriptUnavailable(
                "This chat isn't linked to a Teams meeting, so there is no transcript to read."
            )
        organizer_id = ((info.get("organizer") or {}).get("id") or "").strip()
        if not organizer_id:
            raise TranscriptUnavailable("I couldn't tell who organised this meeting.")

        meeting = self._graph.find_online_meeting(organizer_id, info["joinWebUrl"])
        if meeting is None:
            raise TranscriptUnavailable("I couldn't find the online meeting behind this chat.")

        transcripts = self._graph.list_meeting_transcripts(organizer_id, meeting["id"])
        if not transcripts:
            raise TranscriptUnavailable(
                "This meeting has no transcript. Transcription must be turned on during the meeting."
            )
        latest = max(transcripts, key=lambda t: t.get("createdDateTime") or "")

        content = self._graph.get_transcript_content(organizer_id, meeting["id"], latest["id"])
        segments = parse_vtt(content)
        if not segments:
            raise TranscriptUnavailable("The meeting transcript is empty.")
        logger.info(
            "Loaded transcript %s of meeting %s (%d segments)", latest["id"], meeting["id"], len(segments),
        )
        return meeting, segments

    # ── Actions ──────────────────────────────────────────────────────

    def get_meeting_transcript(self, context: RequestContext, args: dict[str, Any]) -> Result:
        meeting, segments = self._load_transcript(context)
        subject = meeting.get("subject") or "this meeting"
        speakers = sorted({s.speaker for s in segments})
        text, truncated = format_segments(segments)
        data = {
            "meeting_id": meeting.get("id"),
            "subject": subject,
            "segments": len(segments),
            "speakers": speakers,
        }

        if args.get("include_transcript"):
            note = "\n\n(Transcript truncated.)" if truncated else ""
            header = f'Transcript of "{subject}" ({len(segments)} segments, {len(speakers)} speakers):\n\n'
            return Result.ok(header + text + note, data={**data, "truncated": truncated})

        t0 = time.perf_counter()
        try:
            response = self._llm.invoke([
                SystemMessage(content=RECAP_PROMPT),
                HumanMessage(content=f'Meeting "{subject}". Transcript:\n{text}'),
            ])
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure("anthropic", "meeting_recap", error_type=type(exc).__name__, latency_ms=elapsed)
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "meeting_recap", latency_ms=elapsed)

        return Result.ok(content_text(response.content), data=data)

    def analyze_speakers(self, context: RequestContext, args: dict[str, Any]) -> Result:
        meeting, segments = self._load_transcript(context)
        stats = speaker_stats(segments)
        wanted = (args.get("speaker_name") or "").strip().lower()
        if wanted:
            stats = [s for s in stats if wanted in s["speaker"].lower()]
            if not stats:
                return Result.ok(
                    f"Nobody matching {args['speaker_name']!r} spoke in this meeting.",
                    data={"meeting_id": meeting.get("id"), "speakers": []},
                )

        total_words = sum(s["word_count"] for s in speaker_stats(segments)) or 1
        lines = [f"{len(stats)} speaker(s) in \"{meeting.get('subject') or 'this meeting'}\":\n"]
        for s in stats:
            share = 100 * s["word_count"] / total_words
            lines.append(
                f"  • {s['speaker']}: {s['contributions']} contribution(s), "
                f"{s['word_count']} words ({share:.0f}%)"
            )
        return Result.ok("\n".join(lines), data={"meeting_id": meeting.get("id"), "speakers": stats})

    def list_recent_meetings(self, context: RequestContext, args: dict[str, Any]) -> Result:
        try:
            limit = int(args.get("limit") or 10)
        except (TypeError, ValueError) as exc:
            raise ValidationError("'limit' must be a whole number.") from exc
        limit = max(1, min(limit, 50))

        window = context.time_range
        meetings = self._graph.list_calendar_meetings(
            context.user.upn,
            window.start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            window.end.strftime("%Y-%m-%dT%H:%M:%SZ"),
            limit,
        )
        period = f"{window.start:%a %d %b %H:%M} to {window.end:%a %d %b %H:%M} UTC"
        if not meetings:
            return Result.ok(f"No online meetings on your calendar from {period}.", data={"meetings": []})

        summary = []
        lines = [f"{len(meetings)} meeting(s) from {period}:\n"]
        for event in meetings:
            start = (event.get("start") or {}).get("dateTime")
            organizer = ((event.get("organizer") or {}).get("emailAddress") or {}).get("name", "unknown")
            entry = {
                "subject": event.get("subject") or "(no subject)",
                "start": start,
                "organizer": organizer,
                "join_url": (event.get("onlineMeeting") or {}).get("joinUrl"),
            }
            summary.append(entry)
            # Graph reports seven fractional digits; seconds precision is enough here.
            when = parse_timestamp(start[:19]).strftime("%a %d %b %H:%M") if start else "unknown time"
            lines.append(f"  • {when}: {entry['subject']} (organised by {organizer})")
        return Result.ok("\n".join(lines), data={"meetings": summary})

    def get_meeting_notes(self, context: RequestContext, args: dict[str, Any]) -> Result:
        meeting_id = (args.get("meeting_id") or "").strip()
        if meeting_id:
            # A named meeting may have been noted long before the current window.
            records = context.memory.all()
        else:
            window = context.time_range
            records = context.memory.by_time_range(window.start, window.end)

        notes = [
            r for r in records
            if any(tag in r.content for tag in NOTE_TAGS) or (meeting_id and meeting_id in r.content)
        ]
        if not notes:
            return Result.ok(
                "No saved meeting notes found for that period. You can ask me to save notes for a meeting.",
                data={"notes": []},
            )

        lines = [f"Found {len(notes)} saved note(s):\n"]
        for note in notes:
            when = parse_timestamp(note.timestamp).strftime("%a %d %b %H:%M")
            lines.append(f"  • {when}, {note.author_name}: {note.content}")
        return Result.ok(
            "\n".join(lines),
            data={"notes": [{"timestamp": n.timestamp, "author_name": n.author_name, "content": n.content}
                            for n in notes]},
        )

    def save_meeting_notes(self, context: RequestContext, args: dict[str, Any]) -> Result:
        subject = (args.get("meeting_subject") or "").strip()
        notes = (args.get("notes") or "").strip()
        if not subject or not notes:
            raise ValidationError("I need both the meeting subject and the notes to save.")
        note_type = args.get("note_type") or "notes"
        if note_type not in NOTE_TYPES:
            raise ValidationError(f"Unknown note type {note_type!r}. Use one of: {', '.join(NOTE_TYPES)}.")

        tag = NOTE_TAGS[1] if note_type == "summary" else NOTE_TAGS[0]
        saved_at = format_timestamp(utc_now())
        context.memory.append([
            MessageRecord(
                role="user",
                author_name=context.user.name,
                content=f"{tag} {subject} ({note_type.replace('_', ' ')}): {notes}",
                activity_id=uuid.uuid4().hex,
                timestamp=saved_at,
                conversation_id=context.conversation_id,
            )
        ])
        logger.info("Saved %s for %r in %s", note_type, subject, context.conversation_id)
        return Result.ok(
            f"Saved the meeting {note_type.replace('_', ' ')} for \"{subject}\".",
            data={"subject": subject, "note_type": note_type, "saved_at": saved_at},
        )


def create_meeting_manager(graph: GraphClient, llm: BaseChatModel) -> CapabilityDescriptor:
    return CapabilityDescriptor(
        name=NAME,
        routing_description=ROUTING_DESCRIPTION,
        handler=MeetingCapability(graph, llm).handle,
        parameters=PARAMETERS,
    )
