"""Downloads: flashcards as CSV, quizzes as JSON, text as TXT or PDF."""
from __future__ import annotations

import csv
import io
import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import letter as rl_letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer


class ExportError(ValueError):
    pass


@dataclass
class ExportFile:
    data: bytes
    mimetype: str
    filename: str


def _default_name(prefix: str, ext: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}.{ext}"


def _safe_name(name: Optional[str], ext: str) -> Optional[str]:
    if not name:
        return None
    base = re.sub(r"[^a-zA-Z0-9._ -]", "_", name.strip()).strip(" .") or None
    if base and not base.lower().endswith(f".{ext}"):
        base = f"{base}.{ext}"
    return base


def flashcards_csv(cards: List[Dict[str, Any]], filename: Optional[str] = None) -> ExportFile:
    if not cards:
        raise ExportError("No flashcards to export")
    buf = io.StringIO()
    buf.write("Question,Answer\n")
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for card in cards:
        writer.writerow([str(card.get("question") or ""), str(card.get("answer") or "")])
    return ExportFile(buf.getvalue().rstrip("\n").encode("utf-8"), "text/csv",
                      _safe_name(filename, "csv") or _default_name("flashcards", "csv"))


def quiz_json(questions: List[Dict[str, Any]], filename: Optional[str] = None) -> ExportFile:
    if not questions:
        raise ExportError("No quiz questions to export")
    payload = {
        "title": "Study Quiz",
        "questions": [
            {
                "number": i,
                "question": q.get("question"),
                "options": q.get("options"),
                "correctAnswer": q.get("correct_answer", q.get("correctAnswer")),
            }
            for i, q in enumerate(questions, start=1)
        ],
        "totalQuestions": len(questions),
        "exportedAt": datetime.now(timezone.utc).isoformat(),
    }
    return ExportFile(json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"), "application/json",
                      _safe_name(filename, "json") or _default_name("quiz", "json"))


def text_txt(text: str, filename: Optional[str] = None) -> ExportFile:
    if not (text or "").strip():
        raise ExportError("No content to export")
    return ExportFile(text.encode("utf-8"), "text/plain",
                      _safe_name(filename, "txt") or _default_name("notes", "txt"))


def esc(s: str) -> str:
    return (s or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def text_pdf(text: str, title: str = "Study Notes", filename: Optional[str] = None) -> ExportFile:
    if not (text or "").strip():
        raise ExportError("No content to export")

    styles = getSampleStyleSheet()
    base = ParagraphStyle("base", parent=styles["Normal"], fontName="Helvetica",
                          fontSize=10.5, leading=14, spaceAfter=4, alignment=TA_LEFT)
    head = ParagraphStyle("head", parent=base, fontName="Helvetica-Bold",
                          fontSize=12.5, leading=16, spaceBefore=8, spaceAfter=4)

    story = [Paragraph(esc(title), styles["Title"]), Spacer(1, 8)]
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            story.append(Spacer(1, 6))
            continue
        # markdown headings
        m = re.match(r"^#{1,6}\s*(.+)$", stripped)
        if m:
            story.append(Paragraph(esc(m.group(1).strip("* ")), head))
            continue
        stripped = re.sub(r"^[-*•]\s+", "• ", stripped)
        body = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", esc(stripped))
        story.append(Paragraph(body, base))

    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=rl_letter, leftMargin=50, rightMargin=50,
                            topMargin=45, bottomMargin=45, title=title)
    doc.build(story)
    return ExportFile(buf.getvalue(), "application/pdf",
                      _safe_name(filename, "pdf") or _default_name("notes", "pdf"))


def build_export(payload: Dict[str, Any]) -> ExportFile:
    """Pick the export by what the payload carries: flashcards, then quiz, then text."""
    filename = payload.get("filename")
    fmt = (payload.get("format") or "").strip().lower()
    if payload.get("flashcards"):
        return flashcards_csv(payload["flashcards"], filename)
    if payload.get("quiz"):
        return quiz_json(payload["quiz"], filename)
    text = payload.get("text") or payload.get("content") or ""
    if fmt == "pdf":
        return text_pdf(text, title=(payload.get("title") or "Study Notes"), filename=filename)
    return text_txt(text, filename)
