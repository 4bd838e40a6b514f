"""Content transformers.

Every transformation kind is a ``ContentTransformer`` subclass with its own
request and response dataclasses. ``TRANSFORMERS`` maps kind name to class;
routes call ``create_transformer(kind, ...)`` and ``run(payload)``.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Type

from studyflow.learning_style import STYLES
from studyflow.services.documents import clamp_text
from studyflow.services.llm import ChatClient, TransformError, safe_json_loads
from studyflow.services.sentinels import has_usable_content, is_sentinel
from studyflow.services.speech import SpeechError, SpeechSynthesizer

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 48000
QUIZ_DEFAULT_COUNT = 25
QUIZ_MIN_COUNT = 5
QUIZ_MAX_COUNT = 30
OPTION_KEYS = ("A", "B", "C", "D")


def require_content(payload: Mapping[str, Any], key: str = "content") -> str:
    content = payload.get(key)
    if not isinstance(content, str) or not content.strip():
        raise TransformError("Content is required", 400)
    if is_sentinel(content) or not has_usable_content(content):
        raise TransformError("This note has no usable text yet. Re-run extraction or paste the text.", 400)
    return clamp_text(content.strip(), MAX_PROMPT_CHARS)


def require_style(payload: Mapping[str, Any]) -> str:
    style = (payload.get("learning_style") or payload.get("learningStyle") or "")
    style = str(style).strip().lower()
    if not style:
        raise TransformError("Learning style is required", 400)
    if style not in STYLES:
        raise TransformError("Invalid learning style", 400)
    return style


# ---- request / response types ----

@dataclass
class TextRequest:
    content: str


@dataclass
class TextResponse:
    kind: str
    content: str


@dataclass
class Flashcard:
    question: str
    answer: str


@dataclass
class FlashcardsResponse:
    format: str  # "flashcards", or "text" when the model did not return cards
    flashcards: List[Flashcard] = field(default_factory=list)
    text: Optional[str] = None
    kind: str = "flashcards"


@dataclass
class AudioRequest:
    content: str
    voice: str = "Aria"


@dataclass
class AudioResponse:
    script: str
    audio_base64: str
    voice: str
    provider: str
    kind: str = "audio"


@dataclass
class QuizRequest:
    content: str
    count: int = QUIZ_DEFAULT_COUNT
    exclude_questions: List[str] = field(default_factory=list)


@dataclass
class QuizQuestion:
    question: str
    options: Dict[str, str]
    correct_answer: str


@dataclass
class QuizResponse:
    questions: List[QuizQuestion]
    total_questions: int
    kind: str = "quiz"


@dataclass
class LearningStyleRequest:
    content: str
    learning_style: str


@dataclass
class LearningStyleResponse:
    content: str
    learning_style: str
    kind: str = "learning_style"


@dataclass
class NoteInput:
    title: str
    content: str


@dataclass
class ConsolidateRequest:
    notes: List[NoteInput]


@dataclass
class ConsolidateResponse:
    content: str
    original_titles: List[str]
    kind: str = "consolidate"


@dataclass
class CustomPromptRequest:
    content: str
    prompt: str


# ---- base + registry ----

class ContentTransformer:
    kind = ""
    uses_ai = True

    def __init__(self, chat: Optional[ChatClient] = None, speech: Optional[SpeechSynthesizer] = None):
        self.chat = chat
        self.speech = speech

    def parse_request(self, payload: Mapping[str, Any]):
        return TextRequest(content=require_content(payload))

    def transform(self, request):
        raise NotImplementedError

    def run(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return asdict(self.transform(self.parse_request(payload or {})))

    def complete(self, system: str, user: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        if self.chat is None:
            raise TransformError("OpenAI API key not configured", 500)
        return self.chat.complete(system, user, temperature=temperature, max_tokens=max_tokens)


TRANSFORMERS: Dict[str, Type[ContentTransformer]] = {}


def register(cls: Type[ContentTransformer]) -> Type[ContentTransformer]:
    TRANSFORMERS[cls.kind] = cls
    return cls


def create_transformer(kind: str, chat: Optional[ChatClient] = None,
                       speech: Optional[SpeechSynthesizer] = None) -> ContentTransformer:
    cls = TRANSFORMERS.get((kind or "").strip().lower())
    if cls is None:
        raise TransformError(f"Unknown transformation: {kind}", 400)
    return cls(chat=chat, speech=speech)


# ---- variants ----

@register
class FlashcardsTransformer(ContentTransformer):
    kind = "flashcards"

    SYSTEM = ("You are an expert at creating educational flashcards. Create clear, concise flashcards "
              "that help students learn and remember key concepts.")

    def transform(self, request: TextRequest) -> FlashcardsResponse:
        prompt = (
            "Create flashcards from the following content. Each flashcard should have a clear question "
            "and a comprehensive answer. Format your response as a JSON array of objects with "
            "\"question\" and \"answer\" fields.\n\n"
            f"Content: {request.content}\n\n"
            "Return only the JSON array of flashcards, no other text."
        )
        raw = self.complete(self.SYSTEM, prompt, max_tokens=4000)
        items, err = safe_json_loads(raw, expect=list)
        cards = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            q = str(item.get("question") or "").strip()
            a = str(item.get("answer") or "").strip()
            if q and a:
                cards.append(Flashcard(q, a))
        if not cards:
            logger.info("Flashcard output was not a card list (%s); returning text", err or "no cards")
            return FlashcardsResponse(format="text", text=raw)
        return FlashcardsResponse(format="flashcards", flashcards=cards)


@register
class AudioScriptTransformer(ContentTransformer):
    kind = "audio"

    SYSTEM = ("You are an expert at transforming text for audio learning. "
              "Create content that flows naturally when spoken aloud.")

    def parse_request(self, payload):
        voice = str(payload.get("voice") or "Aria").strip() or "Aria"
        return AudioRequest(content=require_content(payload), voice=voice)

    def transform(self, request: AudioRequest) -> AudioResponse:
        prompt = (
            "Transform the following content into a format optimized for audio learning. Make it "
            "conversational, add smooth transitions between topics, and structure it so it is easy to "
            "follow when listened to. Keep it engaging but concise (under 4000 characters).\n\n"
            f"Content: {request.content}"
        )
        script = self.complete(self.SYSTEM, prompt, max_tokens=4000)
        if not script:
            raise TransformError("The AI returned an empty narration script", 500)
        if self.speech is None:
            raise TransformError("Text-to-speech is not configured", 500)
        try:
            audio = self.speech.synthesize(script, request.voice)
        except SpeechError as e:
            raise TransformError(e.message, e.status) from e
        return AudioResponse(script=script, audio_base64=audio.audio_base64,
                             voice=audio.voice, provider=audio.provider)


def _coerce_count(value: Any) -> int:
    try:
        count = float(value if value is not None else QUIZ_DEFAULT_COUNT)
    except (TypeError, ValueError):
        count = QUIZ_DEFAULT_COUNT
    if not math.isfinite(count):
        count = QUIZ_DEFAULT_COUNT
    return max(QUIZ_MIN_COUNT, min(QUIZ_MAX_COUNT, int(round(count))))


def repair_quiz_question(item: Any) -> Optional[QuizQuestion]:
    """Coerce one model-produced question into shape, or drop it."""
    if not isinstance(item, dict):
        return None
    question = str(item.get("question") or "").strip()
    opts = item.get("options")
    if isinstance(opts, list) and len(opts) == len(OPTION_KEYS):
        opts = dict(zip(OPTION_KEYS, opts))
    if not question or not isinstance(opts, dict):
        return None
    options = {k: str(opts.get(k) or "").strip() for k in OPTION_KEYS}
    if not all(options.values()):
        return None
    answer = str(item.get("correctAnswer") or item.get("correct_answer") or "").strip().upper()[:1]
    if answer not in options:
        return None
    return QuizQuestion(question=question, options=options, correct_answer=answer)


@register
class QuizTransformer(ContentTransformer):
    kind = "quiz"

    SYSTEM = ("You are an educational quiz generator. Create clear, accurate multiple-choice questions "
              "based on study material. Always respond with valid JSON only.")
    SCHEMA = (
        '[\n  {\n    "question": "What is the main concept discussed?",\n'
        '    "options": {"A": "Option 1", "B": "Option 2", "C": "Option 3", "D": "Option 4"},\n'
        '    "correctAnswer": "B"\n  }\n]'
    )

    def parse_request(self, payload):
        exclude = payload.get("exclude_questions", payload.get("excludeQuestions")) or []
        if not isinstance(exclude, list):
            raise TransformError("exclude_questions must be a list", 400)
        return QuizRequest(
            content=require_content(payload),
            count=_coerce_count(payload.get("count")),
            exclude_questions=[str(q).strip() for q in exclude if str(q).strip()],
        )

    @staticmethod
    def _exclude_block(questions: List[str]) -> str:
        if not questions:
            return ""
        return ("\nDo NOT include any questions that match or closely rephrase any of these existing "
                "questions:\n- " + "\n- ".join(questions))

    def _parse(self, raw: str) -> List[QuizQuestion]:
        items, err = safe_json_loads(raw, expect=list)
        if items is None:
            raise TransformError("Failed to generate valid quiz format", 500)
        return [q for q in (repair_quiz_question(i) for i in items) if q is not None]

    def transform(self, request: QuizRequest) -> QuizResponse:
        prompt = (
            f"Based on the following study material, create exactly {request.count} multiple-choice "
            "questions. Each question must have 4 options (A, B, C, D) with only one correct answer. "
            "Focus on key concepts, important facts, and main ideas from the material. Keep questions "
            "and options concise.\n\n"
            f"Return the response as a JSON array with this exact format:\n{self.SCHEMA}\n"
            f"{self._exclude_block(request.exclude_questions)}\n\n"
            f"Study Material:\n{request.content}"
        )
        questions = self._parse(self.complete(self.SYSTEM, prompt, temperature=0.6, max_tokens=2500))

        if len(questions) < request.count:
            need = request.count - len(questions)
            seen = request.exclude_questions + [q.question for q in questions]
            extra_prompt = (
                f"Create exactly {need} additional multiple-choice questions (A, B, C, D) with one correct "
                "answer based on the same study material. Do NOT duplicate or closely rephrase any of "
                "these existing questions:\n- " + "\n- ".join(seen) +
                "\n\nReturn ONLY a valid JSON array in the same schema.\n\n"
                f"Study Material:\n{request.content}"
            )
            try:
                questions += self._parse(self.complete(
                    "You are an educational quiz generator. Always return valid JSON.",
                    extra_prompt, temperature=0.6, max_tokens=2000))
            except TransformError as e:
                logger.warning("Quiz top-up pass failed, keeping %d questions: %s", len(questions), e.message)

        excluded = set(request.exclude_questions)
        unique, seen_text = [], set()
        for q in questions:
            if q.question in seen_text or q.question in excluded:
                continue
            seen_text.add(q.question)
            unique.append(q)
        unique = unique[:request.count]
        return QuizResponse(questions=unique, total_questions=len(unique))


ENHANCED_NOTES_PROMPT = """Transform the provided content into comprehensive enhanced notes with clear structure.

STRUCTURE:
- **# Main title** for the overview
- **### Topic** for each main topic (descriptive names, one focus per section)
- **#### Detail** for specific information
Leave a blank line before and after every heading.

ORGANIZATION:
- Group related concepts by theme under clear topic headings.
- Tag items where it helps: Definition, Process, Key Insight, Important Fact, Connection, Critical Point, Data.
- Show **Cause -> Effect** only for the most important causal relationships.
- End every major topic with **Key Takeaways** (2-4 bullets).
- Mark difficulty where useful: Beginner, Intermediate, Advanced.

CONTENT AND FORMATTING:
- Define technical terms, add context and examples where helpful.
- Use **bold** for key terms, *italics* for emphasis, > blockquotes for critical takeaways.
- Put horizontal rules (---) between major topics only.

Content to enhance: {content}"""


@register
class EnhancedNotesTransformer(ContentTransformer):
    kind = "enhanced"

    SYSTEM = ("You are an expert educational content architect specializing in creating clear, "
              "well-organized learning materials.")

    def transform(self, request: TextRequest) -> TextResponse:
        text = self.complete(self.SYSTEM, ENHANCED_NOTES_PROMPT.format(content=request.content), max_tokens=4000)
        return TextResponse(kind=self.kind, content=text)


LEARNING_STYLE_PROMPTS = {
    "visual": ("Transform this content to be optimized for visual learners. Use bullet points, diagram "
               "descriptions, visual metaphors, charts, and structured layouts. Make it scannable with "
               "clear headings and visual organization."),
    "auditory": ("Transform this content for auditory learners. Use a conversational tone, repetition for "
                 "emphasis, rhythm and flow, discussion questions, and explain concepts as if speaking "
                 "aloud. Include mnemonic devices and verbal patterns."),
    "kinesthetic": ("Transform this content for kinesthetic learners. Include hands-on activities, practical "
                    "examples, step-by-step instructions, real-world applications, and actionable "
                    "exercises. Make it interactive and experiential."),
    "reading": ("Transform this content for reading/writing learners. Organize with detailed written "
                "explanations, comprehensive notes, lists, definitions, and encourage note-taking. Use "
                "rich vocabulary and thorough written descriptions."),
}


@register
class LearningStyleTransformer(ContentTransformer):
    kind = "learning_style"

    def parse_request(self, payload):
        return LearningStyleRequest(content=require_content(payload), learning_style=require_style(payload))

    def transform(self, request: LearningStyleRequest) -> LearningStyleResponse:
        logger.info("Transforming content for %s learning style", request.learning_style)
        system = f"You are an expert educational content adapter. {LEARNING_STYLE_PROMPTS[request.learning_style]}"
        text = self.complete(system, f"Please transform the following content:\n\n{request.content}")
        return LearningStyleResponse(content=text, learning_style=request.learning_style)


CONSOLIDATE_SYSTEM = """You are an expert document consolidator. Your task is to:
1. Merge multiple documents into one cohesive, well-organized document
2. Remove redundant information and duplicates
3. Organize content in a logical flow with clear sections
4. Maintain all important information from all sources
5. Create clear headings and structure
6. Ensure the final document is comprehensive yet concise

Format the output with clear markdown headings (##) for major sections."""


@register
class ConsolidationTransformer(ContentTransformer):
    kind = "consolidate"

    def parse_request(self, payload):
        raw_notes = payload.get("notes")
        if not isinstance(raw_notes, list) or not raw_notes:
            raise TransformError("Please provide an array of notes to consolidate", 400)
        notes = []
        for n in raw_notes:
            if not isinstance(n, dict):
                continue
            content = n.get("content") or n.get("text_content") or ""
            # notes whose extraction failed only carry a sentinel
            if not has_usable_content(content):
                continue
            notes.append(NoteInput(title=str(n.get("title") or "Untitled"), content=content.strip()))
        if not notes:
            raise TransformError("None of the selected notes have usable text content", 400)
        return ConsolidateRequest(notes=notes)

    @staticmethod
    def format_documents(notes: List[NoteInput]) -> str:
        return "\n".join(f"=== Document {i}: {n.title} ===\n{n.content}\n" for i, n in enumerate(notes, start=1))

    def transform(self, request: ConsolidateRequest) -> ConsolidateResponse:
        logger.info("Consolidating %d notes", len(request.notes))
        docs = clamp_text(self.format_documents(request.notes), MAX_PROMPT_CHARS)
        text = self.complete(
            CONSOLIDATE_SYSTEM,
            f"Please consolidate these {len(request.notes)} documents into one well-organized document:\n\n{docs}",
            max_tokens=4000,
        )
        return ConsolidateResponse(content=text, original_titles=[n.title for n in request.notes])


@register
class CustomPromptTransformer(ContentTransformer):
    kind = "custom"

    def parse_request(self, payload):
        prompt = payload.get("prompt") or payload.get("customPrompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise TransformError("Prompt is required", 400)
        return CustomPromptRequest(content=require_content(payload), prompt=prompt.strip())

    def transform(self, request: CustomPromptRequest) -> TextResponse:
        text = self.complete(
            "You are an expert educational content transformer.",
            f"{request.prompt}\n\nContent to transform:\n{request.content}",
            max_tokens=4000,
        )
        return TextResponse(kind=self.kind, content=text)


# ---- offline learning-style rewrite ----

COMMON_WORDS = frozenset(
    "the a an and or but in on at to for of with by is are was were be been being "
    "have has had do does did will would could should".split()
)


def _sentences(content: str) -> List[str]:
    return [s.strip() for s in content.split(".") if len(s.strip()) > 10]


def key_points(content: str) -> str:
    return "\n".join(f"{i}. {s}." for i, s in enumerate(_sentences(content)[:5], start=1))


def visual_structure(content: str) -> str:
    words = content.split(" ")
    lines = []
    for i in range(0, len(words), 20):
        lines.append(f"│ Section {i // 20 + 1}: {' '.join(words[i:i + 5])}...")
    return "\n".join(lines)


def discussion_points(content: str) -> str:
    return "\n".join(f'{i}. What do you think about: "{s}"?' for i, s in enumerate(_sentences(content)[:3], start=1))


def action_steps(content: str) -> str:
    return "\n".join(f"Step {i}: Practice - {s}" for i, s in enumerate(_sentences(content)[:4], start=1))


def short_summary(content: str) -> str:
    words = content.split(" ")
    length = min(50, math.ceil(len(words) * 0.3))
    return " ".join(words[:length]) + ("..." if len(words) > length else "")


def key_terms(content: str) -> str:
    terms: List[str] = []
    for word in re.split(r"\s+", content.lower()):
        if len(word) > 4 and word not in COMMON_WORDS and word not in terms:
            terms.append(word)
        if len(terms) == 8:
            break
    return "\n".join(f"{i}. **{t[:1].upper() + t[1:]}**: [Definition needed]" for i, t in enumerate(terms, start=1))


def local_learning_style_rewrite(content: str, style: str) -> str:
    """Template rewrite used when no AI provider is available."""
    text = (content or "").strip()
    if style == "visual":
        return (
            "**Visual Learning Format**\n\n"
            f"**Key Points:**\n{key_points(text)}\n\n"
            f"**Structure Overview:**\n{visual_structure(text)}\n\n"
            f"**Visual Summary:**\n{text}\n\n"
            "**Remember:** Use diagrams, charts, and visual aids when studying this material."
        )
    if style == "auditory":
        return (
            "**Auditory Learning Format**\n\n"
            f"**Read Aloud Section:**\n\"{text}\"\n\n"
            f"**Discussion Points:**\n{discussion_points(text)}\n\n"
            "**Study Tips:**\n• Read this content aloud\n• Discuss with others\n"
            "• Create verbal summaries\n• Use rhythmic patterns to remember key points\n\n"
            f"**Main Content:**\n{text}"
        )
    if style == "kinesthetic":
        return (
            "**Hands-On Learning Format**\n\n"
            f"**Action Steps:**\n{action_steps(text)}\n\n"
            "**Practice Activities:**\n• Write key points on sticky notes\n• Create a mind map of the content\n"
            "• Act out or demonstrate the concepts\n• Build models or examples with your hands\n\n"
            f"**Interactive Notes:**\n{text}\n\n"
            "**Apply This:**\n• Take notes while reading\n• Create physical examples\n"
            "• Use gestures while learning\n• Break into small, actionable chunks"
        )
    if style == "reading":
        return (
            "**Reading/Writing Learning Format**\n\n"
            f"**Summary:**\n{short_summary(text)}\n\n"
            f"**Key Terms & Definitions:**\n{key_terms(text)}\n\n"
            f"**Detailed Content:**\n{text}\n\n"
            "**Written Exercises:**\n• Rewrite main points in your own words\n• Create an outline of this material\n"
            "• Write questions about each section\n• Make detailed notes with bullet points\n\n"
            "**Note-Taking Template:**\n- Main Idea: ___________\n- Supporting Details: ___________\n"
            "- Questions: ___________"
        )
    return text


@register
class LocalLearningStyleTransformer(ContentTransformer):
    kind = "local"
    uses_ai = False

    def parse_request(self, payload):
        return LearningStyleRequest(content=require_content(payload), learning_style=require_style(payload))

    def transform(self, request: LearningStyleRequest) -> LearningStyleResponse:
        return LearningStyleResponse(
            content=local_learning_style_rewrite(request.content, request.learning_style),
            learning_style=request.learning_style,
            kind=self.kind,
        )
