"""
Content transformer tests (OpenAI replaced with FakeChat)
"""
import json

import pytest

from studyflow.services.llm import TransformError, safe_json_loads
from studyflow.services.speech import SpeechResult
from studyflow.services.transformers import (
    TRANSFORMERS,
    ConsolidationTransformer,
    create_transformer,
    local_learning_style_rewrite,
    repair_quiz_question,
)

from conftest import FakeChat

NOTES = "Photosynthesis converts light energy into chemical energy. It happens in the chloroplasts of plant cells."


def quiz_item(n, answer="A"):
    return {"question": f"Question {n}?", "options": {"A": "a", "B": "b", "C": "c", "D": "d"}, "correctAnswer": answer}


class TestRegistry:
    def test_all_kinds_registered(self):
        assert set(TRANSFORMERS) == {
            "flashcards", "audio", "quiz", "enhanced", "learning_style", "consolidate", "custom", "local",
        }

    def test_unknown_kind(self):
        with pytest.raises(TransformError) as exc:
            create_transformer("interpretive-dance")
        assert exc.value.status == 400

    def test_missing_api_key(self):
        with pytest.raises(TransformError) as exc:
            create_transformer("enhanced", chat=None).run({"content": NOTES})
        assert exc.value.status == 500


class TestContentGating:
    """Sentinel or empty content never reaches the model"""

    @pytest.mark.parametrize("content", ["", "   ", "[Unable to extract text from this PDF.]", None])
    def test_rejected(self, content):
        chat = FakeChat("unused")
        with pytest.raises(TransformError) as exc:
            create_transformer("enhanced", chat=chat).run({"content": content})
        assert exc.value.status == 400
        assert chat.calls == []


class TestFlashcards:
    def test_cards_parsed_from_fenced_json(self):
        reply = "```json\n" + json.dumps([{"question": "What is ATP?", "answer": "Energy currency"}]) + "\n```"
        result = create_transformer("flashcards", chat=FakeChat(reply)).run({"content": NOTES})
        assert result["format"] == "flashcards"
        assert result["flashcards"] == [{"question": "What is ATP?", "answer": "Energy currency"}]

    def test_unparsable_falls_back_to_text(self):
        result = create_transformer("flashcards", chat=FakeChat("Q: What is ATP? A: energy")).run({"content": NOTES})
        assert result["format"] == "text"
        assert result["text"] == "Q: What is ATP? A: energy"


class TestQuiz:
    """Quiz generation with top-up pass"""

    def test_count_is_clamped(self):
        chat = FakeChat(json.dumps([quiz_item(i) for i in range(5)]))
        result = create_transformer("quiz", chat=chat).run({"content": NOTES, "count": 2})
        assert result["total_questions"] == 5
        assert "exactly 5" in chat.calls[0]["user"]

    def test_second_pass_fills_shortfall_and_dedupes(self):
        first = [quiz_item(i) for i in range(1, 6)]
        second = [quiz_item(5), quiz_item(6), quiz_item(7)]
        chat = FakeChat(json.dumps(first), json.dumps(second))

        result = create_transformer("quiz", chat=chat).run({"content": NOTES, "count": 7})

        assert len(chat.calls) == 2
        questions = [q["question"] for q in result["questions"]]
        assert questions == [f"Question {i}?" for i in range(1, 8)]
        assert result["total_questions"] == 7
        assert "Question 1?" in chat.calls[1]["user"]

    def test_trims_to_count(self):
        chat = FakeChat(json.dumps([quiz_item(i) for i in range(8)]))
        result = create_transformer("quiz", chat=chat).run({"content": NOTES, "count": 5})
        assert result["total_questions"] == 5
        assert len(chat.calls) == 1

    def test_excluded_questions_passed_and_filtered(self):
        chat = FakeChat(json.dumps([quiz_item(i) for i in range(6)]), "[]")
        result = create_transformer("quiz", chat=chat).run(
            {"content": NOTES, "count": 6, "exclude_questions": ["Question 0?"]})
        assert "Question 0?" in chat.calls[0]["user"]
        assert "Question 0?" not in [q["question"] for q in result["questions"]]

    def test_invalid_first_pass(self):
        with pytest.raises(TransformError) as exc:
            create_transformer("quiz", chat=FakeChat("no json here")).run({"content": NOTES})
        assert exc.value.status == 500

    def test_failed_top_up_keeps_first_pass(self):
        chat = FakeChat(json.dumps([quiz_item(i) for i in range(5)]), TransformError("Rate limits exceeded", 429))
        result = create_transformer("quiz", chat=chat).run({"content": NOTES, "count": 10})
        assert result["total_questions"] == 5

    def test_repair_question(self):
        fixed = repair_quiz_question({"question": "Q?", "options": ["w", "x", "y", "z"], "correct_answer": "c"})
        assert fixed.options == {"A": "w", "B": "x", "C": "y", "D": "z"}
        assert fixed.correct_answer == "C"
        assert repair_quiz_question({"question": "Q?", "options": {"A": "1"}, "correctAnswer": "A"}) is None


class TestLearningStyle:
    def test_style_prompt_used(self):
        chat = FakeChat("Rewritten for doers")
        result = create_transformer("learning_style", chat=chat).run({"content": NOTES, "learning_style": "kinesthetic"})
        assert result == {"content": "Rewritten for doers", "learning_style": "kinesthetic", "kind": "learning_style"}
        assert "kinesthetic learners" in chat.calls[0]["system"]

    def test_invalid_style(self):
        with pytest.raises(TransformError) as exc:
            create_transformer("learning_style", chat=FakeChat()).run({"content": NOTES, "learning_style": "osmotic"})
        assert exc.value.status == 400

    def test_local_rewrite_needs_no_model(self):
        result = create_transformer("local").run({"content": NOTES, "learning_style": "visual"})
        assert "**Key Points:**" in result["content"]
        assert "1. Photosynthesis converts light energy into chemical energy." in result["content"]

    def test_local_reading_format(self):
        text = local_learning_style_rewrite(NOTES, "reading")
        assert "**Key Terms & Definitions:**" in text
        assert "1. **Photosynthesis**: [Definition needed]" in text


class TestConsolidation:
    def test_sentinel_notes_skipped(self):
        chat = FakeChat("# Merged")
        result = create_transformer("consolidate", chat=chat).run({"notes": [
            {"title": "Lecture 1", "content": NOTES},
            {"title": "Scan", "content": "[Unable to extract text from this PDF.]"},
            {"title": "Lecture 2", "content": "Respiration releases energy from glucose."},
        ]})
        assert result["content"] == "# Merged"
        assert result["original_titles"] == ["Lecture 1", "Lecture 2"]
        assert "=== Document 2: Lecture 2 ===" in chat.calls[0]["user"]
        assert "Scan" not in chat.calls[0]["user"]

    def test_no_usable_notes(self):
        with pytest.raises(TransformError) as exc:
            create_transformer("consolidate", chat=FakeChat()).run({"notes": [{"title": "x", "content": ""}]})
        assert exc.value.status == 400

    def test_document_format(self):
        from studyflow.services.transformers import NoteInput
        text = ConsolidationTransformer.format_documents([NoteInput("A", "one"), NoteInput("B", "two")])
        assert text == "=== Document 1: A ===\none\n\n=== Document 2: B ===\ntwo\n"


class TestAudio:
    def test_script_then_speech(self):
        class FakeSpeech:
            def synthesize(self, text, voice):
                self.text = text
                return SpeechResult("QUJD", voice, "elevenlabs")

        speech = FakeSpeech()
        result = create_transformer("audio", chat=FakeChat("Welcome to today's lesson"), speech=speech).run(
            {"content": NOTES, "voice": "Roger"})
        assert result["script"] == "Welcome to today's lesson"
        assert result["audio_base64"] == "QUJD"
        assert speech.text == "Welcome to today's lesson"


class TestCustomPrompt:
    def test_prompt_required(self):
        with pytest.raises(TransformError):
            create_transformer("custom", chat=FakeChat()).run({"content": NOTES})

    def test_prompt_prepended(self):
        chat = FakeChat("Haiku about plants")
        result = create_transformer("custom", chat=chat).run({"content": NOTES, "prompt": "Write a haiku"})
        assert result["content"] == "Haiku about plants"
        assert chat.calls[0]["user"].startswith("Write a haiku")


class TestJsonParsing:
    def test_array_inside_chatter(self):
        obj, err = safe_json_loads('Sure! Here you go: [{"a": 1}] Enjoy', expect=list)
        assert obj == [{"a": 1}]
        assert err == ""

    def test_wrong_type(self):
        obj, err = safe_json_loads('{"a": 1}', expect=list)
        assert obj is None
        assert err
