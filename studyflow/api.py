"""
StudyFlow JSON API: remote extraction, AI transformations, speech,
the learning-style quiz and downloads.
"""
import hmac
import io

import requests
from flask import Blueprint, current_app, jsonify, request, send_file
from flask_login import current_user

from studyflow import limiter
from studyflow.auth import record_transform_use, usage_limit_check
from studyflow.learning_style import QUIZ_QUESTIONS, STYLES, score_answers, summarize
from studyflow.repositories import get_note_repository
from studyflow.services.documents import extract_document_text
from studyflow.services.export import ExportError, build_export
from studyflow.services.extraction import FileReference
from studyflow.services.llm import TransformError, get_chat_client
from studyflow.services.speech import VOICE_IDS, SpeechError, SpeechSynthesizer
from studyflow.services.storage import StorageError
from studyflow.services.transformers import TRANSFORMERS, create_transformer

api_bp = Blueprint('api', __name__)


def _services():
    return current_app.extensions["studyflow"]


def _trusted_service_call():
    expected = (current_app.config.get("EXTRACTION_SERVICE_TOKEN") or "").strip()
    given = (request.headers.get("X-Extraction-Token") or "").strip()
    return bool(expected) and hmac.compare_digest(expected, given)


def _may_read_path(path):
    if _trusted_service_call():
        return True
    return current_user.is_authenticated and path.startswith(f"{current_user.id}/")


# ============ Remote extraction ============

@api_bp.route("/extract-file-text", methods=["POST"])
def extract_file_text():
    """Server-side text extraction for PDF, DOCX, plain text and JSON files."""
    payload = request.get_json(silent=True) or {}
    file_url = (payload.get("fileUrl") or "").strip()
    file_path = (payload.get("filePath") or "").strip()
    file_type = (payload.get("fileType") or "").strip()
    file_name = (payload.get("fileName") or "").strip()

    if not file_url and not file_path:
        return jsonify({"ok": False, "error": "Either fileUrl or filePath is required"}), 400

    ref = FileReference(source=file_url or file_path, file_type=file_type, file_name=file_name)
    if file_url and not (ref.is_data_url or ref.is_remote_url):
        return jsonify({"ok": False, "error": "fileUrl must be an http(s) or data: URL"}), 400
    if not file_url and not _may_read_path(file_path):
        return jsonify({"ok": False, "error": "File not found"}), 404

    try:
        data = ref.read_bytes(_services()["pipeline"].loader)
    except (requests.RequestException, StorageError, ValueError) as e:
        current_app.logger.warning("extract-file-text could not load %s: %s", file_name or "file", e)
        return jsonify({"ok": False, "error": f"Failed to download file: {e}"}), 500

    text = extract_document_text(data, ref.effective_type, file_name)
    current_app.logger.info("extract-file-text: %d chars from %s", len(text), file_name or "file")
    return jsonify({"ok": True, "extractedText": text}), 200


# ============ Transformations ============

@api_bp.route("/transform/kinds", methods=["GET"])
def transform_kinds():
    return jsonify({"ok": True, "kinds": sorted(TRANSFORMERS), "learning_styles": list(STYLES),
                    "voices": sorted(VOICE_IDS)}), 200


@api_bp.route("/transform/<kind>", methods=["POST"])
@limiter.limit("60 per hour")
@usage_limit_check
def transform(kind):
    if kind not in TRANSFORMERS:
        return jsonify({"ok": False, "error": f"Unknown transformation: {kind}"}), 404

    payload = dict(request.get_json(silent=True) or {})
    note_id = payload.get("note_id")
    if note_id:
        repo = get_note_repository()
        note = repo.get(str(note_id)) if repo else None
        if not note:
            return jsonify({"ok": False, "error": "Note not found"}), 404
        payload["content"] = note.text_content or ""

    transformer = create_transformer(
        kind,
        chat=get_chat_client(),
        speech=SpeechSynthesizer.from_config(current_app.config),
    )
    try:
        result = transformer.run(payload)
    except TransformError as e:
        if e.status >= 500:
            current_app.logger.warning("Transform %s failed: %s", kind, e.message)
        return jsonify({"ok": False, "error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Transform %s crashed", kind)
        return jsonify({"ok": False, "error": "Transformation failed"}), 500

    if transformer.uses_ai:
        record_transform_use()
    return jsonify({"ok": True, **result}), 200


@api_bp.route("/text-to-speech", methods=["POST"])
@limiter.limit("60 per hour")
@usage_limit_check
def text_to_speech():
    payload = request.get_json(silent=True) or {}
    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        return jsonify({"ok": False, "error": "Text is required"}), 400

    try:
        result = SpeechSynthesizer.from_config(current_app.config).synthesize(text, payload.get("voice") or "Aria")
    except SpeechError as e:
        return jsonify({"ok": False, "error": e.message}), e.status

    record_transform_use()
    return jsonify({
        "ok": True,
        "audio_base64": result.audio_base64,
        "voice": result.voice,
        "provider": result.provider,
    }), 200


# ============ Learning-style quiz ============

@api_bp.route("/quiz/questions", methods=["GET"])
def quiz_questions():
    return jsonify({"ok": True, "questions": QUIZ_QUESTIONS, "total": len(QUIZ_QUESTIONS)}), 200


@api_bp.route("/quiz/score", methods=["POST"])
def quiz_score():
    payload = request.get_json(silent=True) or {}
    answers = payload.get("answers")
    if not isinstance(answers, (list, dict)) or not answers:
        return jsonify({"ok": False, "error": "answers must be a non-empty list or object"}), 400
    try:
        scores = score_answers(answers)
    except (ValueError, TypeError) as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    return jsonify({"ok": True, **summarize(scores)}), 200


# ============ Downloads ============

@api_bp.route("/export", methods=["POST"])
def export():
    payload = request.get_json(silent=True) or {}
    try:
        out = build_export(payload)
    except ExportError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("Export failed")
        return jsonify({"ok": False, "error": f"Export failed: {type(e).__name__}: {e}"}), 500
    return send_file(io.BytesIO(out.data), mimetype=out.mimetype, as_attachment=True, download_name=out.filename)
