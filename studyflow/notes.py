"""
Notes API: CRUD, uploads, text extraction and consolidation.

Works for both logged-in users (SQL) and guests (key-value store); the
backend comes from get_note_repository().
"""
import binascii

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from studyflow.auth import record_transform_use, unauthorized, usage_limit_check
from studyflow.repositories import NoteRecord, get_note_repository
from studyflow.services.documents import is_data_url, parse_data_url, to_data_url
from studyflow.services.extraction import file_reference_for, needs_extraction
from studyflow.services.llm import TransformError, get_chat_client
from studyflow.services.sentinels import has_usable_content
from studyflow.services.storage import StorageError
from studyflow.services.transformers import create_transformer

notes_bp = Blueprint('notes', __name__)

MAX_TITLE_LENGTH = 255


def _services():
    return current_app.extensions["studyflow"]


def _owner_id():
    if current_user.is_authenticated:
        return str(current_user.id)
    return "guest"


def _is_store_path(ref):
    return bool(ref) and not is_data_url(ref) and not ref.lower().startswith(("http://", "https://"))


def _extraction_summary(outcome):
    return {
        "ok": outcome.ok,
        "stage": outcome.stage,
        "error": outcome.service_error,
        "failures": [{"stage": f.stage, "reason": f.reason} for f in outcome.failures],
    }


def _store_upload(data, file_name, file_type):
    """Keep the upload and return the note's file reference.

    Guests keep the file embedded as a data URL; accounts use the upload store.
    """
    if not current_user.is_authenticated:
        return to_data_url(data, file_type)
    return _services()["upload_store"].save(_owner_id(), file_name, data, content_type=file_type)


def _read_new_note():
    """Parse a multipart or JSON create request into a NoteRecord."""
    upload = request.files.get("file")
    if upload is not None:
        form = request.form
        title = (form.get("title") or "").strip()
        text_content = form.get("text_content") or None
        file_name = upload.filename or "upload"
        file_type = upload.mimetype or ""
        data = upload.read()
        if not data:
            raise ValueError("Uploaded file is empty")
        file_reference = _store_upload(data, file_name, file_type)
    else:
        payload = request.get_json(silent=True) or {}
        title = (payload.get("title") or "").strip()
        text_content = payload.get("text_content") or None
        file_name = (payload.get("file_name") or "").strip() or None
        file_type = (payload.get("file_type") or "").strip() or None
        file_reference = None
        data_url = (payload.get("file_data_url") or "").strip()
        file_url = (payload.get("file_url") or "").strip()
        if data_url:
            try:
                mime, data = parse_data_url(data_url)
            except (ValueError, binascii.Error) as e:
                raise ValueError(f"Invalid file_data_url: {e}")
            file_type = file_type or mime
            file_reference = data_url if not current_user.is_authenticated else \
                _store_upload(data, file_name or "upload", file_type)
        elif file_url:
            if not file_url.lower().startswith(("http://", "https://")):
                raise ValueError("file_url must be an http(s) URL")
            file_reference = file_url

    if text_content is not None and not isinstance(text_content, str):
        raise ValueError("text_content must be a string")
    if not (text_content or "").strip() and not file_reference:
        raise ValueError("Provide text_content or a file")

    title = (title or file_name or "Untitled")[:MAX_TITLE_LENGTH]
    return NoteRecord(
        title=title,
        text_content=text_content if (text_content or "").strip() else None,
        file_reference=file_reference,
        file_name=file_name,
        file_type=file_type,
    )


def _extract_into(repo, note):
    """Run the pipeline for one note and persist text on success."""
    outcome = _services()["pipeline"].run(file_reference_for(note))
    if outcome.ok:
        note = repo.update(note.id, text_content=outcome.text) or note
    return note, outcome


@notes_bp.route("/notes", methods=["GET"])
def list_notes():
    repo = get_note_repository()
    if repo is None:
        return unauthorized()
    notes = repo.list_notes()
    return jsonify({"ok": True, "notes": [n.to_dict(include_file=False) for n in notes]}), 200


@notes_bp.route("/notes", methods=["POST"])
def create_note():
    repo = get_note_repository()
    if repo is None:
        return unauthorized()

    try:
        record = _read_new_note()
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    except StorageError as e:
        current_app.logger.warning("Upload storage failed: %s", e)
        return jsonify({"ok": False, "error": str(e)}), 500

    note = repo.add(record)
    response = {"ok": True}
    if needs_extraction(note):
        note, outcome = _extract_into(repo, note)
        response["extraction"] = _extraction_summary(outcome)
    response["note"] = note.to_dict(include_file=False)
    return jsonify(response), 201


@notes_bp.route("/notes/<note_id>", methods=["GET"])
def get_note(note_id):
    repo = get_note_repository()
    if repo is None:
        return unauthorized()
    note = repo.get(note_id)
    if not note:
        return jsonify({"ok": False, "error": "Note not found"}), 404
    return jsonify({"ok": True, "note": note.to_dict()}), 200


@notes_bp.route("/notes/<note_id>", methods=["PATCH"])
def update_note(note_id):
    repo = get_note_repository()
    if repo is None:
        return unauthorized()

    payload = request.get_json(silent=True) or {}
    changes = {}
    if "title" in payload:
        title = (payload.get("title") or "").strip()
        if not title:
            return jsonify({"ok": False, "error": "Title cannot be empty"}), 400
        changes["title"] = title[:MAX_TITLE_LENGTH]
    if "text_content" in payload:
        text = payload.get("text_content")
        if text is not None and not isinstance(text, str):
            return jsonify({"ok": False, "error": "text_content must be a string"}), 400
        changes["text_content"] = text if (text or "").strip() else None
    if not changes:
        return jsonify({"ok": False, "error": "Nothing to update"}), 400

    note = repo.update(note_id, **changes)
    if not note:
        return jsonify({"ok": False, "error": "Note not found"}), 404
    return jsonify({"ok": True, "note": note.to_dict(include_file=False)}), 200


@notes_bp.route("/notes/<note_id>", methods=["DELETE"])
def delete_note(note_id):
    repo = get_note_repository()
    if repo is None:
        return unauthorized()
    note = repo.delete(note_id)
    if not note:
        return jsonify({"ok": False, "error": "Note not found"}), 404

    if _is_store_path(note.file_reference):
        try:
            _services()["upload_store"].delete(note.file_reference)
        except StorageError as e:
            current_app.logger.warning("Could not delete stored file for note %s: %s", note_id, e)
    return jsonify({"ok": True, "deleted": note_id}), 200


@notes_bp.route("/notes/<note_id>/extract", methods=["POST"])
def extract_note(note_id):
    """Manual retry of text extraction for one note."""
    repo = get_note_repository()
    if repo is None:
        return unauthorized()
    note = repo.get(note_id)
    if not note:
        return jsonify({"ok": False, "error": "Note not found"}), 404
    if has_usable_content(note.text_content):
        return jsonify({
            "ok": True,
            "extracted": False,
            "message": "Note already has text content",
            "note": note.to_dict(include_file=False),
        }), 200
    if not note.file_reference:
        return jsonify({"ok": False, "error": "Note has no file to extract from"}), 400

    note, outcome = _extract_into(repo, note)
    body = {"ok": True, "extracted": outcome.ok, "stage": outcome.stage, "note": note.to_dict(include_file=False)}
    if outcome.service_error:
        body["error"] = outcome.service_error
    if not outcome.ok:
        body["message"] = "No text found in this file"
    return jsonify(body), 200


@notes_bp.route("/notes/extract-pending", methods=["POST"])
def extract_pending():
    """Extract every note that has a file but no usable text, side by side."""
    repo = get_note_repository()
    if repo is None:
        return unauthorized()

    pending = {n.id: n for n in repo.list_notes() if needs_extraction(n)}
    outcomes = _services()["pipeline"].run_many({nid: file_reference_for(n) for nid, n in pending.items()})

    results = {}
    extracted = 0
    for note_id, outcome in outcomes.items():
        if outcome.ok:
            repo.update(note_id, text_content=outcome.text)
            extracted += 1
        results[note_id] = _extraction_summary(outcome)
    current_app.logger.info("Extracted %d of %d pending notes", extracted, len(pending))
    return jsonify({"ok": True, "processed": len(pending), "extracted": extracted, "results": results}), 200


@notes_bp.route("/notes/consolidate", methods=["POST"])
@usage_limit_check
def consolidate_notes():
    """Merge several notes into one document, optionally saving it as a new note."""
    repo = get_note_repository()
    if repo is None:
        return unauthorized()

    payload = request.get_json(silent=True) or {}
    note_ids = payload.get("note_ids") or []
    if not isinstance(note_ids, list) or len(note_ids) < 2:
        return jsonify({"ok": False, "error": "Select at least two notes to consolidate"}), 400

    notes = []
    for nid in note_ids:
        note = repo.get(str(nid))
        if not note:
            return jsonify({"ok": False, "error": f"Note not found: {nid}"}), 404
        notes.append({"title": note.title, "content": note.text_content or ""})

    try:
        transformer = create_transformer("consolidate", chat=get_chat_client())
        result = transformer.run({"notes": notes})
    except TransformError as e:
        return jsonify({"ok": False, "error": e.message}), e.status
    record_transform_use()

    body = {"ok": True, **result}
    if payload.get("save"):
        title = (payload.get("title") or "").strip() or "Consolidated notes"
        saved = repo.add(NoteRecord(title=title[:MAX_TITLE_LENGTH], text_content=result["content"]))
        body["note"] = saved.to_dict(include_file=False)
    return jsonify(body), 200
