"""
Text extraction pipeline tests
"""
import pytest
import requests

from studyflow.services import extraction
from studyflow.services.documents import to_data_url
from studyflow.services.extraction import (
    ExtractionPipeline,
    ExtractionServiceError,
    FileLoader,
    FileReference,
    HttpExtractionClient,
    StageFailure,
    Strategy,
    collapse_whitespace,
    first_success,
    needs_extraction,
)
from studyflow.repositories import NoteRecord

from conftest import RecordingRemote


def make_pipeline(remote, store=None):
    return ExtractionPipeline(FileLoader(store), remote, workers=2)


class TestPlainText:
    """Plain text uploads"""

    def test_plain_text_is_returned_verbatim(self):
        """Declared text files extract to exactly their decoded content"""
        content = "Mitochondria  are the\n\n\npowerhouse of the cell.  "
        ref = FileReference(to_data_url(content.encode("utf-8"), "text/plain"), "text/plain", "bio.txt")
        remote = RecordingRemote("should not be used")

        outcome = make_pipeline(remote).run(ref)

        assert outcome.ok
        assert outcome.stage == "plain_text"
        assert outcome.text == content
        assert remote.calls == []

    def test_extension_used_when_type_is_generic(self):
        ref = FileReference(to_data_url(b"# Heading\nbody", "application/octet-stream"),
                            "application/octet-stream", "notes.md")
        outcome = make_pipeline(RecordingRemote()).run(ref)
        assert outcome.stage == "plain_text"
        assert outcome.text == "# Heading\nbody"

    def test_short_plain_text_still_accepted(self):
        ref = FileReference(to_data_url(b"Hi", "text/plain"), "text/plain", "hi.txt")
        outcome = make_pipeline(RecordingRemote()).run(ref)
        assert outcome.text == "Hi"


class TestLocalPdf:
    """Data-URL PDFs with a text layer"""

    def test_text_layer_extracted_without_remote(self, pdf_bytes):
        data = pdf_bytes("Photosynthesis converts light energy.", "Chlorophyll absorbs red and blue light.")
        ref = FileReference(to_data_url(data, "application/pdf"), "application/pdf", "bio.pdf")
        remote = RecordingRemote("remote text that should not be used")

        outcome = make_pipeline(remote).run(ref)

        assert outcome.ok
        assert outcome.stage == "local_pdf"
        assert "Photosynthesis converts light energy." in outcome.text
        assert "Chlorophyll" in outcome.text
        assert remote.calls == []

    def test_blank_pdf_falls_through_to_remote(self, pdf_bytes):
        ref = FileReference(to_data_url(pdf_bytes(), "application/pdf"), "application/pdf", "blank.pdf")
        remote = RecordingRemote("Text recovered by the extraction service")

        outcome = make_pipeline(remote).run(ref)

        assert outcome.stage == "remote"
        assert outcome.text == "Text recovered by the extraction service"
        assert len(remote.calls) == 1
        assert [f.stage for f in outcome.failures] == ["plain_text", "local_pdf"]

    def test_stray_text_layer_falls_through_to_ocr(self, monkeypatch, pdf_bytes):
        """A page number or watermark is not enough to skip OCR"""
        monkeypatch.setattr(extraction, "ocr_ready", lambda: (True, ""))
        monkeypatch.setattr(extraction, "ocr_pdf_pages", lambda data, *a, **k: "Scanned lecture on the nitrogen cycle")
        ref = FileReference(to_data_url(pdf_bytes("p. 1"), "application/pdf"), "application/pdf", "scan.pdf")

        outcome = make_pipeline(RecordingRemote("")).run(ref)

        assert outcome.stage == "ocr"
        assert outcome.text == "Scanned lecture on the nitrogen cycle"
        assert outcome.failures[1] == StageFailure("local_pdf", "no usable text layer")

    def test_ocr_reads_at_most_three_pages(self, monkeypatch):
        import fitz

        doc = fitz.open()
        for _ in range(5):
            doc.new_page()
        data = doc.tobytes()
        doc.close()

        calls = []

        def image_to_string(img):
            calls.append(img.mode)
            return f"Page {len(calls)}"

        monkeypatch.setattr(extraction.pytesseract, "image_to_string", image_to_string)

        assert extraction.ocr_pdf_pages(data) == "Page 1 Page 2 Page 3"
        assert calls == ["L", "L", "L"]


class TestRemoteAndOcr:
    """Remote extraction results and the OCR fallback"""

    def test_sentinel_from_remote_moves_on_to_ocr(self, monkeypatch, pdf_bytes):
        monkeypatch.setattr(extraction, "ocr_ready", lambda: (True, ""))
        monkeypatch.setattr(extraction, "ocr_pdf_pages", lambda data, *a, **k: "Handwritten lecture notes on cells")
        ref = FileReference(to_data_url(pdf_bytes(), "application/pdf"), "application/pdf", "scan.pdf")
        remote = RecordingRemote("[Unable to extract text from this PDF. It may be scanned or image-based.]")

        outcome = make_pipeline(remote).run(ref)

        assert outcome.ok
        assert outcome.stage == "ocr"
        assert outcome.text == "Handwritten lecture notes on cells"
        assert outcome.service_error is None

    def test_too_short_remote_result_is_a_failure(self):
        ref = FileReference("uploads/a.docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
                            "a.docx")
        outcome = make_pipeline(RecordingRemote("tiny")).run(ref)
        assert not outcome.ok
        assert [f.stage for f in outcome.failures] == ["plain_text", "local_pdf", "remote", "ocr"]

    def test_service_error_is_surfaced(self):
        ref = FileReference("https://files.example.com/a.docx", "", "a.docx")
        remote = RecordingRemote(error=ExtractionServiceError("Extraction service unreachable: timeout"))

        outcome = make_pipeline(remote).run(ref)

        assert not outcome.ok
        assert outcome.service_error == "Extraction service unreachable: timeout"

    def test_images_are_ocrd_directly(self, monkeypatch):
        from io import BytesIO
        from PIL import Image

        buf = BytesIO()
        Image.new("RGB", (20, 20), "white").save(buf, format="PNG")
        monkeypatch.setattr(extraction, "ocr_ready", lambda: (True, ""))
        monkeypatch.setattr(extraction, "ocr_image", lambda img: "Whiteboard photo text")
        ref = FileReference(to_data_url(buf.getvalue(), "image/png"), "image/png", "board.png")
        remote = RecordingRemote("[This file type is not supported for text extraction.]")

        outcome = make_pipeline(remote).run(ref)

        assert outcome.stage == "ocr"
        assert outcome.text == "Whiteboard photo text"

    def test_ocr_unavailable_gives_no_text(self, monkeypatch, pdf_bytes):
        monkeypatch.setattr(extraction, "ocr_ready", lambda: (False, "tesseract not available"))
        ref = FileReference(to_data_url(pdf_bytes(), "application/pdf"), "application/pdf", "scan.pdf")
        outcome = make_pipeline(RecordingRemote("")).run(ref)
        assert not outcome.ok
        assert outcome.failures[-1].reason == "tesseract not available"


class TestCombinator:
    """first_success and helpers"""

    def test_exceptions_become_failures(self):
        def boom(ref):
            raise RuntimeError("bad bytes")

        strategies = [Strategy("boom", boom), Strategy("ok", lambda ref: "fine text here")]
        outcome = first_success(strategies, FileReference("x"))

        assert outcome.text == "fine text here"
        assert outcome.stage == "ok"
        assert outcome.failures == [StageFailure("boom", "RuntimeError: bad bytes")]

    def test_all_failing(self):
        outcome = first_success([Strategy("a", lambda ref: StageFailure("a", "no"))], FileReference("x"))
        assert not outcome.ok
        assert outcome.stage is None

    def test_collapse_whitespace(self):
        assert collapse_whitespace("a  \t b\n\n\n  c  ") == "a b\nc"

    def test_needs_extraction(self):
        assert needs_extraction(NoteRecord(title="t", file_reference="a/b.pdf"))
        assert needs_extraction(NoteRecord(title="t", file_reference="a/b.pdf",
                                           text_content="[No text found in file]"))
        assert not needs_extraction(NoteRecord(title="t", file_reference="a/b.pdf", text_content="Real notes"))
        assert not needs_extraction(NoteRecord(title="t", text_content=None))

    def test_run_many(self):
        refs = {
            "one": FileReference(to_data_url(b"first note text", "text/plain"), "text/plain", "1.txt"),
            "two": FileReference(to_data_url(b"second note text", "text/plain"), "text/plain", "2.txt"),
        }
        outcomes = make_pipeline(RecordingRemote()).run_many(refs)
        assert outcomes["one"].text == "first note text"
        assert outcomes["two"].text == "second note text"


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body

    def json(self):
        if self.body is None:
            raise ValueError("No JSON object could be decoded")
        return self.body


class TestHttpExtractionClient:
    """Calls to a separately deployed /extract-file-text"""

    def capture(self, monkeypatch, response=None, error=None):
        sent = []

        def post(url, json=None, headers=None, timeout=None):
            sent.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
            if error is not None:
                raise error
            return response

        monkeypatch.setattr(extraction.requests, "post", post)
        return sent

    def test_url_sent_as_file_url(self, monkeypatch):
        sent = self.capture(monkeypatch, FakeResponse(body={"extractedText": "Remote text body"}))
        client = HttpExtractionClient("https://extract.example.com/extract-file-text", timeout=5)

        text = client.extract(FileReference("https://files.example.com/a.pdf", "application/pdf", "a.pdf"))

        assert text == "Remote text body"
        assert sent[0]["json"] == {
            "fileType": "application/pdf", "fileName": "a.pdf", "fileUrl": "https://files.example.com/a.pdf",
        }
        assert sent[0]["headers"] == {}
        assert sent[0]["timeout"] == 5

    def test_store_path_sent_with_token(self, monkeypatch):
        sent = self.capture(monkeypatch, FakeResponse(body={"extractedText": "Stored file text"}))
        client = HttpExtractionClient("https://extract.example.com/extract-file-text", token="shared-token")

        client.extract(FileReference("7/123_notes.docx", "", "notes.docx"))

        assert sent[0]["json"]["filePath"] == "7/123_notes.docx"
        assert "fileUrl" not in sent[0]["json"]
        assert sent[0]["headers"] == {"X-Extraction-Token": "shared-token"}

    def test_error_body_is_raised(self, monkeypatch):
        self.capture(monkeypatch, FakeResponse(200, {"error": "Failed to download file"}))
        with pytest.raises(ExtractionServiceError, match="Failed to download file"):
            HttpExtractionClient("https://extract.example.com").extract(FileReference("7/a.pdf"))

    def test_server_error_is_raised(self, monkeypatch):
        self.capture(monkeypatch, FakeResponse(502))
        with pytest.raises(ExtractionServiceError, match="HTTP 502"):
            HttpExtractionClient("https://extract.example.com").extract(FileReference("7/a.pdf"))

    def test_non_object_body_is_raised(self, monkeypatch):
        self.capture(monkeypatch, FakeResponse(200, ["not", "an", "object"]))
        with pytest.raises(ExtractionServiceError, match="unexpected body"):
            HttpExtractionClient("https://extract.example.com").extract(FileReference("7/a.pdf"))

    def test_connection_error_is_surfaced(self, monkeypatch):
        self.capture(monkeypatch, error=requests.ConnectionError("connection refused"))
        ref = FileReference("https://files.example.com/a.docx", "", "a.docx")
        pipeline = make_pipeline(HttpExtractionClient("https://extract.example.com"))

        outcome = pipeline.run(ref)

        assert not outcome.ok
        assert outcome.service_error.startswith("Extraction service unreachable")
