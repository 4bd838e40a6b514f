"""Text extraction pipeline.

Turns an uploaded file into plain text by trying, in order:

1. plain_text  - decode text/* uploads as UTF-8
2. local_pdf   - read the text layer of a data-URL PDF with PyMuPDF
3. remote      - hand the file to the extraction service (PDF/DOCX/JSON/text)
4. ocr         - render up to 3 PDF pages and run tesseract over them

Each stage is a ``(FileReference) -> str | StageFailure`` callable and the
first one that produces text wins. Stage exceptions become failures; only a
network error talking to the extraction service is reported back to the
caller (``ExtractionOutcome.service_error``).
"""
from __future__ import annotations

import io
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Union

import fitz  # PyMuPDF
import pytesseract
import requests
from PIL import Image

from studyflow.services.documents import (
    GENERIC_TYPES,
    extract_document_text,
    is_data_url,
    parse_data_url,
    sniff_kind,
)
from studyflow.services.sentinels import has_usable_content, is_usable_extraction
from studyflow.services.storage import StorageError, UploadStore

logger = logging.getLogger(__name__)

MAX_LOCAL_PDF_PAGES = 100
MAX_OCR_PAGES = 3
OCR_RENDER_SCALE = 1.5


class ExtractionServiceError(Exception):
    """The remote extraction call failed at the network/HTTP level."""


@dataclass
class FileReference:
    source: str
    file_type: str = ""
    file_name: str = ""
    _data: Optional[bytes] = field(default=None, repr=False, compare=False)

    @property
    def is_data_url(self) -> bool:
        return is_data_url(self.source)

    @property
    def is_remote_url(self) -> bool:
        return (self.source or "").lower().startswith(("http://", "https://"))

    @property
    def effective_type(self) -> str:
        t = (self.file_type or "").strip()
        if t.lower() in GENERIC_TYPES and self.is_data_url:
            header = self.source[5:].split(",", 1)[0]
            return header.split(";", 1)[0]
        return t

    @property
    def kind(self) -> str:
        return sniff_kind(self.effective_type, self.file_name)

    def read_bytes(self, loader: "FileLoader") -> bytes:
        if self._data is None:
            self._data = loader.load(self)
        return self._data


@dataclass
class StageFailure:
    stage: str
    reason: str
    surfaced: bool = False


StageResult = Union[str, StageFailure]


class Strategy(NamedTuple):
    name: str
    run: Callable[[FileReference], StageResult]


@dataclass
class ExtractionOutcome:
    text: Optional[str] = None
    stage: Optional[str] = None
    failures: List[StageFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.text is not None

    @property
    def service_error(self) -> Optional[str]:
        for f in self.failures:
            if f.surfaced:
                return f.reason
        return None


def collapse_whitespace(text: str) -> str:
    text = re.sub(r"[ \t\r\f\v]+", " ", text or "")
    text = re.sub(r" ?\n\s*", "\n", text)
    return text.strip()


def first_success(strategies: List[Strategy], ref: FileReference) -> ExtractionOutcome:
    """Run strategies in order and stop at the first one that returns text."""
    failures: List[StageFailure] = []
    for strategy in strategies:
        try:
            result = strategy.run(ref)
        except Exception as e:
            result = StageFailure(strategy.name, f"{type(e).__name__}: {e}")
        if isinstance(result, StageFailure):
            logger.debug("Extraction stage %s failed for %s: %s", strategy.name, ref.file_name, result.reason)
            failures.append(result)
            continue
        return ExtractionOutcome(text=result, stage=strategy.name, failures=failures)
    return ExtractionOutcome(failures=failures)


class FileLoader:
    """Resolves a file reference to bytes (data URL, http(s) URL or upload store path)."""

    def __init__(self, store: Optional[UploadStore] = None, timeout: int = 60):
        self.store = store
        self.timeout = timeout

    def load(self, ref: FileReference) -> bytes:
        if ref.is_data_url:
            return parse_data_url(ref.source)[1]
        if ref.is_remote_url:
            r = requests.get(ref.source, timeout=self.timeout)
            r.raise_for_status()
            return r.content
        if self.store is None:
            raise StorageError("No upload store configured")
        return self.store.read(ref.source)


class RemoteExtractionClient:
    def extract(self, ref: FileReference) -> str:
        raise NotImplementedError


class HttpExtractionClient(RemoteExtractionClient):
    """Calls an ``/extract-file-text`` endpoint over HTTP."""

    def __init__(self, url: str, timeout: int = 60, token: str = ""):
        self.url = url
        self.timeout = timeout
        self.token = token

    def extract(self, ref: FileReference) -> str:
        payload = {"fileType": ref.file_type, "fileName": ref.file_name}
        if ref.is_data_url or ref.is_remote_url:
            payload["fileUrl"] = ref.source
        else:
            payload["filePath"] = ref.source
        try:
            headers = {"X-Extraction-Token": self.token} if self.token else {}
            r = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExtractionServiceError(f"Extraction service unreachable: {e}") from e
        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            raise ExtractionServiceError(f"Extraction service returned an unexpected body (HTTP {r.status_code})")
        if r.status_code >= 400 or data.get("error"):
            raise ExtractionServiceError(data.get("error") or f"Extraction service returned HTTP {r.status_code}")
        return data.get("extractedText") or ""


class InProcessExtractionClient(RemoteExtractionClient):
    """Runs the extraction service logic in this process."""

    def __init__(self, loader: FileLoader):
        self.loader = loader

    def extract(self, ref: FileReference) -> str:
        try:
            data = ref.read_bytes(self.loader)
        except requests.RequestException as e:
            raise ExtractionServiceError(f"Could not download file: {e}") from e
        return extract_document_text(data, ref.effective_type, ref.file_name)


def pdf_text_layer(data: bytes, max_pages: int = MAX_LOCAL_PDF_PAGES) -> str:
    doc = fitz.open(stream=data, filetype="pdf")
    pieces: List[str] = []
    try:
        for i in range(min(doc.page_count, max_pages)):
            page = doc.load_page(i)
            for block in page.get_text("dict").get("blocks", []):
                for line in block.get("lines", []):
                    spans = line.get("spans", [])
                    for j, span in enumerate(spans):
                        pieces.append(span.get("text", ""))
                        # last item on a line ends it
                        pieces.append("\n" if j == len(spans) - 1 else " ")
    finally:
        doc.close()
    return collapse_whitespace("".join(pieces))


def ocr_ready():
    try:
        pytesseract.get_tesseract_version()
    except Exception as e:
        return False, f"tesseract not available: {e}"
    return True, ""


def ocr_image(img) -> str:
    try:
        gray = img.convert("L")
    except Exception:
        gray = img
    return pytesseract.image_to_string(gray) or ""


def ocr_pdf_pages(data: bytes, max_pages: int = MAX_OCR_PAGES, scale: float = OCR_RENDER_SCALE) -> str:
    doc = fitz.open(stream=data, filetype="pdf")
    parts: List[str] = []
    try:
        matrix = fitz.Matrix(scale, scale)
        for i in range(min(doc.page_count, max_pages)):
            page = doc.load_page(i)
            pix = page.get_pixmap(matrix=matrix, alpha=False)
            img = Image.open(io.BytesIO(pix.tobytes("png")))
            parts.append(ocr_image(img))
    finally:
        doc.close()
    return collapse_whitespace(" ".join(parts))


class ExtractionPipeline:
    def __init__(self, loader: FileLoader, remote: RemoteExtractionClient, workers: int = 4):
        self.loader = loader
        self.remote = remote
        self.workers = max(1, workers)
        self.strategies: List[Strategy] = [
            Strategy("plain_text", self._plain_text),
            Strategy("local_pdf", self._local_pdf),
            Strategy("remote", self._remote),
            Strategy("ocr", self._ocr),
        ]

    def _plain_text(self, ref: FileReference) -> StageResult:
        if ref.kind != "text":
            return StageFailure("plain_text", "not a plain text file")
        text = ref.read_bytes(self.loader).decode("utf-8", errors="replace")
        if not text.strip():
            return StageFailure("plain_text", "file is empty")
        return text

    def _local_pdf(self, ref: FileReference) -> StageResult:
        if ref.kind != "pdf" or not ref.is_data_url:
            return StageFailure("local_pdf", "not a local PDF")
        text = pdf_text_layer(ref.read_bytes(self.loader))
        if not is_usable_extraction(text):
            return StageFailure("local_pdf", "no usable text layer")
        return text

    def _remote(self, ref: FileReference) -> StageResult:
        try:
            text = self.remote.extract(ref)
        except ExtractionServiceError as e:
            logger.warning("Remote extraction failed for %s: %s", ref.file_name, e)
            return StageFailure("remote", str(e), surfaced=True)
        if not is_usable_extraction(text):
            return StageFailure("remote", (text or "empty result")[:200])
        return text

    def _ocr(self, ref: FileReference) -> StageResult:
        kind = ref.kind
        if kind not in ("pdf", "image"):
            return StageFailure("ocr", "OCR only applies to PDFs and images")
        ok, msg = ocr_ready()
        if not ok:
            return StageFailure("ocr", msg)
        data = ref.read_bytes(self.loader)
        if kind == "pdf":
            text = ocr_pdf_pages(data)
        else:
            text = collapse_whitespace(ocr_image(Image.open(io.BytesIO(data))))
        if not has_usable_content(text):
            return StageFailure("ocr", "OCR returned no readable text")
        return text

    def run(self, ref: FileReference) -> ExtractionOutcome:
        outcome = first_success(self.strategies, ref)
        if outcome.ok:
            logger.info("Extracted %d chars from %s via %s", len(outcome.text), ref.file_name or "file", outcome.stage)
        else:
            logger.info("No text found in %s after %d stages", ref.file_name or "file", len(outcome.failures))
        return outcome

    def run_many(self, refs: Dict[str, FileReference]) -> Dict[str, ExtractionOutcome]:
        """One pipeline per note, run side by side; each pipeline stays sequential."""
        if not refs:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.workers, len(refs))) as pool:
            futures = {key: pool.submit(self.run, ref) for key, ref in refs.items()}
            return {key: fut.result() for key, fut in futures.items()}


def create_pipeline(config, store: Optional[UploadStore]) -> ExtractionPipeline:
    timeout = int(config.get("EXTRACTION_SERVICE_TIMEOUT") or 60)
    loader = FileLoader(store, timeout=timeout)
    url = (config.get("EXTRACTION_SERVICE_URL") or "").strip()
    if url:
        remote: RemoteExtractionClient = HttpExtractionClient(url, timeout=timeout, token=config.get("EXTRACTION_SERVICE_TOKEN") or "")
    else:
        remote = InProcessExtractionClient(loader)
    return ExtractionPipeline(loader, remote, workers=int(config.get("EXTRACTION_WORKERS") or 4))


def needs_extraction(note) -> bool:
    """Only notes with a file and no usable text are (re)extracted."""
    return bool(getattr(note, "file_reference", None)) and not has_usable_content(getattr(note, "text_content", None))


def file_reference_for(note) -> FileReference:
    return FileReference(
        source=note.file_reference,
        file_type=note.file_type or "",
        file_name=note.file_name or "",
    )
