"""Local text extraction for file nodes."""

import json
import mimetypes
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..core.logging import get_logger
from ..models.core import FileExtractionResult


logger = get_logger(__name__)

NO_TEXT_EXTRACTED = "No text could be extracted from the uploaded files."

_MIME_OVERRIDES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".json": "application/json",
    ".csv": "text/csv",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

_MARKDOWN_RULES = [
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"#{1,6}\s+"), ""),
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"\[(.*?)\]\(.*?\)"), r"\1"),
    (re.compile(r"`(.*?)`"), r"\1"),
]


class FileExtractor(Protocol):
    def extract(self, files: List[Any], method: str = "auto") -> List[FileExtractionResult]:
        ...

    def combine(self, results: List[FileExtractionResult], output_format: str = "text") -> str:
        ...

    def describe(self, file: Any) -> Dict[str, Any]:
        ...


def guess_mime_type(name: str) -> str:
    suffix = Path(name).suffix.lower()
    if suffix in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[suffix]
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "application/octet-stream"


def normalize_file(file: Any) -> Dict[str, Any]:
    """Turn a path string or file mapping into `{name, path, content, mimeType, size}`."""
    if isinstance(file, str):
        file = {"name": Path(file).name, "path": file}
    elif not isinstance(file, dict):
        file = {"name": str(file)}

    name = file.get("name") or file.get("fileName") or Path(str(file.get("path") or "file")).name
    content = file.get("content")
    if content is None and isinstance(file.get("text"), str):
        content = file["text"]

    size = file.get("size")
    if size is None and isinstance(content, str):
        size = len(content.encode("utf-8"))

    return {
        "name": name,
        "path": file.get("path"),
        "content": content,
        "mimeType": file.get("mimeType") or file.get("type") or guess_mime_type(name),
        "size": size or 0,
        "lastModified": file.get("lastModified"),
    }


def determine_extraction_method(mime_type: str, name: str) -> str:
    """Pick an extraction method for `auto`."""
    lowered = name.lower()
    if mime_type == "text/markdown" or lowered.endswith((".md", ".markdown")):
        return "markdown"
    if mime_type.startswith("text/") or mime_type in ("application/json", "application/xml"):
        return "plain"
    if (mime_type == "application/pdf" or mime_type.startswith("image/")
            or "word" in mime_type or "office" in mime_type):
        return "ocr"
    return "plain"


def strip_markdown(text: str) -> str:
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


class LocalFileExtractor:
    """Reads inline content or files below `upload_dir`.

    Plain and markdown extraction are supported. PDF, image and Word
    documents need an OCR backend and fail per file.
    """

    def __init__(self, upload_dir: Optional[str] = None):
        self.upload_dir = Path(upload_dir) if upload_dir else None

    def describe(self, file: Any) -> Dict[str, Any]:
        ref = normalize_file(file)
        metadata = {"name": ref["name"], "size": ref["size"], "type": ref["mimeType"]}
        if ref["lastModified"] is not None:
            metadata["lastModified"] = ref["lastModified"]
        return metadata

    def extract(self, files: List[Any], method: str = "auto") -> List[FileExtractionResult]:
        results = []
        for file in files:
            ref = normalize_file(file)
            chosen = method
            if method == "auto":
                chosen = determine_extraction_method(ref["mimeType"], ref["name"])

            logger.info(f"Extracting {ref['name']} ({ref['mimeType']}) using {chosen}")
            result = self._extract_one(ref, chosen)
            results.append(result)
        return results

    def _extract_one(self, ref: Dict[str, Any], method: str) -> FileExtractionResult:
        base = {"file_name": ref["name"], "size": ref["size"], "mime_type": ref["mimeType"]}

        if method == "ocr":
            return FileExtractionResult(
                success=False,
                method="failed",
                error=self._unsupported_message(ref["mimeType"]),
                **base
            )

        try:
            raw = self._read_text(ref)
        except OSError as e:
            logger.warning(f"Failed to read {ref['name']}: {e}")
            return FileExtractionResult(
                success=False,
                method="failed",
                error=f"Failed to extract text: {e}",
                **base
            )

        text = strip_markdown(raw) if method == "markdown" else raw.strip()
        return FileExtractionResult(success=True, text=text, method=method, **base)

    def _read_text(self, ref: Dict[str, Any]) -> str:
        if isinstance(ref["content"], str):
            return ref["content"]
        if isinstance(ref["content"], (bytes, bytearray)):
            return bytes(ref["content"]).decode("utf-8", errors="replace")
        if not ref["path"]:
            raise FileNotFoundError(f"No content or path for {ref['name']}")

        return self._resolve_path(ref["path"]).read_text(encoding="utf-8", errors="replace")

    def _resolve_path(self, raw_path: str) -> Path:
        """Map a file reference onto a file below `upload_dir`.

        Raises:
            PermissionError: For absolute paths, paths leaving `upload_dir`
                and any path when no upload directory is configured
        """
        if self.upload_dir is None:
            raise PermissionError("File paths are not readable: no upload directory configured")

        path = Path(raw_path)
        if path.is_absolute():
            raise PermissionError(f"Absolute file paths are not allowed: {raw_path}")

        base = self.upload_dir.resolve()
        resolved = (base / path).resolve()
        try:
            resolved.relative_to(base)
        except ValueError:
            raise PermissionError(f"File path escapes the upload directory: {raw_path}")
        return resolved

    @staticmethod
    def _unsupported_message(mime_type: str) -> str:
        if mime_type == "application/pdf":
            return "PDF extraction is not available in this deployment"
        if mime_type.startswith("image/"):
            return "Image OCR is not available in this deployment"
        if "word" in mime_type or "office" in mime_type:
            return "Word document extraction is not available in this deployment"
        return "OCR extraction is not available in this deployment"

    def combine(self, results: List[FileExtractionResult], output_format: str = "text") -> str:
        """Merge per-file results into one text value."""
        successful = [result for result in results if result.success]
        if not successful:
            return NO_TEXT_EXTRACTED

        if output_format == "structured":
            return json.dumps({
                "totalFiles": len(results),
                "successfulExtractions": len(successful),
                "files": [
                    {
                        "fileName": result.file_name,
                        "success": result.success,
                        "textLength": len(result.text),
                        "error": result.error,
                    }
                    for result in results
                ],
                "extractedText": [
                    {"fileName": result.file_name, "text": result.text}
                    for result in successful
                ],
            }, indent=2, ensure_ascii=False)

        if output_format == "summary":
            total_length = sum(len(result.text) for result in successful)
            file_list = ", ".join(result.file_name for result in successful)
            combined = "\n\n---\n\n".join(result.text for result in successful)
            return (
                f"Extracted text from {len(successful)} file(s): {file_list}\n"
                f"Total characters: {total_length}\n\n"
                f"Combined text:\n{combined}"
            )

        return "\n\n".join(result.text for result in successful)
