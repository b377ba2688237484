# backend/strataguard/services/attachments.py
from __future__ import annotations

import logging
import os
import re
import subprocess
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..config import settings
from ..errors import AttachmentRejected, MalwareDetected, StrataGuardError
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)

IMAGE_SCAN_BYTES = 4096
MIN_IMAGE_BYTES = 100

_IMAGE_SCRIPT_PATTERNS = (
    re.compile(rb"<script[^>]*>", re.IGNORECASE),
    re.compile(rb"javascript:\s*[a-z]", re.IGNORECASE),
    re.compile(rb"vbscript:\s*[a-z]", re.IGNORECASE),
)
_PDF_ACTIVE_CONTENT = (
    re.compile(rb"/JavaScript", re.IGNORECASE),
    re.compile(rb"/OpenAction", re.IGNORECASE),
    re.compile(rb"/Launch", re.IGNORECASE),
)


class ScannerUnavailable(StrataGuardError):
    status_code = 503
    default_detail = "File scanning service is temporarily unavailable. Please try again later."


@dataclass(frozen=True)
class IncomingFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower()


def detect_mime(data: bytes) -> Optional[str]:
    if data[:2] == b"\xff\xd8":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:3] == b"GIF":
        return "image/gif"
    if data[:4] == b"%PDF":
        return "application/pdf"
    return None


def validate_file(f: IncomingFile) -> None:
    """Raises AttachmentRejected for anything outside the allow-lists or with mismatched content."""
    name = f.filename or ""
    if not name:
        raise AttachmentRejected("Invalid file name")
    if ".." in name or re.search(r"[/\\:]", name):
        raise AttachmentRejected("Invalid file name: contains path traversal or invalid characters")
    if len(name) > 255:
        raise AttachmentRejected("File name too long (max 255 characters)")

    if f.content_type not in settings.allowed_attachment_mime_types:
        raise AttachmentRejected(f"Invalid MIME type: {f.content_type}")
    if f.extension not in settings.allowed_attachment_extensions:
        raise AttachmentRejected(f"Invalid file extension: {f.extension}")

    if len(f.data) > int(settings.max_attachment_bytes):
        raise AttachmentRejected("File too large")

    detected = detect_mime(f.data)
    if detected is None:
        raise AttachmentRejected("Unable to determine file type from content")
    if detected != f.content_type:
        raise AttachmentRejected("File content does not match declared type")

    if detected.startswith("image/"):
        if len(f.data) < MIN_IMAGE_BYTES:
            raise AttachmentRejected("Image file too small to be valid")
        head = f.data[:IMAGE_SCAN_BYTES]
        if any(p.search(head) for p in _IMAGE_SCRIPT_PATTERNS):
            log.warning("script pattern found in image metadata", extra={"attachment": name})
            raise AttachmentRejected("File contains suspicious content")
    else:
        # active PDF content is reported, not blocked
        if any(p.search(f.data) for p in _PDF_ACTIVE_CONTENT):
            log.warning("pdf with active content accepted", extra={"attachment": name})


def scan_file(path: str) -> None:
    """Runs clamdscan on a stored file. Exit 0 clean, 1 infected, anything else is a scanner fault."""
    try:
        proc = subprocess.run(
            [settings.clamscan_path, "--no-summary", path],
            capture_output=True,
            text=True,
            timeout=int(settings.virus_scan_timeout_seconds),
        )
    except (OSError, subprocess.TimeoutExpired):
        log.error("virus scanner not available", exc_info=True)
        raise ScannerUnavailable()

    if proc.returncode == 0:
        return
    if proc.returncode == 1:
        METRICS.inc("attachments_malware_rejected")
        log.warning("malware detected in upload", extra={"scan_output": proc.stdout.strip()})
        raise MalwareDetected("The uploaded file contains malware and has been rejected.")

    log.error("virus scanner failed", extra={"scan_output": (proc.stderr or proc.stdout).strip()})
    raise ScannerUnavailable()


def _upload_dir() -> str:
    path = os.path.abspath(settings.upload_dir)
    os.makedirs(path, exist_ok=True)
    return path


def stored_path(name: str) -> str:
    return os.path.join(_upload_dir(), os.path.basename(name))


def remove_files(names: Iterable[str]) -> None:
    for n in names:
        try:
            os.remove(stored_path(n))
        except FileNotFoundError:
            pass
        except OSError:
            log.warning("could not remove attachment", exc_info=True, extra={"attachment": n})


def store_attachments(files: List[IncomingFile]) -> List[str]:
    """
    Validates every file, writes them under upload_dir with uuid names and
    scans them when scanning is enabled. All-or-nothing: any failure removes
    whatever this call wrote before re-raising.
    """
    if len(files) > int(settings.max_attachments):
        raise AttachmentRejected(f"Too many attachments (max {settings.max_attachments})")

    for f in files:
        validate_file(f)

    written: List[str] = []
    try:
        for f in files:
            name = f"{uuid.uuid4()}{f.extension}"
            with open(stored_path(name), "wb") as out:
                out.write(f.data)
            written.append(name)

            if settings.virus_scanning_enabled:
                scan_file(stored_path(name))
    except BaseException:
        remove_files(written)
        raise

    METRICS.inc("attachments_stored", len(written))
    return written
