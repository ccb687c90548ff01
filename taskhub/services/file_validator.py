"""Content-type checks for uploaded proof files.

The declared MIME type of every upload has to agree with the file's leading
bytes; anything else is refused before it reaches storage.
"""
from typing import Callable, Dict

from taskhub.core.exceptions import UnsupportedFileTypeError
from taskhub.localization.helpers import get_translation

HEADER_SIZE = 32

_ISO_IMAGE_BRANDS = {b"heic", b"heix", b"hevc", b"heim", b"heis", b"mif1", b"msf1"}


def _is_jpeg(head: bytes) -> bool:
    return head.startswith(b"\xff\xd8\xff")


def _is_png(head: bytes) -> bool:
    return head.startswith(b"\x89PNG\r\n\x1a\n")


def _is_webp(head: bytes) -> bool:
    return head[:4] == b"RIFF" and head[8:12] == b"WEBP"


def _is_gif(head: bytes) -> bool:
    return head[:6] in (b"GIF87a", b"GIF89a")


def _is_heic(head: bytes) -> bool:
    return head[4:8] == b"ftyp" and head[8:12] in _ISO_IMAGE_BRANDS


def _is_mp4(head: bytes) -> bool:
    return head[4:8] == b"ftyp" and head[8:12] not in _ISO_IMAGE_BRANDS and head[8:12] != b"qt  "


def _is_quicktime(head: bytes) -> bool:
    return head[4:8] == b"ftyp" and head[8:12] == b"qt  "


def _is_pdf(head: bytes) -> bool:
    return head.startswith(b"%PDF-")


SIGNATURES: Dict[str, Callable[[bytes], bool]] = {
    "image/jpeg": _is_jpeg,
    "image/png": _is_png,
    "image/webp": _is_webp,
    "image/gif": _is_gif,
    "image/heic": _is_heic,
    "image/heif": _is_heic,
    "video/mp4": _is_mp4,
    "video/quicktime": _is_quicktime,
    "application/pdf": _is_pdf,
}

ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
}


def normalize_mime(mime: str) -> str:
    mime = (mime or "").split(";")[0].strip().lower()
    return ALIASES.get(mime, mime)


class FileValidator:
    """Pass/fail check of a file's declared type against its content."""

    def validate(self, filename: str, declared_mime: str, head: bytes) -> str:
        """Return the normalized MIME type or raise UnsupportedFileTypeError."""
        if not head:
            raise UnsupportedFileTypeError(get_translation("proofs.empty_file", filename=filename))

        mime = normalize_mime(declared_mime)
        check = SIGNATURES.get(mime)
        if check is None or not check(head[:HEADER_SIZE]):
            raise UnsupportedFileTypeError(
                get_translation("proofs.unsupported_type", filename=filename, mime=declared_mime)
            )
        return mime


file_validator = FileValidator()
