"""
Attachment reader.

Turns files into Attachment records: images become base64 (no data-URL
prefix) so they can be sent as inline parts, everything else is read
as text and inlined into the prompt.
"""

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Iterable, List, Union

from perplexsearch.models.message import Attachment

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


def attachment_from_bytes(name: str, content: bytes, mime_type: str = "") -> Attachment:
    """Build an Attachment from raw bytes (used for HTTP uploads)."""
    mime_type = mime_type or guess_mime_type(name)
    if mime_type.startswith("image/"):
        data = base64.b64encode(content).decode("ascii")
    else:
        data = content.decode("utf-8", errors="replace")
    return Attachment(name=name, mime_type=mime_type, data=data)


def read_files(paths: Iterable[Union[str, Path]]) -> List[Attachment]:
    """
    Read files from disk into attachments, preserving order.

    Args:
        paths: File paths to read

    Returns:
        List of Attachment objects
    """
    attachments = []
    for path in paths:
        path = Path(path)
        attachments.append(attachment_from_bytes(path.name, path.read_bytes()))
        logger.debug(f"Read attachment {path.name} ({attachments[-1].mime_type})")
    return attachments
