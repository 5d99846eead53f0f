"""Services that write attachments: manual attach/detach and auto-assignment."""

from docmatch.services.attachments import (
    AttachmentResult,
    AttachmentService,
    AttachmentSummary,
    BulkAttachmentResult,
)
from docmatch.services.auto_assign import AutoAssignService

__all__ = [
    "AttachmentResult",
    "AttachmentService",
    "AttachmentSummary",
    "AutoAssignService",
    "BulkAttachmentResult",
]
