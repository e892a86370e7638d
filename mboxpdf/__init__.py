"""MBOX to PDF conversion.

Public API re-exported here for convenience::

    from mboxpdf import ConversionJob, ConversionSettings
"""

from .assembler import DocumentAssembler, bundle_non_mergeable_attachments, create_archive
from .codec import decode_encoded_words, decode_quoted_printable, encode_q_word
from .config import ComponentKind, ConversionSettings, NamingComponent, ParserSettings, RenderSettings
from .errors import (
    ConversionCancelled,
    InvalidInputError,
    MboxPdfError,
    NoRecordsFoundError,
    OutputWriteError,
    PartialRenderFailure,
    RenderFailure,
)
from .logging import setup_logging
from .models import (
    Attachment,
    ConversionStatus,
    ConversionSummary,
    Email,
    PageFragment,
    ParseOutcome,
    RawMessage,
    SkipRecord,
)
from .naming import build_filename, sanitize_component
from .pagination import PageBox, paginate
from .parser import parse_message
from .pipeline import ConversionJob
from .scheduler import AdmissionGate, BatchScheduler, ProgressReporter
from .shutdown import CancellationToken, install_signal_handlers
from .splitter import StreamingSplitter, iter_messages

__all__ = [
    "AdmissionGate",
    "Attachment",
    "BatchScheduler",
    "CancellationToken",
    "ComponentKind",
    "ConversionCancelled",
    "ConversionJob",
    "ConversionSettings",
    "ConversionStatus",
    "ConversionSummary",
    "DocumentAssembler",
    "Email",
    "InvalidInputError",
    "MboxPdfError",
    "NamingComponent",
    "NoRecordsFoundError",
    "OutputWriteError",
    "PageBox",
    "PageFragment",
    "ParseOutcome",
    "ParserSettings",
    "PartialRenderFailure",
    "ProgressReporter",
    "RawMessage",
    "RenderFailure",
    "RenderSettings",
    "SkipRecord",
    "StreamingSplitter",
    "build_filename",
    "bundle_non_mergeable_attachments",
    "create_archive",
    "decode_encoded_words",
    "decode_quoted_printable",
    "encode_q_word",
    "install_signal_handlers",
    "iter_messages",
    "paginate",
    "parse_message",
    "sanitize_component",
    "setup_logging",
]
