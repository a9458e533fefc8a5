"""
Waste Form OCR -- exception hierarchy.

  WasteFormError
    ├── ImageInputError    unreadable / unsupported upload (rejected before any pass)
    ├── OCREngineError     engine transport / quota / binary failure
    ├── PipelineError      broken precondition (no tables found on the page)
    └── VocabularyError    master item list missing or malformed

Reconciliation ambiguity is NOT an exception: it travels as needsReview/issue
on the row fields. Validation problems travel as a ValidationResult.
"""

from __future__ import annotations


class WasteFormError(Exception):
    """Base class for every error raised by the wasteform package."""


class ImageInputError(WasteFormError):
    pass


class OCREngineError(WasteFormError):
    def __init__(self, message: str, engine: str = "unknown"):
        super().__init__(message)
        self.engine = engine


class PipelineError(WasteFormError):
    pass


class VocabularyError(WasteFormError):
    pass


__all__ = [
    "WasteFormError",
    "ImageInputError",
    "OCREngineError",
    "PipelineError",
    "VocabularyError",
]
