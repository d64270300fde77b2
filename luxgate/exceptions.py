"""
Custom exceptions for LuxGate.

Only fatal conditions are raised: unreadable input documents and a broken
code dictionary. Parse failures and mapping misses degrade confidence instead.
"""
from typing import Optional, Dict, Any


class LuxGateError(Exception):
    """
    Base exception for all LuxGate errors.

    Attributes:
        error_code: Unique error code (e.g., LXG-101)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "LXG-000"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for the calling service."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Document Input Errors (LXG-1XX)
class DocumentInputError(LuxGateError):
    """The OCR payload cannot be processed at all."""
    error_code = "LXG-100"

    def __init__(self, message: str = "Failed to read OCR document", **kwargs):
        super().__init__(message, **kwargs)


class EmptyDocumentError(DocumentInputError):
    """OCR payload carries neither text nor tables."""
    error_code = "LXG-101"

    def __init__(self, document_id: Optional[str] = None, **kwargs):
        message = "OCR document contains no text and no tables"
        super().__init__(message, details={"document_id": document_id}, **kwargs)


class InvalidDocumentError(DocumentInputError):
    """OCR payload does not have the expected layout structure."""
    error_code = "LXG-102"

    def __init__(self, reason: str, errors: Optional[list] = None, **kwargs):
        message = f"Invalid OCR document: {reason}"
        super().__init__(message, details={"errors": errors or []}, **kwargs)


# Code Dictionary Errors (LXG-3XX)
class CodeDictionaryError(LuxGateError):
    """Code dictionary data file is missing or inconsistent."""
    error_code = "LXG-300"

    def __init__(self, message: str = "Failed to load code dictionary", **kwargs):
        super().__init__(message, **kwargs)


class DuplicateCodeError(CodeDictionaryError):
    """The same code is defined twice in the dictionary file."""
    error_code = "LXG-301"

    def __init__(self, code: str, **kwargs):
        message = f"Code {code} is defined more than once"
        super().__init__(message, details={"code": code}, **kwargs)



# Configuration Errors (LXG-5XX)
class ConfigurationError(LuxGateError):
    """Settings are inconsistent."""
    error_code = "LXG-500"

    def __init__(self, message: str = "Invalid configuration", **kwargs):
        super().__init__(message, **kwargs)
