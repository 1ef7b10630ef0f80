"""
errors.py — lwwcollection Error Taxonomy

Standardized error codes for the conditions a caller must handle. Losing a
last-write-wins comparison is not an error and never raises; it is reported
as a ``False`` return value.
"""

from typing import Optional

__all__ = [
    "LWWError",
    "InvalidEntryError",
    "InvalidSnapshotError",
]

class LWWError(Exception):
    """Base class for all lwwcollection errors."""
    def __init__(
        self,
        code: str,
        message: str,
        context: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.context = context

        full_msg = f"[{code}] {message}"
        if context:
            full_msg += f" Context: {context}"

        super().__init__(full_msg)

    @property
    def doc_url(self) -> str:
        """Link to the human-readable documentation for this error."""
        return f"https://lwwcollection.readthedocs.io/errors/{self.code}"

# Entry Errors (E1xx)
class InvalidEntryError(LWWError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("LWW_E100", "The entry was rejected by the collection's validate_entry predicate.", context)

# Snapshot Errors (E2xx)
class InvalidSnapshotError(LWWError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("LWW_E200", "A snapshot must be a JSON object with 'entries' and 'deletedKeys' objects.", context)
