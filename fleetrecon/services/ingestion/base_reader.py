"""Abstract base class for import file readers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from fleetrecon.schemas.records import RawRow, RecordType


@dataclass
class ParsedBatch:
    """Header and rows of one uploaded file, in file order."""

    source_file: str
    headers: list[str]
    rows: list[RawRow] = field(default_factory=list)


class BaseReader(ABC):
    """Base interface that every import file reader must implement.

    Each reader is responsible for:
    1. Decoding raw file bytes in its format
    2. Returning the header exactly as written and the rows as str -> str
       mappings keyed by those headers
    3. Rejecting files it cannot read at all with a structural error;
       row-level problems are left to the validator
    """

    format_name: str

    @abstractmethod
    def read(
        self, file_content: bytes, filename: str, record_type: RecordType
    ) -> ParsedBatch:
        """Read file content into a ``ParsedBatch``.

        Args:
            file_content: Raw bytes of the uploaded file.
            filename: Original filename (kept on the batch report).
            record_type: Record type the file is imported as.

        Returns:
            The parsed header and rows.
        """
        pass
