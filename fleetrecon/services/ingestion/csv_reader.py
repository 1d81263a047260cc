"""Delimited-text reader for payment and traffic-fine exports."""

from __future__ import annotations

import csv
import io

from fleetrecon.core.errors import StructuralImportError
from fleetrecon.core.logging import get_logger
from fleetrecon.schemas.records import RawRow, RecordType
from fleetrecon.services.ingestion.base_reader import BaseReader, ParsedBatch

logger = get_logger(__name__)


class CsvReader(BaseReader):
    """Reader for CSV (or semicolon / tab separated) exports.

    The header line decides the columns.  Short rows get blank cells and
    surplus cells are dropped with a warning, never a crash; whether the
    row is usable is the validator's call.
    """

    format_name: str = "csv"

    def read(
        self, file_content: bytes, filename: str, record_type: RecordType
    ) -> ParsedBatch:
        """Decode CSV bytes into a header list and raw rows."""
        record_type = RecordType(record_type)
        try:
            text = file_content.decode("utf-8-sig")  # handle BOM if present
        except UnicodeDecodeError as exc:
            raise StructuralImportError(
                record_type=record_type.value,
                detail=f"{filename} is not UTF-8 text ({exc.reason})",
            ) from exc

        if not text.strip():
            raise StructuralImportError(
                record_type=record_type.value, detail=f"{filename} is empty"
            )

        reader = csv.DictReader(
            io.StringIO(text),
            delimiter=self._sniff_delimiter(text),
            skipinitialspace=True,
        )
        headers = [h.strip() for h in (reader.fieldnames or [])]
        reader.fieldnames = headers

        rows: list[RawRow] = []
        for row_num, row in enumerate(reader, start=1):
            extra = row.pop(None, None)
            if extra:
                logger.warning(
                    "Row %d in %s: dropping %d surplus cells",
                    row_num,
                    filename,
                    len(extra),
                )
            rows.append({k: (v or "").strip() for k, v in row.items()})

        logger.info(
            "CSV read complete for %s: %d columns, %d rows",
            filename,
            len(headers),
            len(rows),
        )
        return ParsedBatch(source_file=filename, headers=headers, rows=rows)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _sniff_delimiter(text: str) -> str:
        """Pick the delimiter from the header line; comma when unsure."""
        header_line = next(line for line in text.splitlines() if line.strip())
        try:
            return csv.Sniffer().sniff(header_line, delimiters=",;\t").delimiter
        except csv.Error:
            return ","
