"""
rpgf/datasets/csv_ingest.py: Parse and validate custom-dataset CSV uploads.

Two separate steps so that nothing is written unless the whole file is clean:

    parse_dataset_csv(text)             -> ParsedDataset   (raises on unreadable text)
    validate_dataset(parsed, ids, cap)  -> list[str]       (never raises)

Expected layout:
    applicationId,<field 1>,<field 2>,...
    3f1c...-uuid,value,value,...

Row numbers in messages count the header as row 1, so the first data row is row 2.
"""

import io
import logging
import re
from dataclasses import dataclass, field

import pandas as pd

from rpgf.errors import ValidationError

logger = logging.getLogger(__name__)

APPLICATION_ID_COLUMN = "applicationId"

UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


@dataclass
class ParsedDataset:
    """Raw upload split into a header and data rows, all cells as stripped strings."""
    header: list[str]
    rows: list[list[str]] = field(default_factory=list)

    @property
    def id_index(self) -> int:
        return self.header.index(APPLICATION_ID_COLUMN)

    @property
    def fields(self) -> list[str]:
        """Every column except applicationId, in upload order."""
        idx = self.id_index
        return [h for i, h in enumerate(self.header) if i != idx]

    def to_rows(self) -> list[tuple[str, dict[str, str]]]:
        """(application_id, {field: value}) per data row. Call only after validation."""
        idx = self.id_index
        out = []
        for row in self.rows:
            values = {h: row[i] for i, h in enumerate(self.header) if i != idx}
            out.append((row[idx], values))
        return out


def parse_dataset_csv(text: str) -> ParsedDataset:
    """
    Read comma-delimited text into a ParsedDataset. A leading UTF-8 byte order
    mark is ignored.

    Raises:
        ValidationError: Text is empty or not parseable as CSV.
    """
    if text is None:
        raise ValidationError("CSV is empty.")
    text = text.lstrip("\ufeff")
    if not text.strip():
        raise ValidationError("CSV is empty.")

    try:
        df = pd.read_csv(
            io.StringIO(text),
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        raise ValidationError("CSV is empty.")
    except pd.errors.ParserError as exc:
        logger.error("Unparseable dataset CSV: %s", exc)
        raise ValidationError(f"Invalid CSV: {exc}")

    df = df.fillna("")
    records = [[str(cell).strip() for cell in row] for row in df.itertuples(index=False, name=None)]
    if not records:
        raise ValidationError("CSV is empty.")

    return ParsedDataset(header=records[0], rows=records[1:])


def validate_dataset(parsed: ParsedDataset, known_application_ids: set[str], max_fields: int) -> list[str]:
    """
    Collect every problem with an upload.

    Args:
        parsed:                 Output of parse_dataset_csv.
        known_application_ids:  IDs of the applications in the dataset's round.
        max_fields:             Column cap excluding applicationId.

    Returns:
        List of human-readable messages; empty if the upload may be committed.
    """
    id_columns = parsed.header.count(APPLICATION_ID_COLUMN)
    if id_columns == 0:
        return [f"CSV must include an '{APPLICATION_ID_COLUMN}' column."]
    if id_columns > 1:
        return [f"CSV must include exactly one '{APPLICATION_ID_COLUMN}' column."]

    errors = []
    fields = parsed.fields
    if len(fields) > max_fields:
        errors.append(f"A custom dataset can have a maximum of {max_fields} fields.")

    if any(not f for f in fields):
        errors.append("Field names must not be blank.")
    seen_fields = set()
    for f in fields:
        if f and f in seen_fields:
            errors.append(f"Duplicate field name '{f}'.")
        seen_fields.add(f)

    if not parsed.rows:
        errors.append("CSV must have at least one data row.")
        return errors

    idx = parsed.id_index
    seen_ids = set()
    for offset, row in enumerate(parsed.rows):
        row_number = offset + 2
        application_id = row[idx]
        if not UUID_RE.match(application_id):
            errors.append(f"Row {row_number}: invalid application ID")
        elif application_id not in known_application_ids:
            errors.append(f"Row {row_number}: Application with ID '{application_id}' not found")
        if application_id in seen_ids:
            errors.append(f"Row {row_number}: duplicate application ID")
        seen_ids.add(application_id)

    return errors
