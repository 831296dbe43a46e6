"""
Row Readers

Turn an uploaded file into batches of raw rows (header -> cell value).

CSV files are parsed incrementally: a chunk is only read once the consumer
asks for the next batch, so memory stays bounded by the batch size and the
database sets the pace. Spreadsheets are materialized up front (the xlsx
format offers no row streaming through pandas), which also makes their
total row count known before the first batch.
"""
import asyncio
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import pandas as pd

from src.offerlookup.db.models import FILE_TYPE_CSV, FILE_TYPE_XLSX
from src.offerlookup.exceptions import FileFormatError, UnsupportedFileTypeError
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)

Row = Dict[str, Any]


class RowReader:
    """Base reader. Call open() once, then iterate batches()."""

    file_type: str = ""

    def __init__(self, file_path: Path, batch_size: int):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.file_path = Path(file_path)
        self.batch_size = batch_size
        # None when the count is only known after the last batch
        self.total_rows: Optional[int] = None

    async def open(self) -> None:
        raise NotImplementedError

    def batches(self) -> AsyncIterator[List[Row]]:
        raise NotImplementedError


class CsvRowReader(RowReader):
    """Streaming CSV reader. The first line is the header."""

    file_type = FILE_TYPE_CSV

    def __init__(self, file_path: Path, batch_size: int):
        super().__init__(file_path, batch_size)
        self._reader = None

    async def open(self) -> None:
        try:
            self._reader = await asyncio.to_thread(
                pd.read_csv,
                self.file_path,
                chunksize=self.batch_size,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                encoding="utf-8-sig",
            )
        except pd.errors.EmptyDataError:
            logger.info("csv_file_empty", file_path=str(self.file_path))
            self._reader = None
        except (pd.errors.ParserError, UnicodeDecodeError) as e:
            raise FileFormatError(f"Malformed CSV: {e}") from e

    async def batches(self) -> AsyncIterator[List[Row]]:
        if self._reader is None:
            return

        try:
            while True:
                chunk = await asyncio.to_thread(next, self._reader, None)
                if chunk is None:
                    break
                rows = chunk.to_dict(orient="records")
                if rows:
                    yield rows
        except (pd.errors.ParserError, UnicodeDecodeError) as e:
            raise FileFormatError(f"Malformed CSV: {e}") from e
        finally:
            self._reader.close()


class SpreadsheetRowReader(RowReader):
    """
    Reads the first worksheet of an xlsx/xls workbook.

    Row 1 is the header; rows with every cell empty are skipped.
    """

    file_type = FILE_TYPE_XLSX

    def __init__(self, file_path: Path, batch_size: int):
        super().__init__(file_path, batch_size)
        self._rows: List[Row] = []

    def _read_first_sheet(self) -> List[Row]:
        try:
            with pd.ExcelFile(self.file_path) as workbook:
                if not workbook.sheet_names:
                    raise FileFormatError("Worksheet not found")
                frame = workbook.parse(
                    sheet_name=workbook.sheet_names[0],
                    header=0,
                    dtype=object,
                )
        except FileFormatError:
            raise
        except Exception as e:
            raise FileFormatError(f"Unreadable spreadsheet: {e}") from e

        frame = frame.dropna(how="all")
        frame = frame.astype(object).where(frame.notna(), None)
        return frame.to_dict(orient="records")

    async def open(self) -> None:
        self._rows = await asyncio.to_thread(self._read_first_sheet)
        self.total_rows = len(self._rows)
        logger.info(
            "spreadsheet_loaded",
            file_path=str(self.file_path),
            total_rows=self.total_rows
        )

    async def batches(self) -> AsyncIterator[List[Row]]:
        for start in range(0, len(self._rows), self.batch_size):
            if start:
                # Let other tasks run between slices
                await asyncio.sleep(0)
            yield self._rows[start:start + self.batch_size]


READERS = {
    FILE_TYPE_CSV: CsvRowReader,
    FILE_TYPE_XLSX: SpreadsheetRowReader,
}

EXTENSION_FILE_TYPES = {
    ".csv": FILE_TYPE_CSV,
    ".xlsx": FILE_TYPE_XLSX,
    ".xls": FILE_TYPE_XLSX,
}


def file_type_for(filename: str) -> str:
    """
    Map a file name to its file kind by extension.

    Raises:
        UnsupportedFileTypeError: Unknown extension
    """
    extension = Path(filename).suffix.lower()
    try:
        return EXTENSION_FILE_TYPES[extension]
    except KeyError:
        raise UnsupportedFileTypeError(extension or filename) from None


def create_reader(file_type: str, file_path: Path, batch_size: int) -> RowReader:
    """
    Build the reader for a file kind.

    Raises:
        UnsupportedFileTypeError: No reader for file_type
    """
    try:
        reader_class = READERS[file_type]
    except KeyError:
        raise UnsupportedFileTypeError(file_type) from None
    return reader_class(file_path, batch_size)
