"""
Tests for CSV and spreadsheet row readers
"""
import pytest
from openpyxl import Workbook

from src.offerlookup.exceptions import FileFormatError, UnsupportedFileTypeError
from src.offerlookup.ingestion import readers
from src.offerlookup.ingestion.readers import (
    CsvRowReader,
    SpreadsheetRowReader,
    create_reader,
    file_type_for,
)
from src.offerlookup.transformers.record_mapper import map_row


async def collect(reader):
    await reader.open()
    return [batch async for batch in reader.batches()]


def write_workbook(path, rows):
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Offers"
    for row in rows:
        sheet.append(row)
    workbook.save(path)
    return path


class TestCsvRowReader:
    """Tests for CsvRowReader"""

    @pytest.mark.asyncio
    async def test_batches_by_size(self, csv_file, row_factory):
        """Test rows come out in batch_size chunks with a partial tail"""
        path = csv_file([row_factory(i) for i in range(5)])

        batches = await collect(CsvRowReader(path, batch_size=2))

        assert [len(batch) for batch in batches] == [2, 2, 1]
        assert batches[0][0]["propertyAddress"] == "0 Main St"

    @pytest.mark.asyncio
    async def test_total_unknown_up_front(self, csv_file, row_factory):
        reader = CsvRowReader(csv_file([row_factory(1)]), batch_size=10)
        await reader.open()
        assert reader.total_rows is None

    @pytest.mark.asyncio
    async def test_values_read_as_strings(self, csv_file, row_factory):
        """Test ZIP codes keep leading zeros and blanks stay empty"""
        path = csv_file([row_factory(1, propertyZip="02110", firstName="")])

        batches = await collect(CsvRowReader(path, batch_size=10))
        row = batches[0][0]

        assert row["propertyZip"] == "02110"
        assert row["firstName"] == ""
        assert map_row(row).first_name is None

    @pytest.mark.asyncio
    async def test_blank_lines_skipped(self, tmp_path):
        path = tmp_path / "gaps.csv"
        path.write_text(
            "propertyAddress,propertyCity,propertyState,propertyZip,offer\n"
            "1 Main St,Austin,TX,78701,100\n"
            "\n"
            "2 Main St,Austin,TX,78701,200\n",
            encoding="utf-8",
        )

        batches = await collect(CsvRowReader(path, batch_size=10))

        assert len(batches) == 1
        assert [row["propertyAddress"] for row in batches[0]] == ["1 Main St", "2 Main St"]

    @pytest.mark.asyncio
    async def test_quoted_amounts(self, tmp_path):
        path = tmp_path / "quoted.csv"
        path.write_text(
            'propertyAddress,propertyCity,propertyState,propertyZip,offer\n'
            '"1 Main St",Austin,TX,78701,"$250,000"\n',
            encoding="utf-8",
        )

        batches = await collect(CsvRowReader(path, batch_size=10))

        assert map_row(batches[0][0]).offer == 250000.0

    @pytest.mark.asyncio
    async def test_empty_file_has_no_batches(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")

        assert await collect(CsvRowReader(path, batch_size=10)) == []

    @pytest.mark.asyncio
    async def test_header_only_has_no_batches(self, csv_file):
        assert await collect(CsvRowReader(csv_file([]), batch_size=10)) == []


class TestSpreadsheetRowReader:
    """Tests for SpreadsheetRowReader"""

    @pytest.mark.asyncio
    async def test_first_sheet_rows(self, tmp_path):
        """Test header row mapping, empty row skipping and known total"""
        path = write_workbook(tmp_path / "offers.xlsx", [
            ["First Name", "Last Name", "Address", "City", "State", "Zip", "Offer"],
            ["Jane", "Doe", "1 Main St", "Orlando", "FL", 32801, 150000],
            [None, None, None, None, None, None, None],
            ["John", None, "2 Main St", "Orlando", "fl", "32801-1234", "N/A"],
            ["Ann", "Lee", "3 Main St", "Orlando", "FL", 32801, 99000.5],
        ])
        reader = SpreadsheetRowReader(path, batch_size=2)

        batches = await collect(reader)

        assert reader.total_rows == 3
        assert [len(batch) for batch in batches] == [2, 1]

        first = map_row(batches[0][0])
        assert first.address_tuple == ("1 Main St", "Orlando", "FL", "32801")
        assert first.offer == 150000.0

        second = map_row(batches[0][1])
        assert second.last_name is None
        assert second.property_zip == "32801"
        assert second.offer_coerced is True

    @pytest.mark.asyncio
    async def test_missing_worksheet(self, tmp_path, monkeypatch):
        """Test a workbook without worksheets fails before any batch"""

        class EmptyWorkbook:
            sheet_names = []

            def __init__(self, *args, **kwargs):
                pass

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

        monkeypatch.setattr(readers.pd, "ExcelFile", EmptyWorkbook)
        reader = SpreadsheetRowReader(tmp_path / "empty.xlsx", batch_size=10)

        with pytest.raises(FileFormatError, match="Worksheet not found"):
            await reader.open()

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_text("this is not a workbook", encoding="utf-8")

        with pytest.raises(FileFormatError):
            await SpreadsheetRowReader(path, batch_size=10).open()


class TestReaderSelection:
    """Tests for reader factory helpers"""

    @pytest.mark.parametrize("filename,expected", [
        ("offers.csv", "csv"),
        ("offers.XLSX", "xlsx"),
        ("legacy.xls", "xlsx"),
    ])
    def test_file_type_for(self, filename, expected):
        assert file_type_for(filename) == expected

    def test_unknown_extension(self):
        with pytest.raises(UnsupportedFileTypeError):
            file_type_for("offers.pdf")

    def test_create_reader(self, tmp_path):
        assert isinstance(create_reader("csv", tmp_path / "a.csv", 10), CsvRowReader)
        assert isinstance(create_reader("xlsx", tmp_path / "a.xlsx", 10), SpreadsheetRowReader)

    def test_create_reader_unknown_kind(self, tmp_path):
        with pytest.raises(UnsupportedFileTypeError):
            create_reader("pdf", tmp_path / "a.pdf", 10)

    def test_batch_size_must_be_positive(self, tmp_path):
        with pytest.raises(ValueError):
            CsvRowReader(tmp_path / "a.csv", batch_size=0)
