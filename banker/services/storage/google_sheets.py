"""
Google Sheets Storage Implementation

DESIGN DECISION: A spreadsheet is used as the hosted storage backend because:
1. Admins can inspect balances, the ledger and invoices directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a small community bank)
- No transactions and no server-side conditional writes. The version
  check of `update` is done here, under a per-table lock, which is only
  sound while a single ledger service instance owns the spreadsheet.
- Limited query capabilities (we filter in Python)

Each table is a worksheet. Row 1 is the header:
    id | version | created_at | <table columns...>
"""

import asyncio
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from banker.config import GoogleSheetsSettings, get_settings
from banker.services.storage.interface import (
    ConflictError,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    Record,
    RecordStore,
    StorageError,
    matches,
)


META_COLUMNS = ["id", "version", "created_at"]

# Column types per table; cells are strings in Sheets and parsed back with these.
TABLE_COLUMNS: dict[str, dict[str, type]] = {
    "bank": {
        "User": str,
        "Balance": int,
        "Write Id": str,
    },
    "ledger": {
        "Sequence": int,
        "From": str,
        "To": str,
        "Amount": int,
        "Note": str,
        "Success": bool,
        "Admin Note": str,
        "Timestamp": int,
        "Private": bool,
    },
    "invoices": {
        "From": str,
        "To": str,
        "Reason": str,
        "Amount": int,
        "Status": str,
        "Claim": str,
        "Claimed At": int,
        "Entry": str,
    },
    "sequences": {
        "Name": str,
        "Value": int,
    },
    "audit": {
        "Event Type": str,
        "Severity": str,
        "Entity Type": str,
        "Entity Id": str,
        "Correlation Id": str,
        "Description": str,
        "Details": str,
        "Error": str,
        "Timestamp": str,
    },
}


def encode_cell(value: Any) -> Any:
    """Convert a field value to what we write into a cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def decode_cell(raw: str, kind: type) -> Any:
    """Convert a cell string back to a typed field value."""
    if raw == "":
        return None
    if kind is bool:
        return raw.strip().lower() == "true"
    if kind is int:
        return int(raw)
    return raw


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def sheet_title(self, table: str) -> str:
        return self._settings.sheet_names.get(table, table)

    def get_worksheet(self, table: str, header: list[str]) -> gspread.Worksheet:
        """Get or create the worksheet backing a table."""
        spreadsheet = self.get_spreadsheet()
        title = self.sheet_title(table)
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(header),
            )
            sheet.append_row(header)
        return sheet


class GoogleSheetsRecordStore(RecordStore):
    """
    Google Sheets implementation of RecordStore.

    Records are stored as rows, one record per row. The version column
    is incremented on every update.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        columns: Optional[dict[str, dict[str, type]]] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._columns = columns or TABLE_COLUMNS
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, table: str) -> asyncio.Lock:
        return self._locks.setdefault(table, asyncio.Lock())

    def _schema(self, table: str) -> dict[str, type]:
        try:
            return self._columns[table]
        except KeyError:
            raise StorageError(f"No column layout defined for table: {table}")

    def _sheet(self, table: str) -> gspread.Worksheet:
        header = META_COLUMNS + list(self._schema(table))
        return self._client.get_worksheet(table, header)

    def _record_to_row(self, table: str, record: Record) -> list:
        """Convert a Record to a spreadsheet row."""
        schema = self._schema(table)
        unknown = set(record.fields) - set(schema)
        if unknown:
            raise StorageError(f"Unknown columns for {table}: {sorted(unknown)}")
        return [
            record.id,
            record.version,
            record.created_at.isoformat(),
        ] + [encode_cell(record.fields.get(name)) for name in schema]

    def _row_to_record(self, table: str, row: list) -> Record:
        """Convert a spreadsheet row to a Record."""
        # Handle missing trailing columns gracefully
        def safe_get(index: int) -> str:
            try:
                return row[index]
            except IndexError:
                return ""

        schema = self._schema(table)
        offset = len(META_COLUMNS)
        return Record(
            id=safe_get(0),
            version=int(safe_get(1)),
            created_at=datetime.fromisoformat(safe_get(2)),
            fields={
                name: decode_cell(safe_get(offset + idx), kind)
                for idx, (name, kind) in enumerate(schema.items())
            },
        )

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_rows(self, table: str) -> list[list]:
        # Skip header and empty rows; keep the sheet row number alongside
        all_rows = self._sheet(table).get_all_values()
        return [
            [row_number] + row
            for row_number, row in enumerate(all_rows[1:], start=2)
            if row and row[0]
        ]

    def _load(self, table: str) -> list[tuple[int, Record]]:
        try:
            rows = self._read_rows(table)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {table}: {e}")
        return [(row[0], self._row_to_record(table, row[1:])) for row in rows]

    async def query(
        self,
        table: str,
        filter: Optional[dict[str, Any]] = None,
    ) -> list[Record]:
        return [record for _, record in self._load(table) if matches(record, filter)]

    async def get(self, table: str, record_id: str) -> Optional[Record]:
        for _, record in self._load(table):
            if record.id == record_id:
                return record
        return None

    async def create(
        self,
        table: str,
        fields: dict[str, Any],
        unique_field: Optional[str] = None,
    ) -> Record:
        async with self._lock(table):
            if unique_field is not None:
                for _, existing in self._load(table):
                    if existing.fields.get(unique_field) == fields.get(unique_field):
                        raise DuplicateError(
                            f"{table} already has {unique_field}={fields.get(unique_field)!r}"
                        )

            record = Record(
                id=f"rec{uuid4().hex[:14]}",
                version=1,
                created_at=datetime.utcnow(),
                fields=dict(fields),
            )
            row = self._record_to_row(table, record)
            try:
                self._sheet(table).append_row(row, value_input_option="RAW")
            except Exception as e:
                raise StorageError(f"Failed to create {table} record: {e}")
            return record

    async def update(
        self,
        table: str,
        record_id: str,
        fields: dict[str, Any],
        expected_version: int,
    ) -> Record:
        async with self._lock(table):
            for row_number, stored in self._load(table):
                if stored.id != record_id:
                    continue
                if stored.version != expected_version:
                    raise ConflictError(table, record_id, expected_version, stored.version)

                updated = stored.model_copy(
                    update={
                        "version": stored.version + 1,
                        "fields": {**stored.fields, **fields},
                    }
                )
                row = self._record_to_row(table, updated)
                # A failed write can still have landed; the caller sees StorageError
                # either way, so callers that retry must check what the row holds
                try:
                    # One range write so the row never shows half an update
                    self._sheet(table).update(
                        range_name=f"A{row_number}",
                        values=[row],
                        value_input_option="RAW",
                    )
                except Exception as e:
                    raise StorageError(f"Failed to update {table}/{record_id}: {e}")
                return updated

            raise NotFoundError(f"Record not found: {table}/{record_id}")
