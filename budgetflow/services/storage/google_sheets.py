"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the hosted backend because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions and no unique constraints: uniqueness is checked by
  scanning before the append, which is safe under the single-writer
  assumption but not against two concurrent writers
- Limited query capabilities (we filter in Python on cell strings;
  range filters therefore only make sense on ISO dates)

Each collection is one worksheet with a header row. gspread is
synchronous, so calls run in a worker thread to keep the event loop free.
"""

import asyncio
from typing import Optional
from uuid import uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from budgetflow.config import GoogleSheetsSettings, get_settings
from budgetflow.services.storage.interface import (
    AUDIT_LOG,
    EXPENSES,
    PROFILES,
    RECURRING_RULES,
    SAVINGS_GOALS,
    UNIQUE_CONSTRAINTS,
    ConflictError,
    DataStore,
    DuplicateError,
    Filter,
    NotFoundError,
    Row,
    StorageError,
    TransientStoreError,
    to_cell,
)


# Column layout of each worksheet
COLLECTION_COLUMNS: dict[str, list[str]] = {
    PROFILES: [
        "id",
        "user_id",
        "reset_enabled",
        "reset_day",
        "last_reset_date",
        "current_period_start",
        "monthly_income",
        "fixed_expense_amount",
        "currency",
    ],
    RECURRING_RULES: [
        "id",
        "user_id",
        "title",
        "amount",
        "category",
        "frequency",
        "start_date",
        "next_due_date",
        "last_generated_date",
        "anchor_day",
        "is_active",
        "created_at",
    ],
    EXPENSES: [
        "id",
        "user_id",
        "title",
        "amount",
        "category",
        "date",
        "is_recurring",
        "idempotency_key",
        "created_at",
    ],
    SAVINGS_GOALS: [
        "id",
        "user_id",
        "title",
        "target_amount",
        "current_amount",
        "target_date",
        "color",
        "created_at",
    ],
    AUDIT_LOG: [
        "id",
        "timestamp",
        "event_type",
        "severity",
        "user_id",
        "entity_type",
        "entity_id",
        "correlation_id",
        "description",
        "details",
        "error_message",
        "is_user_action",
    ],
}

TRANSIENT_HTTP_CODES = {408, 429, 500, 502, 503, 504}


def _translate_error(error: Exception, action: str) -> StorageError:
    """Map gspread/network failures onto the storage error taxonomy."""
    if isinstance(error, StorageError):
        return error
    if isinstance(error, gspread.exceptions.APIError):
        status = getattr(error.response, "status_code", None)
        if status in TRANSIENT_HTTP_CODES:
            return TransientStoreError(f"Google Sheets unavailable while trying to {action}: {error}", error)
        return StorageError(f"Failed to {action}: {error}", error)
    if isinstance(error, (OSError, TimeoutError)):
        return TransientStoreError(f"Network error while trying to {action}: {error}", error)
    return StorageError(f"Failed to {action}: {error}", error)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and lazily creates worksheets.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
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
            except FileNotFoundError as e:
                raise StorageError(
                    f"Google credentials file not found: {self._settings.credentials_path}", e
                )
            except Exception as e:
                raise TransientStoreError(f"Failed to connect to Google Sheets: {e}", e)

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound as e:
                raise StorageError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}", e
                )
        return self._spreadsheet

    def get_worksheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        if collection in self._worksheets:
            return self._worksheets[collection]

        columns = COLLECTION_COLUMNS.get(collection)
        if columns is None:
            raise StorageError(f"Unknown collection: {collection}")

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(collection)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=collection,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)

        self._worksheets[collection] = sheet
        return sheet


class GoogleSheetsDataStore(DataStore):
    """
    Google Sheets implementation of the data store.

    Rows come back as dicts of strings; empty cells become None.
    Models parse the strings back into dates, decimals and booleans.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _read_all(self, collection: str) -> tuple[gspread.Worksheet, list[str], list[Row]]:
        sheet = self._client.get_worksheet(collection)
        values = sheet.get_all_values()
        if not values:
            return sheet, COLLECTION_COLUMNS[collection], []

        header = values[0]
        rows = []
        for raw in values[1:]:
            if not raw or not raw[0]:  # Skip empty rows
                continue
            row = {
                column: (raw[i] if i < len(raw) and raw[i] != "" else None)
                for i, column in enumerate(header)
            }
            rows.append(row)
        return sheet, header, rows

    def _find_index(self, rows: list[Row], row_id: str) -> Optional[int]:
        for idx, row in enumerate(rows):
            if row.get("id") == row_id:
                return idx
        return None

    def _check_unique(self, collection: str, rows: list[Row], candidate: Row, exclude_id: Optional[str] = None) -> None:
        for field in UNIQUE_CONSTRAINTS.get(collection, ()):
            value = candidate.get(field)
            if value in (None, ""):
                continue
            for row in rows:
                if row.get("id") != exclude_id and row.get(field) == value:
                    raise DuplicateError(f"{collection}.{field} already contains {value!r}")

    @staticmethod
    def _cell_filters(filters: list[Filter]) -> list[Filter]:
        return [Filter(field=f.field, op=f.op, value=to_cell(f.value)) for f in filters]

    @staticmethod
    def _serialize(row: Row, header: list[str]) -> list[str]:
        return [to_cell(row.get(column)) for column in header]

    def _query_sync(
        self,
        collection: str,
        filters: list[Filter],
        order_by: Optional[str],
        descending: bool,
        limit: Optional[int],
    ) -> list[Row]:
        _, _, rows = self._read_all(collection)
        cell_filters = self._cell_filters(filters)
        result = [row for row in rows if all(f.matches(row) for f in cell_filters)]

        if order_by:
            result.sort(key=lambda r: r.get(order_by) or "", reverse=descending)
        if limit is not None:
            result = result[:limit]
        return result

    def _insert_sync(self, collection: str, row: Row) -> Row:
        sheet, header, rows = self._read_all(collection)
        new_row = {column: to_cell(value) or None for column, value in row.items()}
        new_row["id"] = new_row.get("id") or str(uuid4())

        if self._find_index(rows, new_row["id"]) is not None:
            raise DuplicateError(f"{collection} already contains id {new_row['id']}")
        self._check_unique(collection, rows, new_row)

        sheet.append_row(self._serialize(new_row, header), value_input_option="RAW")
        return new_row

    def _update_sync(self, collection: str, row_id: str, patch: Row, expected: list[Filter]) -> Row:
        sheet, header, rows = self._read_all(collection)
        idx = self._find_index(rows, row_id)
        if idx is None:
            raise NotFoundError(f"{collection} has no row with id {row_id}")
        if not all(f.matches(rows[idx]) for f in self._cell_filters(expected)):
            raise ConflictError(f"{collection} row {row_id} changed since it was read")

        updated = dict(rows[idx])
        updated.update({column: to_cell(value) or None for column, value in patch.items()})
        updated["id"] = row_id
        self._check_unique(collection, rows, updated, exclude_id=row_id)

        sheet_row = self._sheet_row_number(sheet, row_id)
        sheet.update(
            range_name=f"A{sheet_row}",
            values=[self._serialize(updated, header)],
            value_input_option="RAW",
        )
        return updated

    def _delete_sync(self, collection: str, row_id: str) -> bool:
        sheet = self._client.get_worksheet(collection)
        try:
            sheet_row = self._sheet_row_number(sheet, row_id)
        except NotFoundError:
            return False
        sheet.delete_rows(sheet_row)
        return True

    @staticmethod
    def _sheet_row_number(sheet: gspread.Worksheet, row_id: str) -> int:
        ids = sheet.col_values(1)
        for number, value in enumerate(ids[1:], start=2):  # Row 1 is header
            if value == row_id:
                return number
        raise NotFoundError(f"No row with id {row_id}")

    async def _run(self, action: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except StorageError:
            raise
        except Exception as e:
            raise _translate_error(e, action) from e

    async def query(
        self,
        collection: str,
        filters: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        return await self._run(
            f"query {collection}",
            self._query_sync, collection, filters or [], order_by, descending, limit,
        )

    async def insert(self, collection: str, row: Row) -> Row:
        return await self._run(f"insert into {collection}", self._insert_sync, collection, row)

    async def update(
        self,
        collection: str,
        row_id: str,
        patch: Row,
        expected: Optional[list[Filter]] = None,
    ) -> Row:
        return await self._run(
            f"update {collection}",
            self._update_sync, collection, str(row_id), patch, expected or [],
        )

    async def delete(self, collection: str, row_id: str) -> bool:
        return await self._run(f"delete from {collection}", self._delete_sync, collection, str(row_id))
