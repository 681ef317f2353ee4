"""Google Sheets read / filter / mutate helpers.

Rows have no stable id on the service side: every ``row_index`` below is the
1-based position in the snapshot the caller last read (header included). Any
append or delete that lands before that row shifts it, so indices go stale as
soon as another mutation is accepted.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httplib2
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import build_http

from sheetsync.auth import AccessToken
from sheetsync.errors import (
    InvalidIndex,
    MalformedResponse,
    PreconditionError,
    ReadError,
    ReadTransportFailure,
    RejectedByService,
    Unauthorized,
    WriteTransportFailure,
)

_TRANSPORT_ERRORS = (httplib2.HttpLib2Error, OSError)
_SIMPLE_TITLE_RE = re.compile(r"^[A-Za-z0-9_]+$")


def sheets_service(token: Optional[AccessToken] = None, http: Any = None):
    """Sheets v4 client bearing ``token`` over ``http`` (a plain httplib2 transport by default).

    A bare access token cannot be refreshed, so a 401 is handed back as ``HttpError``
    instead of triggering a refresh; the caller decides whether to acquire a new token.
    Without a token, ``http`` is used as-is.
    """
    if token is None:
        if http is None:
            raise PreconditionError("sheets_service needs a token or an http transport")
        return build("sheets", "v4", http=http, cache_discovery=False)
    authed = AuthorizedHttp(Credentials(token=token.token), http=http or build_http(), refresh_status_codes=())
    return build("sheets", "v4", http=authed, cache_discovery=False)


def _col_letters(n: int) -> str:
    """1->A, 26->Z, 27->AA..."""
    s = ""
    while n > 0:
        n, r = divmod(n - 1, 26)
        s = chr(65 + r) + s
    return s


def _quote_title(title: str) -> str:
    t = (title or "").strip()
    if _SIMPLE_TITLE_RE.fullmatch(t):
        return t
    return "'" + t.replace("'", "''") + "'"


def _http_status(exc: HttpError) -> int:
    try:
        return int(getattr(exc.resp, "status", 0))
    except (TypeError, ValueError):
        return 0


def _error_body(exc: HttpError) -> Dict[str, Any]:
    content = exc.content.decode("utf-8", "replace") if isinstance(exc.content, bytes) else str(exc.content or "")
    try:
        body = json.loads(content)
    except ValueError:
        return {"message": content[:160]}
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return err
    if isinstance(err, str):
        return {"message": err}
    return {"message": content[:160]}


def _is_auth_failure(status: int, err: Dict[str, Any]) -> bool:
    if status == 401:
        return True
    msg = str(err.get("message", "")).lower()
    return status == 403 and (err.get("status") == "UNAUTHENTICATED" or "invalid authentication credentials" in msg)


# ---------- Table ----------
@dataclass(frozen=True)
class Table:
    header: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "Table":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.header and not self.rows


def parse_values(payload: Any) -> Table:
    """Split a ``values.get`` body into header + data rows; no ``values`` means no data."""
    if not isinstance(payload, dict):
        raise MalformedResponse("values response is not a JSON object", operation="values.get")
    values = payload.get("values")
    if values is None:
        return Table.empty()
    if not isinstance(values, list) or not all(isinstance(r, list) for r in values):
        raise MalformedResponse("values is not a list of rows", operation="values.get")
    if not values:
        return Table.empty()
    return Table(header=[str(c) for c in values[0]], rows=[list(r) for r in values[1:]])


def fetch_table(svc, sheet_id: str, range_name: str) -> Table:
    try:
        payload = svc.spreadsheets().values().get(spreadsheetId=sheet_id, range=range_name).execute()
    except HttpError as exc:
        status = _http_status(exc)
        err = _error_body(exc)
        hint = "; token expired or invalid, acquire a new one" if _is_auth_failure(status, err) else ""
        raise ReadTransportFailure(f"HTTP {status} {err.get('message', '')}{hint}",
                                   operation="values.get", status=status) from exc
    except RefreshError as exc:
        raise ReadTransportFailure(f"token rejected ({exc}); acquire a new one", operation="values.get") from exc
    except _TRANSPORT_ERRORS as exc:
        raise ReadTransportFailure(f"{exc.__class__.__name__}: {exc}", operation="values.get") from exc
    except ValueError as exc:
        raise MalformedResponse(f"values response is not JSON: {exc}", operation="values.get") from exc
    return parse_values(payload)


# ---------- Filter ----------
@dataclass(frozen=True)
class Predicate:
    column_index: int
    expected_value: str

    def __post_init__(self) -> None:
        if isinstance(self.column_index, bool) or not isinstance(self.column_index, int) or self.column_index < 0:
            raise PreconditionError(f"column_index must be a non-negative integer, got {self.column_index!r}")

    @classmethod
    def parse(cls, raw: str) -> "Predicate":
        col, sep, value = raw.partition("=")
        if not sep:
            raise PreconditionError(f"predicate {raw!r} is not col=value")
        try:
            return cls(int(col.strip()), value)
        except ValueError:
            raise PreconditionError(f"predicate column {col!r} is not an integer") from None

    def matches(self, row: Sequence[Any]) -> bool:
        # a short row has no cell here, which never equals anything (not even "")
        if self.column_index >= len(row):
            return False
        cell = row[self.column_index]
        return isinstance(cell, str) and cell == self.expected_value


@dataclass(frozen=True)
class FilterResult:
    header: List[str]
    matched_rows: List[List[Any]]

    @property
    def count(self) -> int:
        return len(self.matched_rows)

    def as_json(self) -> Dict[str, Any]:
        return {"header": self.header, "filtered_data": self.matched_rows, "count": self.count}


def filter_rows(table: Table, predicates: Sequence[Predicate]) -> FilterResult:
    """Keep data rows where every predicate holds, in table order."""
    if not predicates:
        raise PreconditionError("predicate set is empty")
    matched = [row for row in table.rows if all(p.matches(row) for p in predicates)]
    return FilterResult(header=list(table.header), matched_rows=matched)


# ---------- Mutations ----------
def _execute_write(operation: str, request) -> Dict[str, Any]:
    try:
        resp = request.execute()
    except HttpError as exc:
        status = _http_status(exc)
        err = _error_body(exc)
        msg = f"HTTP {status} {err.get('message', '')}".strip()
        if _is_auth_failure(status, err):
            raise Unauthorized(msg, operation=operation, status=status) from exc
        raise RejectedByService(msg, operation=operation, status=status) from exc
    except RefreshError as exc:
        raise Unauthorized(f"token rejected: {exc}", operation=operation) from exc
    except _TRANSPORT_ERRORS as exc:
        raise WriteTransportFailure(f"{exc.__class__.__name__}: {exc}", operation=operation) from exc
    except ValueError as exc:
        raise WriteTransportFailure(f"unreadable response, the write may have been applied: {exc}",
                                    operation=operation) from exc
    return resp if isinstance(resp, dict) else {}


def _check_row_index(row_index: int, operation: str) -> None:
    if isinstance(row_index, bool) or not isinstance(row_index, int) or row_index < 1:
        raise InvalidIndex(f"row index must be >= 1, got {row_index!r}", operation=operation)


def append_row(svc, sheet_id: str, tab: str, row: Sequence[str]) -> Dict[str, Any]:
    """Append one row; the service picks where it lands, so don't assume an index."""
    if not row:
        raise PreconditionError("append needs at least one value", operation="values.append")
    resp = _execute_write("values.append", svc.spreadsheets().values().append(
        spreadsheetId=sheet_id,
        range=_quote_title(tab),
        valueInputOption="RAW",
        body={"values": [list(row)]},
    ))
    return resp.get("updates", {})


def update_range(tab: str, row_index: int, width: int) -> str:
    return f"{_quote_title(tab)}!A{row_index}:{_col_letters(width)}{row_index}"


def update_row(svc, sheet_id: str, tab: str, row_index: int, values: Sequence[str]) -> Dict[str, Any]:
    """Overwrite row ``row_index`` (1-based, header is row 1) starting at column A."""
    _check_row_index(row_index, "values.update")
    if not values:
        raise PreconditionError("update needs at least one value", operation="values.update")
    return _execute_write("values.update", svc.spreadsheets().values().update(
        spreadsheetId=sheet_id,
        range=update_range(tab, row_index, len(values)),
        valueInputOption="RAW",
        body={"values": [list(values)]},
    ))


def delete_range(row_index: int) -> Tuple[int, int]:
    """1-based row -> 0-based half-open [start, end) for deleteDimension."""
    _check_row_index(row_index, "batchUpdate.deleteDimension")
    return row_index - 1, row_index


def delete_row(svc, sheet_id: str, sheet_gid: int, row_index: int) -> Dict[str, Any]:
    """Remove one row; every row below it moves up by one."""
    start, end = delete_range(row_index)
    body = {"requests": [{"deleteDimension": {"range": {
        "sheetId": sheet_gid,
        "dimension": "ROWS",
        "startIndex": start,
        "endIndex": end,
    }}}]}
    return _execute_write("batchUpdate.deleteDimension",
                          svc.spreadsheets().batchUpdate(spreadsheetId=sheet_id, body=body))


def resolve_sheet_gid(svc, sheet_id: str, title: str) -> int:
    """Look up the numeric sheet id of tab ``title`` (needed by deleteDimension)."""
    try:
        meta = svc.spreadsheets().get(spreadsheetId=sheet_id).execute()
    except HttpError as exc:
        raise ReadTransportFailure(f"HTTP {_http_status(exc)}", operation="spreadsheets.get",
                                   status=_http_status(exc)) from exc
    except RefreshError as exc:
        raise ReadTransportFailure(f"token rejected ({exc}); acquire a new one",
                                   operation="spreadsheets.get") from exc
    except _TRANSPORT_ERRORS as exc:
        raise ReadTransportFailure(f"{exc.__class__.__name__}: {exc}", operation="spreadsheets.get") from exc
    by_title = {s.get("properties", {}).get("title"): s for s in meta.get("sheets", [])}
    if title not in by_title:
        raise PreconditionError(f"tab {title!r} not in spreadsheet", operation="spreadsheets.get")
    gid = by_title[title]["properties"].get("sheetId")
    if not isinstance(gid, int):
        raise ReadError(f"tab {title!r} has no sheetId", operation="spreadsheets.get")
    return gid


__all__: Iterable[str] = (
    "sheets_service",
    "Table",
    "parse_values",
    "fetch_table",
    "Predicate",
    "FilterResult",
    "filter_rows",
    "append_row",
    "update_range",
    "update_row",
    "delete_range",
    "delete_row",
    "resolve_sheet_gid",
)
