"""Token -> read/filter -> mutations, for one run.

Mutations are not transactional. If a run fails halfway through its mutation
list, the earlier ones stay applied on the sheet; the JSONL journal records
which ones went through so they can be reconciled by hand.
"""

from __future__ import annotations

import json
import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from sheetsync.auth import AccessToken, ServiceIdentity, TokenBroker
from sheetsync.config import Mutation, Settings
from sheetsync.errors import ArtifactError, AuthError, ConfigError, JournalError, SyncError
from sheetsync.logs import log_event, utc_now_iso
from sheetsync.sheets import (
    FilterResult,
    Predicate,
    append_row,
    delete_row,
    fetch_table,
    filter_rows,
    resolve_sheet_gid,
    sheets_service,
    update_row,
)

DONE = "done"
FAILED = "failed"


@dataclass
class RunReport:
    run_id: str = ""
    state: str = "start"
    count: Optional[int] = None
    applied: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[SyncError] = None

    def summary(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"run_id": self.run_id, "state": self.state, "count": self.count,
                               "applied": self.applied}
        if self.error is not None:
            out.update(self.error.as_log())
        return out


def write_artifact(path: str, result: FilterResult) -> None:
    """Overwrite ``path`` with ``{header, filtered_data, count}``."""
    try:
        Path(path).write_text(json.dumps(result.as_json(), ensure_ascii=False), encoding="utf-8")
    except OSError as exc:
        raise ArtifactError(f"cannot write {path}: {exc.strerror or exc}", operation="artifact") from exc


def journal(path: str, run_id: str, mutation: Mutation, status: str, **extra: Any) -> None:
    rec = {"ts": utc_now_iso(), "run_id": run_id, **mutation.as_log(), "status": status, **extra}
    try:
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(json.dumps(rec, separators=(",", ":")) + "\n")
    except OSError as exc:
        raise JournalError(f"cannot append to {path}: {exc.strerror or exc}", operation="journal") from exc


class SyncRun:
    """Linear run: start -> token_acquired -> read -> mutate* -> done | failed."""

    def __init__(
        self,
        settings: Settings,
        broker: TokenBroker,
        service_factory: Callable[[AccessToken], Any] = sheets_service,
        clock: Callable[[], float] = time.time,
        run_id: Optional[str] = None,
    ) -> None:
        self.settings = settings
        self.broker = broker
        self._service_factory = service_factory
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._svc = None
        self.report = RunReport(run_id=run_id or uuid.uuid4().hex)

    # the only shared state in a run; rebuilt when the token is replaced
    def _service(self):
        if self._token is None or self._token.is_expired(self._clock()):
            refresh = self._token is not None
            self._token = self.broker.acquire(self.settings.scope, self.settings.token_uri)
            self._svc = self._service_factory(self._token)
            log_event("INFO", "token refreshed" if refresh else "token acquired",
                      step="token_refresh" if refresh else "token", run_id=self.report.run_id)
            if not refresh:
                self.report.state = "token_acquired"
        return self._svc

    def _fail(self, step: str, err: SyncError) -> RunReport:
        self.report.state = FAILED
        self.report.error = err
        log_event("ERROR", f"{step} failed", step=step, run_id=self.report.run_id,
                  applied=self.report.applied, **err.as_log())
        return self.report

    def _journal(self, m: Mutation, status: str, **extra: Any) -> None:
        journal(self.settings.journal_path, self.report.run_id, m, status, **extra)

    def run(self) -> RunReport:
        try:
            self._service()
        except SyncError as err:
            return self._fail("token", err)

        try:
            self.read()
        except SyncError as err:
            if isinstance(err, AuthError):
                return self._fail("token_refresh", err)
            if self.settings.mutations:
                return self._fail("read", err)
            # nothing depends on the table shape without mutations; report and finish
            log_event("ERROR", "read failed", step="read", run_id=self.report.run_id, **err.as_log())
            self.report.error = err

        for m in self.settings.mutations:
            try:
                resp = self.mutate(m)
            except SyncError as err:
                try:
                    self._journal(m, "failed", err=err.kind, msg=err.message)
                except JournalError as jerr:
                    log_event("ERROR", "journal failed", step="journal", run_id=self.report.run_id,
                              **jerr.as_log())
                if self.report.applied:
                    log_event("WARN", "earlier mutations stay applied", step="mutate",
                              run_id=self.report.run_id, applied=self.report.applied)
                return self._fail("token_refresh" if isinstance(err, AuthError) else "mutate", err)
            # accepted remotely; count it before anything local can fail
            self.report.applied.append(m.as_log())
            log_event("INFO", "mutation applied", step="mutate", run_id=self.report.run_id,
                      resp=resp, **m.as_log())
            try:
                self._journal(m, "applied")
            except JournalError as err:
                return self._fail("journal", err)

        self.report.state = DONE if self.report.error is None else FAILED
        return self.report

    def read(self) -> FilterResult:
        s = self.settings
        table = fetch_table(self._service(), s.sheet_id, s.read_range)
        self.report.state = "read"
        if table.is_empty:
            log_event("WARN", "no data", step="read", range=s.read_range)
        result = filter_rows(table, [Predicate(c, v) for c, v in s.predicates])
        write_artifact(s.output_path, result)
        self.report.count = result.count
        log_event("INFO", "rows filtered", step="read", header=result.header, count=result.count,
                  output=s.output_path)
        return result

    def mutate(self, m: Mutation) -> Dict[str, Any]:
        s = self.settings
        self.report.state = "mutate"
        if m.op == "append":
            return append_row(self._service(), s.sheet_id, s.write_tab, list(m.values))
        if m.op == "update":
            return update_row(self._service(), s.sheet_id, s.write_tab, m.row, list(m.values))
        gid = s.sheet_gid
        if gid is None:
            gid = resolve_sheet_gid(self._service(), s.sheet_id, s.write_tab)
        return delete_row(self._service(), s.sheet_id, gid, m.row)


def main() -> int:
    try:
        settings = Settings.from_env()
    except ConfigError as err:
        log_event("ERROR", err.message, step="config")
        return 2
    broker = TokenBroker(ServiceIdentity(settings.principal_id, settings.private_key),
                         token_uri=settings.token_uri)
    report = SyncRun(settings, broker).run()
    log_event("INFO" if report.state == DONE else "ERROR", "run finished", **report.summary())
    return 0 if report.state == DONE else 1


__all__: Iterable[str] = ("RunReport", "SyncRun", "write_artifact", "journal", "main")


if __name__ == "__main__":
    sys.exit(main())
