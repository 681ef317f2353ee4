"""Job configuration, read from the environment once at startup."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sheetsync.auth import check_uri
from sheetsync.errors import ConfigError, PreconditionError

DEFAULT_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_FILTERS = "1=DEBENHAMS;9=FALSE"
MUTATION_OPS = ("append", "update", "delete")


def env(name: str, default: str = "", source: Optional[Mapping[str, str]] = None) -> str:
    src = os.environ if source is None else source
    return (src.get(name) or default).strip()


@dataclass(frozen=True)
class Mutation:
    op: str
    row: int = 0
    values: Tuple[str, ...] = ()

    def as_log(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"op": self.op}
        if self.op != "append":
            out["row"] = self.row
        if self.op != "delete":
            out["values"] = list(self.values)
        return out


def parse_filters(raw: str) -> List[Tuple[int, str]]:
    """Parse ``"1=DEBENHAMS;9=FALSE"`` into ``[(1, "DEBENHAMS"), (9, "FALSE")]``."""
    out: List[Tuple[int, str]] = []
    for part in raw.split(";"):
        if not part.strip():
            continue
        if "=" not in part:
            raise ConfigError(f"FILTERS entry {part!r} is not col=value")
        col, value = part.split("=", 1)
        try:
            idx = int(col.strip())
        except ValueError:
            raise ConfigError(f"FILTERS column {col!r} is not an integer") from None
        if idx < 0:
            raise ConfigError(f"FILTERS column {idx} is negative")
        out.append((idx, value))
    if not out:
        raise ConfigError("FILTERS is empty")
    return out


def parse_mutations(raw: str) -> List[Mutation]:
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except ValueError as exc:
        raise ConfigError(f"MUTATIONS is not valid JSON: {exc}") from None
    if not isinstance(items, list):
        raise ConfigError("MUTATIONS must be a JSON list")
    out: List[Mutation] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict) or item.get("op") not in MUTATION_OPS:
            raise ConfigError(f"MUTATIONS[{i}] needs op in {MUTATION_OPS}")
        op = item["op"]
        row = item.get("row")
        values = item.get("values", [])
        if op != "append" and (isinstance(row, bool) or not isinstance(row, int) or row < 1):
            raise ConfigError(f"MUTATIONS[{i}] ({op}) needs an integer row >= 1")
        if op != "delete" and (not isinstance(values, list) or not values):
            raise ConfigError(f"MUTATIONS[{i}] ({op}) needs a non-empty values list")
        out.append(Mutation(op=op, row=row if op != "append" else 0,
                            values=tuple(str(v) for v in values) if op != "delete" else ()))
    return out


@dataclass(frozen=True)
class Settings:
    principal_id: str
    private_key: str = field(repr=False)
    sheet_id: str
    read_range: str = "RETURNS MAIN"
    write_tab: str = "Sheet1"
    sheet_gid: Optional[int] = None
    predicates: Tuple[Tuple[int, str], ...] = ((1, "DEBENHAMS"), (9, "FALSE"))
    mutations: Tuple[Mutation, ...] = ()
    output_path: str = "output.json"
    journal_path: str = "mutations.jsonl"
    scope: str = DEFAULT_SCOPE
    token_uri: str = DEFAULT_TOKEN_URI

    @classmethod
    def from_env(cls, source: Optional[Mapping[str, str]] = None) -> "Settings":
        missing = [n for n in ("SERVICE_ACCOUNT_EMAIL", "PRIVATE_KEY", "SHEET_ID") if not env(n, source=source)]
        if missing:
            raise ConfigError(f"{', '.join(missing)} missing")
        gid = env("SHEET_GID", "", source)
        try:
            sheet_gid = int(gid) if gid else None
        except ValueError:
            raise ConfigError(f"SHEET_GID {gid!r} is not an integer") from None
        scope = env("TOKEN_SCOPE", DEFAULT_SCOPE, source)
        token_uri = env("TOKEN_URI", DEFAULT_TOKEN_URI, source)
        try:
            check_uri("TOKEN_SCOPE", scope)
            check_uri("TOKEN_URI", token_uri)
        except PreconditionError as exc:
            raise ConfigError(exc.message) from None
        return cls(
            principal_id=env("SERVICE_ACCOUNT_EMAIL", source=source),
            # keys pasted into .env files carry escaped newlines
            private_key=env("PRIVATE_KEY", source=source).replace("\\n", "\n"),
            sheet_id=env("SHEET_ID", source=source),
            read_range=env("SHEET_RANGE", "RETURNS MAIN", source),
            write_tab=env("SHEET_TAB", "Sheet1", source),
            sheet_gid=sheet_gid,
            predicates=tuple(parse_filters(env("FILTERS", DEFAULT_FILTERS, source))),
            mutations=tuple(parse_mutations(env("MUTATIONS", "", source))),
            output_path=env("OUTPUT_PATH", "output.json", source),
            journal_path=env("JOURNAL_PATH", "mutations.jsonl", source),
            scope=scope,
            token_uri=token_uri,
        )


__all__: Iterable[str] = ("env", "Mutation", "Settings", "parse_filters", "parse_mutations")
