import sys

from sheetsync.auth import ServiceIdentity, TokenBroker
from sheetsync.config import Settings
from sheetsync.errors import SyncError
from sheetsync.sheets import fetch_table, sheets_service


def main() -> None:
    try:
        s = Settings.from_env()
    except SyncError as exc:
        print(f'...[ERROR] [verify] step=sheet_read ok=false reason="{exc.message}"')
        sys.exit(2)
    try:
        token = TokenBroker(ServiceIdentity(s.principal_id, s.private_key), token_uri=s.token_uri).acquire(s.scope)
        table = fetch_table(sheets_service(token), s.sheet_id, s.read_range)
    except SyncError as exc:
        print(f'...[ERROR] [verify] step=sheet_read ok=false reason="{exc.kind}: {exc.message}"')
        sys.exit(1)
    ok = not table.is_empty
    print(f'...[INFO] [verify] step=sheet_read ok={str(ok).lower()} cols={len(table.header)} rows={len(table.rows)}')
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
