import os
import sys

from sheetsync.auth import ServiceIdentity, TokenBroker
from sheetsync.config import Settings
from sheetsync.errors import SyncError
from sheetsync.logs import utc_now_iso
from sheetsync.sheets import sheets_service, update_row


def main() -> None:
    try:
        s = Settings.from_env()
        row = int(os.environ.get("SHEET_ROW", "2").strip() or "2")
    except (SyncError, ValueError) as exc:
        print(f'...[ERROR] [verify] step=sheet_write ok=false reason="{exc}"')
        sys.exit(2)

    value = os.environ.get("SHEET_VALUE", "").strip() or f"smoke-test {utc_now_iso()}"

    try:
        token = TokenBroker(ServiceIdentity(s.principal_id, s.private_key), token_uri=s.token_uri).acquire(s.scope)
        resp = update_row(sheets_service(token), s.sheet_id, s.write_tab, row, [value])
        print(f'...[INFO] [verify] step=sheet_write ok=true range="{resp.get("updatedRange", "")}" value="{value}"')
    except SyncError as exc:
        print(f'...[ERROR] [verify] step=sheet_write ok=false reason="{exc.kind}: {exc.message}"')
        sys.exit(1)


if __name__ == "__main__":
    main()
