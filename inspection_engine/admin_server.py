from __future__ import annotations

"""
Findings admin server entrypoint.

  ADMIN_TOKEN=... DATABASE_URL=sqlite:///data/findings.db python -m inspection_engine.admin_server
  python -m inspection_engine.admin_server --check-config
"""

import argparse
import json
import logging

from inspection_engine.rules.config_store import load_snapshot
from inspection_engine.services.settings import get_settings
from inspection_engine.web.admin_api import run_server


def check_config() -> int:
    """Load the rule files once and print diagnostics; non-zero exit when any exist."""
    settings = get_settings()
    snap = load_snapshot(settings.rules_dir)
    print(
        json.dumps(
            {
                "rules_dir": str(settings.rules_dir),
                "findings": len(snap.known_finding_ids()),
                "mapping_rules": len(snap.mapping_rules),
                "diagnostics": [d.to_dict() for d in snap.diagnostics],
            },
            ensure_ascii=False,
            indent=2,
        )
    )
    return 1 if snap.diagnostics else 0


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Findings admin API server")
    ap.add_argument("--host", default=None, help="bind host (default ADMIN_API_HOST or 127.0.0.1)")
    ap.add_argument("--port", type=int, default=None, help="bind port (default ADMIN_API_PORT or 8789)")
    ap.add_argument("--check-config", action="store_true", help="validate rule files and exit")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    if args.check_config:
        return check_config()
    run_server(host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
