# src/ratelock/__main__.py
from __future__ import annotations

import argparse
import json
import os
from typing import Optional

from ratelock.domain import boot_domain


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(description="ratelock domain: boot from config, report ledger state, persist snapshot")
    p.add_argument("--config", default=os.environ.get("RATELOCK_CONFIG_PATH", ""))
    p.add_argument("--dotenv", default=os.environ.get("RATELOCK_DOTENV_PATH", ""))
    args = p.parse_args(argv)

    try:
        d = boot_domain(
            config_path=(args.config or "").strip() or None,
            dotenv_path=(args.dotenv or "").strip() or None,
        )
    except (OSError, ValueError) as e:
        print(f"config error: {e}")
        return 2

    d.save()
    print(
        json.dumps(
            {
                "domain": d.domain_id,
                "token": d.config.token_id,
                "global_rate": d.ledger.global_rate,
                "rate_version": d.ledger.rate_version,
                "accounts": len(d.ledger.accounts()),
                "total_principal": d.ledger.total_principal(),
                "lanes": d.adapter.lanes.domains(),
                "persisted": d.store is not None,
            },
            sort_keys=True,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
