#!/usr/bin/env python3
"""
Recover an order whose webhook never arrived: asks Cashfree for the order
status and, if it is PAID, settles the payment exactly like the admin
fix-stuck-payment endpoint does.

    python fix_payment.py order_1733312345678_abcd1234
    python fix_payment.py order_1733312345678_abcd1234 --json
"""
import argparse
import asyncio
import logging
import sys
from dataclasses import asdict

import orjson

from takshashila.errors import (
    ConfigError, GatewayError, PaymentNotSuccessful, PaymentRecordNotFound,
)
from takshashila.reconcile import ReconcileResult
from takshashila.services import (
    make_http, make_reconciler, make_signer, open_store,
)


async def fix(order_id: str) -> ReconcileResult:
    signer = make_signer()
    http = make_http()
    docs, close = await open_store()
    try:
        rc = make_reconciler(http, docs, signer)
        return await rc.fix(order_id)
    finally:
        await close()
        await http.aclose()


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(
        description="Issue the pass for a paid order that never got one"
    )
    ap.add_argument("order_id", help="Cashfree order id (order_...)")
    ap.add_argument("--json", action="store_true",
                    help="print the result as JSON instead of steps")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    try:
        result = asyncio.run(fix(args.order_id))
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2
    except PaymentNotSuccessful as e:
        print(f"not paid: Cashfree reports {e.gateway_status or 'unknown'}",
              file=sys.stderr)
        return 1
    except PaymentRecordNotFound:
        print(f"no payment record for {args.order_id}", file=sys.stderr)
        return 1
    except GatewayError as e:
        print(f"Cashfree lookup failed ({e.status_code}): {e.message}",
              file=sys.stderr)
        return 1

    if args.json:
        sys.stdout.buffer.write(
            orjson.dumps(asdict(result), option=orjson.OPT_INDENT_2) + b"\n"
        )
        return 0

    for i, step in enumerate(result.steps, 1):
        print(f"{i:>2}. {step}")
    print()
    print(f"==> pass {result.pass_id} "
          + ("created" if result.created else "already existed"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
