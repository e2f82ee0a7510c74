# flake8: noqa E402
# Run via uv for access to dev deps, e.g.:
# uv run scripts/price_service_probe.py USDT-XOF --amount 10 --direction sell --repeat 3
from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

# Ensure the src directory is importable when the script is invoked via uv/python directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from config import config
from services.price_service import build_price_service
from services.price_types import PriceUnavailable


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe PriceService caching and dedup against live providers.")
    parser.add_argument("pairs", nargs="+", help="Pairs to quote, e.g. BTC-USD usdt_xof ETH/EUR.")
    parser.add_argument("--amount", type=float, default=None, help="Optional amount to convert.")
    parser.add_argument("--direction", choices=("buy", "sell"), default=None, help="Customer side of the trade.")
    parser.add_argument(
        "--repeat",
        type=int,
        default=2,
        help="Sequential requests per pair; the second one should be a cache hit (default: 2).",
    )
    parser.add_argument(
        "--concurrent",
        type=int,
        default=1,
        help="Fire this many simultaneous first requests per pair to observe dedup (default: 1).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    settings = config()
    print(f"Providers: {', '.join(settings.providers)}; ttl={settings.cache_ttl_seconds}s")
    with build_price_service(settings) as service:
        for pair in args.pairs:
            if args.concurrent > 1:
                with ThreadPoolExecutor(max_workers=args.concurrent) as pool:
                    futures = [
                        pool.submit(service.get_price, pair, amount=args.amount, direction=args.direction)
                        for _ in range(args.concurrent)
                    ]
                    prices = {future.result().market_price for future in futures}
                print(f"[concurrent] {pair}: {args.concurrent} callers saw {len(prices)} distinct price(s)")

            for idx in range(1, args.repeat + 1):
                try:
                    response = service.get_price(pair, amount=args.amount, direction=args.direction)
                except PriceUnavailable as exc:
                    print(f"[request {idx}] {pair}: unavailable ({exc})")
                    continue
                print(f"[request {idx}] {response.model_dump_json(by_alias=True)}")


if __name__ == "__main__":
    main()
