"""Manual live check against the PayByPhone service.

Run from the repository root with:
  PYTHONPATH=src PAYBYPHONE_CONFIG=accounts.json \
  python scripts/live_check.py --account home check

Actions:
  check             show the vehicle's current session
  vehicles          list vehicles registered on the profile
  quote MINUTES     quote a duration against the first rate option
  park MINUTES      book now and record the renewal state
  state             show the stored renewal state
  sweep             run the renewal sweep until interrupted

Optional environment variables:
  PAYBYPHONE_CONFIG       account configuration file (default: accounts.json)
  PAYBYPHONE_STATE_FILE   renewal state file used by park/state/sweep

`park` books real (paid) sessions. The script avoids printing full license
plates.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from pypaybyphone import Client, PyPayByPhoneError
from pypaybyphone.models import BookedSession, Quote, RenewalState
from pypaybyphone.util import mask_license_plate

_LOGGER = logging.getLogger(__name__)


def _format_session(session: BookedSession) -> str:
    cost = f"{session.total_cost.amount} {session.total_cost.currency}" if session.total_cost else "-"
    return (
        f"{session.session_id} | {mask_license_plate(session.license_plate)} | "
        f"{session.start_time.isoformat()} -> {session.expire_time.isoformat()} | {cost}"
    )


def _format_quote(quote: Quote) -> str:
    cost = f"{quote.total_cost.amount} {quote.total_cost.currency}" if quote.total_cost else "-"
    return (
        f"{quote.quote_id} | {quote.start_time.isoformat()} -> "
        f"{quote.expiry_time.isoformat()} | {cost}"
    )


def _format_state(state: RenewalState | None) -> str:
    if state is None:
        return "no renewal state"
    status = "active" if state.is_active else "done"
    return f"{status} | next check {state.next_check.isoformat()} | {state.remaining_minutes} min"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a PayByPhone live check.")
    parser.add_argument(
        "--config",
        default=os.getenv("PAYBYPHONE_CONFIG", "accounts.json"),
        help="Account configuration file.",
    )
    parser.add_argument(
        "--state-file",
        default=os.getenv("PAYBYPHONE_STATE_FILE"),
        help="Renewal state file.",
    )
    parser.add_argument("--account", help="Configured account name.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "action",
        choices=("check", "vehicles", "quote", "park", "state", "sweep"),
    )
    parser.add_argument("minutes", nargs="?", type=int, help="Duration for quote/park.")
    return parser.parse_args()


async def _run(client: Client, args: argparse.Namespace) -> None:
    if args.action == "sweep":
        await client.start_scheduler()
        print("Sweep running; press Ctrl+C to stop.")
        await asyncio.Event().wait()
        return
    if not args.account:
        print("Missing required value: --account", file=sys.stderr)
        raise SystemExit(2)
    if args.action in ("quote", "park") and args.minutes is None:
        print("Missing required value: minutes", file=sys.stderr)
        raise SystemExit(2)
    if args.action == "check":
        print(_format_session(await client.check(args.account)))
    elif args.action == "vehicles":
        vehicles = await client.list_vehicles(args.account)
        print(f"Vehicles: {len(vehicles)}")
        for vehicle in vehicles:
            print(f"- {vehicle.vehicle_id} | {mask_license_plate(vehicle.license_plate)}")
    elif args.action == "quote":
        print(_format_quote(await client.quote(args.account, args.minutes)))
    elif args.action == "park":
        print(_format_session(await client.park(args.account, args.minutes)))
        print(_format_state(await client.get_renewal_state(args.account)))
    elif args.action == "state":
        print(_format_state(await client.get_renewal_state(args.account)))


async def main() -> int:
    args = _parse_args()
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    try:
        async with Client.from_config(args.config, state_path=args.state_file) as client:
            await _run(client, args)
    except PyPayByPhoneError as exc:
        _LOGGER.debug("Live check failed", exc_info=True)
        print(f"Error ({exc.error_type}): {exc.__class__.__name__}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        raise SystemExit(130) from None
