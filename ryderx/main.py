import asyncio
import getpass
import os
from datetime import datetime, timezone
from typing import List, Optional, Sequence, TypeVar

from ryderx.api.catalog import filter_cars
from ryderx.booking.draft import STEP_MESSAGES, normalize_dates, quote, step1_valid, step3_valid
from ryderx.booking.models import CarFilter, Notice, ReservationDraft, ReservationStatus
from ryderx.booking.refund import refund_applicable
from ryderx.booking.session import BookingSession
from ryderx.config import Config, setup_logging
from ryderx.errors import RyderXError

T = TypeVar("T")

HELP = """Commands:
  1. bookings              Show your active and past bookings
  2. book                  Start a new reservation
  3. pay <id>              Pay for a pending reservation
  4. cancel <id>           Cancel a reservation
  5. refund <id>           Estimate the refund for cancelling a confirmed reservation
  6. status <id> <status>  Change a reservation's status (agents and admins)
  7. refresh               Re-fetch reservations
  8. logout / quit"""


def print_notice(notice: Notice):
    print(f"\n[{notice.level.upper()}] {notice.message}")


async def ask(text: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    answer = (await asyncio.to_thread(input, f"{text}{suffix}: ")).strip()
    return answer or default


async def choose(title: str, options: Sequence[T], describe) -> T:
    print(f"\n{title}")
    for i, option in enumerate(options, start=1):
        print(f"  {i}. {describe(option)}")
    while True:
        answer = await ask("Choose a number")
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        print(f"Please enter a number between 1 and {len(options)}.")


async def ask_datetime(text: str, default: datetime) -> datetime:
    local_default = default.astimezone().strftime("%Y-%m-%d %H:%M")
    while True:
        answer = await ask(f"{text} (YYYY-MM-DD HH:MM)", local_default)
        try:
            return datetime.strptime(answer, "%Y-%m-%d %H:%M").astimezone(timezone.utc)
        except ValueError:
            print("Please use the format YYYY-MM-DD HH:MM.")


async def ask_yes_no(text: str, default: bool) -> bool:
    answer = await ask(f"{text} (y/n)", "y" if default else "n")
    return answer.lower().startswith("y")


async def ask_number(text: str, cast):
    while True:
        answer = await ask(f"{text} (blank for any)")
        if not answer:
            return None
        try:
            return cast(answer)
        except ValueError:
            print("Please enter a number.")


async def ask_car_filter(criteria: CarFilter) -> CarFilter:
    if not await ask_yes_no("Filter vehicles", False):
        return criteria
    return criteria.model_copy(update={
        "min_price": await ask_number("Minimum price per day", float),
        "max_price": await ask_number("Maximum price per day", float),
        "category": await ask("Category (blank for any)") or None,
        "fuel_type": await ask("Fuel type (blank for any)") or None,
        "transmission": await ask("Transmission (blank for any)") or None,
        "min_seats": await ask_number("Minimum seats", int),
        "make": await ask("Make (blank for any)") or None,
    })


def show_bookings(session: BookingSession):
    active = session.active_holds()
    print("\nActive Bookings")
    if not active:
        print("  No active bookings at the moment.")
    for hold in active:
        print(f"  #{hold.id} {hold.label} [{hold.status.value}] Total: {hold.total_price:g}")
        print(f"     Pickup: {hold.pickup_location} {hold.pickup_at}")
        print(f"     Drop-off: {hold.dropoff_location} {hold.dropoff_at}")
        countdown = session.monitor.display(hold.key)
        if hold.status == ReservationStatus.PENDING and countdown:
            print(f"     {countdown}")

    past = session.past_holds()
    print("\nPast Bookings")
    if not past:
        print("  No past bookings available.")
    for hold in past:
        print(f"  #{hold.id} {hold.label} [{hold.status.value}] Total: {hold.total_price:g}")


async def run_wizard(session: BookingSession) -> Optional[ReservationDraft]:
    draft = ReservationDraft()

    # 1. Trip details
    locations = await session.catalog.list_locations()
    if not locations:
        print("No pick-up locations are available right now.")
        return None
    pickup = await choose("Pick-up location", locations, lambda loc: loc.name)
    dropoff = await choose("Drop-off location", locations, lambda loc: loc.name)
    draft.pickup_location = pickup.name
    draft.dropoff_location = dropoff.name

    normalize_dates(draft, datetime.now(timezone.utc))
    while True:
        draft.pickup_at = await ask_datetime("Pick-up date", draft.pickup_at)
        draft.dropoff_at = await ask_datetime("Drop-off date", draft.dropoff_at)
        normalize_dates(draft, datetime.now(timezone.utc))
        if step1_valid(draft):
            break
        print(STEP_MESSAGES[1])

    # 2. Vehicle & extras
    criteria = await ask_car_filter(CarFilter(location_name=pickup.name, available=True))
    cars = filter_cars(await session.catalog.list_cars(), criteria)
    if not cars:
        # older listings carry no location name; the per-location endpoint is already scoped
        unscoped = criteria.model_copy(update={"location_name": None})
        cars = filter_cars(await session.catalog.cars_at_location(pickup.id), unscoped)
    if not cars:
        print("No vehicles match your search at this location.")
        return None
    draft.car = await choose(
        "Vehicle",
        cars,
        lambda car: f"{car.display_name} ({car.year or '-'}, {car.seats or '-'} seats) {car.price_per_day:g}/day",
    )
    draft.add_ons.road_care = await ask_yes_no("Road Care (+300)", draft.add_ons.road_care)
    draft.add_ons.additional_driver = await ask_yes_no("Additional Driver (+200)", False)
    draft.add_ons.child_seat = await ask_yes_no("Child Seat (+150)", False)

    # 3. Hirer details
    try:
        draft.hirer = await session.auth.hirer_from_profile()
    except RyderXError as e:
        print(f"Could not load your profile: {e}")
    while True:
        hirer = draft.hirer
        hirer.first_name = await ask("First name", hirer.first_name)
        hirer.last_name = await ask("Last name", hirer.last_name)
        hirer.email = await ask("Email", hirer.email)
        hirer.phone = await ask("Phone", hirer.phone)
        hirer.country = await ask("Country", hirer.country)
        hirer.driver_license_number = await ask("Driver License Number", hirer.driver_license_number)
        if step3_valid(draft):
            break
        print(STEP_MESSAGES[3])

    price = quote(draft)
    print(f"\n{price.days} day(s) x {draft.car.price_per_day:g} = {price.vehicle_subtotal:g}")
    print(f"Extras: {price.road_care + price.additional_driver + price.child_seat:g}")
    print(f"Estimated total: {price.total:g}")
    if not await ask_yes_no("Create reservation", True):
        return None
    return draft


async def handle_command(session: BookingSession, command: str, args: List[str]) -> bool:
    """Run one REPL command. Returns False when the user wants to leave."""
    if command in ("quit", "exit"):
        return False
    if command == "logout":
        session.auth.logout()
        print("Logged out.")
        return False
    if command == "help":
        print(HELP)
    elif command == "refresh":
        await session.refresh()
        show_bookings(session)
    elif command == "bookings":
        show_bookings(session)
    elif command == "book":
        draft = await run_wizard(session)
        if draft is not None:
            hold = await session.book(draft)
            print(f"Reservation #{hold.id} created successfully! Proceed to payment with: pay {hold.id}")
            print(session.monitor.display(hold.key) or "")
    elif command == "pay" and args:
        url = await session.pay(args[0])
        print(f"Opening checkout: {url}")
    elif command == "cancel" and args:
        hold = session.get(args[0])
        if refund_applicable(hold):
            print(f"Estimated refund: {session.refund_estimate(hold.id):g}")
        if await ask_yes_no(f"Are you sure you want to cancel {hold.label}", False):
            cancelled = await session.cancel(hold.id)
            await session.refresh()
            print("Booking cancelled." if cancelled else "This booking was already cancelled or has expired.")
    elif command == "refund" and args:
        print(f"Estimated refund: {session.refund_estimate(args[0]):g}")
    elif command == "status" and len(args) == 2:
        await session.update_status(args[0], args[1])
        await session.refresh()
        print("Status updated.")
    else:
        print(HELP)
    return True


async def main():
    # 1. Validate Config
    if not Config.validate():
        return
    setup_logging(Config.LOG_LEVEL)

    # 2. Build the session and sign in
    session = BookingSession.from_config(on_notice=print_notice)
    try:
        if session.auth.current() is None:
            email = os.getenv("RYDERX_EMAIL") or await ask("Email")
            password = os.getenv("RYDERX_PASSWORD") or await asyncio.to_thread(getpass.getpass, "Password: ")
            await session.auth.login(email, password)
        await session.refresh()
    except RyderXError as e:
        print(f"Error: {e}")
        await session.aclose()
        return

    # 3. Keep the payment countdowns ticking in the background
    ticker = asyncio.create_task(session.monitor.run(Config.COUNTDOWN_TICK_SECONDS))

    print(f"Signed in as {session.auth.current().username}. Type 'help' for commands, 'quit' to exit.")
    show_bookings(session)

    # 4. Interaction Loop
    while True:
        try:
            parts = (await ask("\nRyderX")).split()
            if not parts:
                continue
            if not await handle_command(session, parts[0].lower(), parts[1:]):
                break
        except KeyboardInterrupt:
            break
        except RyderXError as e:
            print(f"Failed: {e}")

    session.monitor.stop()
    await ticker
    await session.aclose()


def run():
    """Console entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    run()
