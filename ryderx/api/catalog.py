from typing import Iterable, List, Union

from .cache import catalog_cache
from .client import ApiClient, parse_models
from ..booking.models import Car, CarFilter, Location
from ..errors import DraftValidationError


def _matches(car: Car, criteria: CarFilter) -> bool:
    if criteria.location_name is not None and car.location_name != criteria.location_name:
        return False
    if criteria.min_price is not None and car.price_per_day < criteria.min_price:
        return False
    if criteria.max_price is not None and car.price_per_day > criteria.max_price:
        return False
    for field in ("category", "fuel_type", "transmission", "make"):
        wanted = getattr(criteria, field)
        if wanted is not None and getattr(car, field) != wanted:
            return False
    if criteria.min_seats is not None and (car.seats is None or car.seats < criteria.min_seats):
        return False
    if criteria.available is not None and car.is_available != criteria.available:
        return False
    return True


def filter_cars(cars: Iterable[Car], criteria: CarFilter) -> List[Car]:
    """Cars matching every set criterion, in their original order."""
    return [car for car in cars if _matches(car, criteria)]


class CatalogClient:
    """Read-only lookups for the booking wizard. Public endpoints, no token needed."""

    def __init__(self, api: ApiClient):
        self.api = api

    @catalog_cache.cached
    async def list_locations(self) -> List[Location]:
        data = await self.api.get("/locations", authenticated=False)
        return parse_models(Location, data)

    @catalog_cache.cached
    async def list_cars(self, available_only: bool = False) -> List[Car]:
        path = "/cars/available" if available_only else "/cars"
        data = await self.api.get(path, authenticated=False)
        return parse_models(Car, data)

    @catalog_cache.cached
    async def cars_at_location(self, location_id: Union[int, str]) -> List[Car]:
        data = await self.api.get(f"/cars/location/{location_id}", authenticated=False)
        return parse_models(Car, data)

    async def search_cars(self, criteria: CarFilter) -> List[Car]:
        return filter_cars(await self.list_cars(), criteria)

    async def find_location(self, name: str) -> Location:
        """Resolve a location name chosen in the wizard to the API's location."""
        for location in await self.list_locations():
            if location.name == name:
                return location
        raise DraftValidationError("Invalid pickup or dropoff location", step=1)
