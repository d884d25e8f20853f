"""
HTTP transport for the RyderX reservations API.

One async httpx client shared by every service module. It attaches the
bearer token of the signed-in user, clears the stored session on 401, and
maps every failure onto the error types in ``ryderx.errors`` so the UI can
show the message as-is.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import (
    MalformedResponseError,
    ServiceRejectedError,
    ServiceUnavailableError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

NO_RESPONSE_MESSAGE = "No response from server. Please try again."

M = TypeVar("M", bound=BaseModel)


def parse_model(model: Type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Malformed {model.__name__} payload: {e}")
        raise MalformedResponseError("Unexpected response from server.") from e


def parse_models(model: Type[M], data: Any) -> List[M]:
    if not isinstance(data, list):
        raise MalformedResponseError("Unexpected response from server.")
    return [parse_model(model, item) for item in data]


def _error_message(response: httpx.Response, default: str = "Request failed") -> str:
    """The API reports errors as {"message": ...} (or "Message" from some endpoints)."""
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return body.get("message") or body.get("Message") or default
    return default


class ApiClient:
    """Async JSON client for the reservations API."""

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.on_unauthorized = on_unauthorized
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        headers = {}
        if authenticated and self.token_provider:
            token = self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"{method} {path} timed out: {e}")
            raise ServiceUnavailableError(NO_RESPONSE_MESSAGE) from e
        except httpx.TransportError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ServiceUnavailableError(NO_RESPONSE_MESSAGE) from e

        if response.status_code == 401:
            logger.warning("Unauthorized! Clearing session...")
            if self.on_unauthorized:
                self.on_unauthorized()
            raise UnauthorizedError(
                _error_message(response, "Your session has expired. Please log in again."),
                status_code=401,
            )

        if response.is_error:
            message = _error_message(response)
            logger.warning(f"{method} {path} rejected with {response.status_code}: {message}")
            raise ServiceRejectedError(message, status_code=response.status_code)

        if not response.content:
            return None
        if "json" not in response.headers.get("content-type", ""):
            # some endpoints (cancel, status) answer with a plain confirmation string
            return response.text
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Unexpected response from server.", status_code=response.status_code
            ) from e

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
