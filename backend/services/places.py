"""Google Places address autocomplete.

``PlacesAutocompleteSession`` owns an HTTP client and a Places session token
for the lifetime of a ``with`` block. The client is always closed when the
block exits, including on errors, and a closed session refuses further
calls.
"""

import logging
import uuid

import httpx
from pydantic import BaseModel

from backend.core import config

logger = logging.getLogger(__name__)


class PlacesError(Exception):
    pass


class PlacesSessionClosedError(PlacesError):
    pass


class PlaceSuggestion(BaseModel):
    place_id: str
    description: str
    main_text: str | None = None
    secondary_text: str | None = None


class PlaceDetails(BaseModel):
    place_id: str
    formatted_address: str
    lat: float | None = None
    lng: float | None = None


class PlacesAutocompleteSession:
    def __init__(
        self,
        api_key: str,
        session_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_key:
            raise PlacesError('Google Maps API key is not configured.')
        self.api_key = api_key
        self.session_token = session_token or uuid.uuid4().hex
        self._base_url = base_url or config.GOOGLE_PLACES_BASE_URL
        self._timeout = timeout or config.GOOGLE_PLACES_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.Client | None = None

    def __enter__(self) -> 'PlacesAutocompleteSession':
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    def __exit__(self, exc_type, exc, traceback) -> bool:
        self.close()
        return False

    @property
    def active(self) -> bool:
        return self._client is not None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get(self, path: str, params: dict) -> dict:
        if self._client is None:
            raise PlacesSessionClosedError('Places session is not active.')

        try:
            response = self._client.get(path, params={**params, 'key': self.api_key})
        except httpx.HTTPError as exc:
            raise PlacesError('Places provider unreachable') from exc

        if response.status_code >= 400:
            logger.warning('Places error %s: %s', response.status_code, response.text[:200])
            raise PlacesError('Places provider error')

        payload = response.json()
        status = payload.get('status')
        if status not in {'OK', 'ZERO_RESULTS'}:
            logger.warning('Places returned status %s: %s', status, payload.get('error_message'))
            raise PlacesError(f'Places provider returned {status}')
        return payload

    def suggest(self, text: str, country: str = 'us') -> list[PlaceSuggestion]:
        query = text.strip()
        if not query:
            return []

        payload = self._get(
            '/autocomplete/json',
            {
                'input': query,
                'sessiontoken': self.session_token,
                'types': 'address',
                'components': f'country:{country}',
            },
        )

        suggestions = []
        for prediction in payload.get('predictions', []):
            formatting = prediction.get('structured_formatting') or {}
            suggestions.append(
                PlaceSuggestion(
                    place_id=prediction['place_id'],
                    description=prediction.get('description', ''),
                    main_text=formatting.get('main_text'),
                    secondary_text=formatting.get('secondary_text'),
                )
            )
        return suggestions

    def resolve(self, place_id: str) -> PlaceDetails:
        payload = self._get(
            '/details/json',
            {
                'place_id': place_id,
                'sessiontoken': self.session_token,
                'fields': 'place_id,formatted_address,geometry',
            },
        )
        # A details lookup closes the billing session; later lookups need a new token.
        self.session_token = uuid.uuid4().hex

        result = payload.get('result') or {}
        location = (result.get('geometry') or {}).get('location') or {}
        return PlaceDetails(
            place_id=result.get('place_id', place_id),
            formatted_address=result.get('formatted_address', ''),
            lat=location.get('lat'),
            lng=location.get('lng'),
        )
