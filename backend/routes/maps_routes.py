from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from backend.core import config
from backend.services.places import (
    PlaceDetails,
    PlacesAutocompleteSession,
    PlacesError,
    PlaceSuggestion,
)

router = APIRouter(tags=['maps'])


class MapsConfigResponse(BaseModel):
    api_key: str


def ensure_maps_configured() -> None:
    if not config.GOOGLE_MAPS_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Google Maps API key is not configured.',
        )


@router.get('/config', response_model=MapsConfigResponse)
def maps_config():
    ensure_maps_configured()
    return MapsConfigResponse(api_key=config.GOOGLE_MAPS_API_KEY)


@router.get('/autocomplete', response_model=list[PlaceSuggestion])
def autocomplete_address(
    input: str = Query(..., min_length=1, max_length=200),
    session_token: str | None = Query(default=None, max_length=64),
):
    ensure_maps_configured()
    try:
        with PlacesAutocompleteSession(config.GOOGLE_MAPS_API_KEY, session_token=session_token) as places:
            return places.suggest(input)
    except PlacesError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


@router.get('/place/{place_id}', response_model=PlaceDetails)
def place_details(place_id: str, session_token: str | None = Query(default=None, max_length=64)):
    ensure_maps_configured()
    try:
        with PlacesAutocompleteSession(config.GOOGLE_MAPS_API_KEY, session_token=session_token) as places:
            return places.resolve(place_id)
    except PlacesError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
