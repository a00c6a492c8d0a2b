"""
Google Maps Platform client: Geocoding, Places (New) text search and
Directions.

Endpoints used:
  - maps.googleapis.com/maps/api/geocode/json
  - places.googleapis.com/v1/places:searchText
  - maps.googleapis.com/maps/api/directions/json
"""
import requests

import config
from providers.base import BaseProvider, texas_query

PLACES_FIELD_MASK = 'places.displayName,places.formattedAddress,places.location,places.id,places.types'
DETAILS_FIELD_MASK = ('places.id,places.displayName,places.formattedAddress,'
                      'places.regularOpeningHours,places.currentOpeningHours,places.websiteUri')


class GoogleAPIError(Exception):
    """Raised when a Google endpoint answers with a non-OK status."""

    def __init__(self, message, status_code=502, upstream_status=None):
        super().__init__(message)
        self.status_code = status_code
        self.upstream_status = upstream_status


class GoogleProvider(BaseProvider):
    name = 'google'

    def __init__(self, api_key=None):
        self.api_key = config.GOOGLE_API_KEY if api_key is None else api_key

    def is_configured(self):
        return bool(self.api_key)

    def _require_key(self):
        if not self.api_key:
            raise GoogleAPIError('Google API key not configured', status_code=500)

    # --- Geocoding ---

    def _geocode_request(self, params):
        self._require_key()
        params = dict(params, key=self.api_key)
        resp = requests.get(config.GOOGLE_GEOCODE_URL, params=params, timeout=config.HTTP_TIMEOUT)
        if resp.status_code != 200:
            raise GoogleAPIError(f'Geocoding HTTP {resp.status_code}: {resp.text[:300]}')
        data = resp.json()
        status = data.get('status')
        if status == 'ZERO_RESULTS':
            return None
        if status != 'OK' or not data.get('results'):
            raise GoogleAPIError(data.get('error_message') or status or 'Geocoding failed',
                                 upstream_status=status)
        return data['results'][0]

    def geocode(self, address):
        result = self._geocode_request({'address': address})
        if not result:
            return None
        location = result['geometry']['location']
        return {
            'lat': location['lat'],
            'lng': location['lng'],
            'formatted_address': result.get('formatted_address', ''),
            'source': 'google',
        }

    def reverse(self, lat, lng):
        result = self._geocode_request({'latlng': f"{lat},{lng}"})
        if not result:
            return None
        return {
            'address': result.get('formatted_address', ''),
            'lat': float(lat),
            'lng': float(lng),
            'source': 'google',
        }

    # --- Places ---

    def _search_text(self, text_query, field_mask, max_results, bias=True):
        self._require_key()
        body = {'textQuery': text_query, 'maxResultCount': max_results}
        if bias:
            body['locationBias'] = {'rectangle': config.TEXAS_BOUNDS}
        resp = requests.post(
            config.GOOGLE_PLACES_SEARCH_URL,
            json=body,
            headers={
                'Content-Type': 'application/json',
                'X-Goog-Api-Key': self.api_key,
                'X-Goog-FieldMask': field_mask,
            },
            timeout=config.HTTP_TIMEOUT,
        )
        if resp.status_code != 200:
            print(f"[Google] Places API error: {resp.status_code} {resp.text[:300]}")
            raise GoogleAPIError(f'Places API error: {resp.status_code}', status_code=resp.status_code)
        return resp.json().get('places', [])

    def search_places(self, query, city=None):
        places = self._search_text(texas_query(query, city), PLACES_FIELD_MASK, 20)
        results = []
        for place in places:
            location = place.get('location') or {}
            results.append({
                'name': (place.get('displayName') or {}).get('text') or 'Unnamed',
                'address': place.get('formattedAddress', ''),
                'lat': location.get('latitude'),
                'lng': location.get('longitude'),
                'place_id': place.get('id', ''),
                'types': place.get('types', []),
            })
        return results

    def place_details(self, name, address):
        """
        Opening hours and website for the best match of name + address.
        Returns None when no place matches.
        """
        places = self._search_text(f"{name} {address}", DETAILS_FIELD_MASK, 1, bias=False)
        if not places:
            return None
        place = places[0]
        hours = place.get('regularOpeningHours') or place.get('currentOpeningHours')
        formatted = None
        if hours:
            formatted = {
                'weekdayDescriptions': hours.get('weekdayDescriptions', []),
                'openNow': hours.get('openNow'),
                'periods': hours.get('periods', []),
            }
        return {'hours': formatted, 'website': place.get('websiteUri')}

    # --- Directions ---

    def directions(self, origin, waypoints, destination=None):
        """
        Optimized driving directions from origin through every waypoint and
        back (round trip unless a destination is given). Returns the first
        route dict; non-OK statuses raise GoogleAPIError carrying the status.
        """
        self._require_key()
        stops = '|'.join(f"{w['lat']},{w['lng']}" for w in waypoints)
        origin_param = f"{origin['lat']},{origin['lng']}"
        dest = destination or origin
        params = {
            'origin': origin_param,
            'destination': f"{dest['lat']},{dest['lng']}",
            'waypoints': f"optimize:true|{stops}",
            'key': self.api_key,
        }
        resp = requests.get(config.GOOGLE_DIRECTIONS_URL, params=params, timeout=config.HTTP_TIMEOUT)
        if resp.status_code != 200:
            raise GoogleAPIError(f'Directions HTTP {resp.status_code}', status_code=502)
        data = resp.json()
        status = data.get('status')
        if status != 'OK' or not data.get('routes'):
            raise GoogleAPIError(status or 'UNKNOWN_ERROR', status_code=502, upstream_status=status)
        return data['routes'][0]
