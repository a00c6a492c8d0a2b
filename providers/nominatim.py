"""
OpenStreetMap Nominatim client, the free fallback when no Google key is set
or Google finds nothing. All calls go through the shared throttle.
"""
import requests

import config
from providers.base import BaseProvider, texas_query
from rate_limit import nominatim_throttle


class NominatimError(Exception):
    """Raised when Nominatim answers with a non-200 status."""

    def __init__(self, message, status_code=502):
        super().__init__(message)
        self.status_code = status_code


class NominatimProvider(BaseProvider):
    name = 'nominatim'

    def __init__(self, throttle=nominatim_throttle):
        self.throttle = throttle

    def _get(self, path, params):
        self.throttle.wait()
        resp = requests.get(
            f"{config.NOMINATIM_URL}/{path}",
            params=dict(params, format='json'),
            headers={'User-Agent': config.NOMINATIM_USER_AGENT},
            timeout=config.HTTP_TIMEOUT,
        )
        if resp.status_code == 429:
            self.throttle.report_429(resp.headers.get('Retry-After'))
        if resp.status_code != 200:
            raise NominatimError(f'Nominatim HTTP {resp.status_code}', status_code=resp.status_code)
        return resp.json()

    def geocode(self, address):
        data = self._get('search', {'q': address, 'limit': 1})
        if not isinstance(data, list) or not data:
            return None
        item = data[0]
        return {
            'lat': float(item['lat']),
            'lng': float(item['lon']),
            'formatted_address': item.get('display_name', ''),
            'source': 'nominatim',
        }

    def reverse(self, lat, lng):
        data = self._get('reverse', {'lat': lat, 'lon': lng})
        if not data or not data.get('display_name'):
            return None
        return {
            'address': data['display_name'],
            'lat': float(lat),
            'lng': float(lng),
            'source': 'nominatim',
        }

    def search_places(self, query, city=None):
        data = self._get('search', {'q': texas_query(query, city), 'addressdetails': 1, 'limit': 20})
        results = []
        for place in data if isinstance(data, list) else []:
            display = place.get('display_name') or ''
            results.append({
                'name': display.split(',')[0] or 'Unnamed',
                'address': display,
                'lat': float(place['lat']) if place.get('lat') else None,
                'lng': float(place['lon']) if place.get('lon') else None,
                'place_id': str(place.get('osm_id') or place.get('place_id') or ''),
                'types': [t for t in (place.get('class'), place.get('type')) if t],
            })
        return results
