"""
Geocoding and place search across providers.

Google is tried first when a key is configured; Nominatim answers when
Google is missing or comes back empty.
"""
from formatters import pseudo_lat_lng
from providers import GoogleProvider, NominatimProvider


def get_providers():
    return [p for p in (GoogleProvider(), NominatimProvider()) if p.is_configured()]


def geocode_address(address):
    for provider in get_providers():
        result = provider.safe_call('geocode', address)
        if result:
            return result
    return None


def reverse_geocode(lat, lng):
    for provider in get_providers():
        result = provider.safe_call('reverse', lat, lng)
        if result:
            return result
    return None


def search_places(query, city=None):
    """Google when configured (errors propagate), otherwise Nominatim."""
    google = GoogleProvider()
    if google.is_configured():
        return google.search_places(query, city)
    return NominatimProvider().search_places(query, city)


def coordinates_for(address, seed):
    """
    (lat, lng) for an address. When no provider can place it, derive stable
    pseudo-coordinates inside Texas from the seed so the pin still renders.
    """
    result = geocode_address(address) if address else None
    if result:
        return result['lat'], result['lng']
    print(f"[Geocode] No match for '{address}', using pseudo coordinates")
    return pseudo_lat_lng(seed)
