"""Location providers: Google Maps Platform and OpenStreetMap Nominatim."""
from providers.base import BaseProvider
from providers.google import GoogleAPIError, GoogleProvider
from providers.nominatim import NominatimError, NominatimProvider

__all__ = ['BaseProvider', 'GoogleAPIError', 'GoogleProvider', 'NominatimError', 'NominatimProvider']
