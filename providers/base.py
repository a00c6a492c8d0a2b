"""
Base class for geocoding / place-search providers.

Each provider answers the same three questions with the same shapes:

    geocode(address)          -> {'lat', 'lng', 'formatted_address', 'source'} | None
    reverse(lat, lng)         -> {'address', 'lat', 'lng', 'source'} | None
    search_places(query, city)-> [{'name', 'address', 'lat', 'lng', 'place_id', 'types'}]
"""
import traceback


class BaseProvider:
    """Abstract base for location providers."""

    name = 'base'

    def is_configured(self):
        return True

    def geocode(self, address):
        raise NotImplementedError

    def reverse(self, lat, lng):
        raise NotImplementedError

    def search_places(self, query, city=None):
        raise NotImplementedError

    def safe_call(self, method, *args):
        """Run a lookup, turning any failure into None so the next provider can try."""
        try:
            return getattr(self, method)(*args)
        except Exception as e:
            print(f"[{self.name}] {method} failed: {e}")
            traceback.print_exc()
            return None


def texas_query(query, city=None):
    """Append the city (or the state) so free-text searches stay in Texas."""
    q = (query or '').strip()
    if city and city.strip():
        return f"{q} {city.strip()} TX"
    return f"{q} Texas"
