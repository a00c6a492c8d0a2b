"""Provider chain, Google/Nominatim response shaping and the Nominatim throttle."""
from unittest.mock import MagicMock, patch

import pytest

import config
import geocoding
from formatters import format_currency, full_address, month_label_from_date, pseudo_lat_lng
from providers import GoogleAPIError, GoogleProvider, NominatimError, NominatimProvider
from rate_limit import NominatimThrottle, retry_after_seconds


def _resp(payload, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = ""
    resp.headers = {}
    return resp


@pytest.fixture
def no_wait_throttle():
    return MagicMock()


class TestGoogleProvider:
    @patch("providers.google.requests.get")
    def test_geocode(self, mock_get):
        mock_get.return_value = _resp({"status": "OK", "results": [{
            "geometry": {"location": {"lat": 30.2, "lng": -97.7}},
            "formatted_address": "Austin, TX, USA",
        }]})
        result = GoogleProvider(api_key="k").geocode("Austin")
        assert result == {"lat": 30.2, "lng": -97.7, "formatted_address": "Austin, TX, USA", "source": "google"}

    @patch("providers.google.requests.get")
    def test_zero_results_is_none(self, mock_get):
        mock_get.return_value = _resp({"status": "ZERO_RESULTS", "results": []})
        assert GoogleProvider(api_key="k").geocode("nowhere") is None

    @patch("providers.google.requests.get")
    def test_denied_raises(self, mock_get):
        mock_get.return_value = _resp({"status": "REQUEST_DENIED", "error_message": "bad key"})
        with pytest.raises(GoogleAPIError, match="bad key"):
            GoogleProvider(api_key="k").geocode("Austin")

    @patch("providers.google.requests.get")
    def test_directions_request(self, mock_get):
        mock_get.return_value = _resp({"status": "OK", "routes": [{"legs": []}]})
        GoogleProvider(api_key="k").directions({"lat": 1, "lng": 2}, [{"lat": 3, "lng": 4}, {"lat": 5, "lng": 6}])
        params = mock_get.call_args[1]["params"]
        assert params["origin"] == "1,2"
        assert params["destination"] == "1,2"
        assert params["waypoints"] == "optimize:true|3,4|5,6"

    @patch("providers.google.requests.get")
    def test_directions_status_is_the_message(self, mock_get):
        mock_get.return_value = _resp({"status": "ZERO_RESULTS", "routes": []})
        with pytest.raises(GoogleAPIError) as exc:
            GoogleProvider(api_key="k").directions({"lat": 1, "lng": 2}, [{"lat": 3, "lng": 4}])
        assert str(exc.value) == "ZERO_RESULTS"
        assert exc.value.upstream_status == "ZERO_RESULTS"
        assert exc.value.status_code == 502

    @patch("providers.google.requests.post")
    def test_search_places_biased_to_texas(self, mock_post):
        mock_post.return_value = _resp({"places": [{
            "displayName": {"text": "Saloon"}, "formattedAddress": "1 Main", "id": "p1",
            "location": {"latitude": 30, "longitude": -97}, "types": ["bar"],
        }]})
        results = GoogleProvider(api_key="k").search_places("saloon", "Waco")
        assert results[0]["name"] == "Saloon"
        body = mock_post.call_args[1]["json"]
        assert body["textQuery"] == "saloon Waco TX"
        assert body["locationBias"]["rectangle"] == config.TEXAS_BOUNDS

    @patch("providers.google.requests.post")
    def test_place_details(self, mock_post):
        mock_post.return_value = _resp({"places": [{
            "regularOpeningHours": {"weekdayDescriptions": ["Monday: Closed"], "openNow": False},
            "websiteUri": "https://bar.test",
        }]})
        details = GoogleProvider(api_key="k").place_details("Bar", "1 Main")
        assert details["website"] == "https://bar.test"
        assert details["hours"]["weekdayDescriptions"] == ["Monday: Closed"]
        assert details["hours"]["periods"] == []

    def test_missing_key(self):
        with pytest.raises(GoogleAPIError):
            GoogleProvider(api_key="").geocode("x")


class TestNominatimProvider:
    @patch("providers.nominatim.requests.get")
    def test_geocode_waits_and_sends_user_agent(self, mock_get, no_wait_throttle):
        mock_get.return_value = _resp([{"lat": "30.5", "lon": "-97.5", "display_name": "Round Rock"}])
        result = NominatimProvider(throttle=no_wait_throttle).geocode("Round Rock")
        assert result == {"lat": 30.5, "lng": -97.5, "formatted_address": "Round Rock", "source": "nominatim"}
        no_wait_throttle.wait.assert_called_once()
        assert mock_get.call_args[1]["headers"]["User-Agent"] == config.NOMINATIM_USER_AGENT

    @patch("providers.nominatim.requests.get")
    def test_429_sets_backoff(self, mock_get, no_wait_throttle):
        resp = _resp([], status=429)
        resp.headers = {"Retry-After": "10"}
        mock_get.return_value = resp
        with pytest.raises(NominatimError):
            NominatimProvider(throttle=no_wait_throttle).geocode("x")
        no_wait_throttle.report_429.assert_called_once_with("10")


class TestChain:
    def test_google_failure_falls_through_to_nominatim(self, monkeypatch):
        google = MagicMock(spec=GoogleProvider)
        google.safe_call.return_value = None
        nominatim = MagicMock(spec=NominatimProvider)
        nominatim.safe_call.return_value = {"lat": 1, "lng": 2}
        monkeypatch.setattr(geocoding, "get_providers", lambda: [google, nominatim])

        assert geocoding.geocode_address("x") == {"lat": 1, "lng": 2}
        google.safe_call.assert_called_once_with("geocode", "x")

    def test_safe_call_swallows_provider_errors(self):
        provider = GoogleProvider(api_key="")
        assert provider.safe_call("geocode", "x") is None

    def test_only_configured_providers(self):
        names = [p.name for p in geocoding.get_providers()]
        assert names == ["nominatim"]

    def test_coordinates_fall_back_to_pseudo(self, monkeypatch):
        monkeypatch.setattr(geocoding, "geocode_address", lambda address: None)
        assert geocoding.coordinates_for("nowhere", "1-2") == pseudo_lat_lng("1-2")

    def test_coordinates_skip_lookup_without_address(self, monkeypatch):
        called = []
        monkeypatch.setattr(geocoding, "geocode_address", lambda address: called.append(address))
        geocoding.coordinates_for("", "seed")
        assert called == []


class TestFormatters:
    def test_pseudo_coordinates_are_stable_and_in_texas(self):
        lat, lng = pseudo_lat_lng("32012345678-1")
        assert (lat, lng) == pseudo_lat_lng("32012345678-1")
        assert 29.7 <= lat <= 33.2
        assert -98.5 <= lng <= -95.5

    def test_month_label(self):
        assert month_label_from_date("2024-01-31T00:00:00.000") == "Jan 24"
        assert month_label_from_date(None) == ""
        assert month_label_from_date("garbage") == ""

    def test_full_address(self):
        assert full_address({"location_address": "1 Main", "location_city": "WACO"}) == "1 Main, WACO, TX"
        assert full_address({}) == "Unknown"

    def test_currency(self):
        assert format_currency(1500000) == "$1.5M"
        assert format_currency(45000) == "$45k"
        assert format_currency(None) == "$0"


class TestNominatimThrottle:
    @patch("rate_limit.time.sleep")
    def test_spaces_calls(self, mock_sleep):
        throttle = NominatimThrottle(min_interval=1.0)
        throttle.wait()
        throttle.wait()
        assert mock_sleep.call_count == 1
        assert 0 < mock_sleep.call_args[0][0] <= 1.0

    @patch("rate_limit.time.sleep")
    def test_holds_off_for_retry_after(self, mock_sleep):
        throttle = NominatimThrottle(min_interval=0)
        throttle.report_429("5")
        throttle.wait()
        assert 4 < mock_sleep.call_args[0][0] <= 5

    def test_retry_after_forms(self):
        assert retry_after_seconds("12") == 12.0
        assert retry_after_seconds(None, default=30) == 30
        assert retry_after_seconds("soon", default=30) == 30
        assert retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT", now=1445412460) == 20
        assert retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT", now=1445412500) == 0
