"""Polyline codec, waypoint reordering and plan_route against a fake Directions provider."""
from unittest.mock import MagicMock

import pytest

from providers import GoogleAPIError
from route_planner import (
    FALLBACK_ORIGIN_WARNING,
    RouteError,
    decode_polyline,
    encode_polyline,
    plan_route,
    reorder_by_permutation,
    validate_waypoints,
)

KNOWN_POINTS = [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]
KNOWN_ENCODED = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


class TestPolyline:
    def test_decodes_reference_string(self):
        points = decode_polyline(KNOWN_ENCODED)
        assert [(round(a, 5), round(b, 5)) for a, b in points] == KNOWN_POINTS

    def test_encodes_reference_points(self):
        assert encode_polyline(KNOWN_POINTS) == KNOWN_ENCODED

    def test_texas_points_survive_encoding(self):
        points = [(30.26715, -97.74306), (29.76043, -95.3698), (32.77666, -96.79699)]
        decoded = decode_polyline(encode_polyline(points))
        for (lat, lng), (dlat, dlng) in zip(points, decoded):
            assert abs(lat - dlat) <= 1e-5
            assert abs(lng - dlng) <= 1e-5

    def test_empty_string_has_no_points(self):
        assert decode_polyline("") == []

    def test_truncated_string_raises(self):
        with pytest.raises(ValueError):
            decode_polyline("_p~iF~ps|U_")


class TestReorder:
    def test_order_is_applied(self):
        assert reorder_by_permutation(["A", "B", "C"], [2, 0, 1]) == ["C", "A", "B"]

    def test_identity(self):
        assert reorder_by_permutation(["A", "B"], [0, 1]) == ["A", "B"]

    @pytest.mark.parametrize("order", [[0, 0, 1], [0, 1], [1, 2, 3]])
    def test_rejects_non_permutations(self, order):
        with pytest.raises(ValueError):
            reorder_by_permutation(["A", "B", "C"], order)


class TestValidateWaypoints:
    def test_needs_two_stops(self):
        with pytest.raises(RouteError, match="At least 2 waypoints required"):
            validate_waypoints([{"lat": 30, "lng": -97}])

    def test_rejects_missing_list(self):
        with pytest.raises(RouteError):
            validate_waypoints(None)

    def test_caps_stop_count(self):
        stops = [{"lat": 30, "lng": -97}] * 24
        with pytest.raises(RouteError, match="Too many waypoints"):
            validate_waypoints(stops)

    def test_rejects_non_numeric_coordinates(self):
        with pytest.raises(RouteError):
            validate_waypoints([{"lat": "x", "lng": -97}, {"lat": 30, "lng": -97}])

    def test_coerces_strings_and_keeps_extra_fields(self):
        stops = validate_waypoints([
            {"lat": "30.1", "lng": "-97.2", "name": "A", "id": 7},
            {"lat": 31, "lng": -98, "name": "B"},
        ])
        assert stops[0] == {"lat": 30.1, "lng": -97.2, "name": "A", "id": 7}


def _fake_route(order):
    return {
        "waypoint_order": order,
        "legs": [
            {
                "distance": {"value": 1000, "text": "1 km"},
                "duration": {"value": 120, "text": "2 mins"},
                "start_address": "Start",
                "end_address": "Mid",
                "steps": [{"polyline": {"points": KNOWN_ENCODED}}],
            },
            {
                "distance": {"value": 500, "text": "0.5 km"},
                "duration": {"value": 60, "text": "1 min"},
                "start_address": "Mid",
                "end_address": "Start",
                "steps": [{"polyline": {"points": ""}}, {}],
            },
        ],
    }


STOPS = [
    {"lat": 30.0, "lng": -97.0, "name": "A"},
    {"lat": 31.0, "lng": -98.0, "name": "B"},
    {"lat": 32.0, "lng": -99.0, "name": "C"},
]


class TestPlanRoute:
    def test_totals_polyline_and_order(self):
        provider = MagicMock()
        provider.directions.return_value = _fake_route([2, 0, 1])
        origin = {"lat": 29.5, "lng": -96.5}

        result = plan_route(STOPS, origin=origin, provider=provider)

        provider.directions.assert_called_once()
        called_origin, called_stops = provider.directions.call_args[0]
        assert called_origin == origin
        assert [s["name"] for s in called_stops] == ["A", "B", "C"]
        assert result["distance"] == 1500
        assert result["duration"] == 180
        assert len(result["polyline"]) == 3
        assert result["polyline"][0] == [38.5, -120.2]
        assert result["waypoint_order"] == [2, 0, 1]
        assert [s["name"] for s in result["ordered_waypoints"]] == ["C", "A", "B"]
        assert result["legs"][0]["distance"] == "1 km"
        assert result["origin_fallback"] is False
        assert "warning" not in result

    def test_without_origin_starts_at_first_stop(self):
        provider = MagicMock()
        provider.directions.return_value = _fake_route([0, 1, 2])

        result = plan_route(STOPS, provider=provider)

        called_origin = provider.directions.call_args[0][0]
        assert called_origin == {"lat": 30.0, "lng": -97.0}
        assert result["origin_fallback"] is True
        assert result["warning"] == FALLBACK_ORIGIN_WARNING

    def test_missing_order_keeps_input_order(self):
        provider = MagicMock()
        route = _fake_route([])
        provider.directions.return_value = route
        result = plan_route(STOPS, provider=provider)
        assert [s["name"] for s in result["ordered_waypoints"]] == ["A", "B", "C"]

    def test_bad_order_from_upstream_is_an_upstream_error(self):
        provider = MagicMock()
        provider.directions.return_value = _fake_route([0, 0, 1])
        with pytest.raises(GoogleAPIError):
            plan_route(STOPS, provider=provider)

    def test_truncated_polyline_is_an_upstream_error(self):
        provider = MagicMock()
        route = _fake_route([0, 1, 2])
        route["legs"][0]["steps"] = [{"polyline": {"points": "_p~iF~ps|U_"}}]
        provider.directions.return_value = route
        with pytest.raises(GoogleAPIError, match="unusable polyline"):
            plan_route(STOPS, provider=provider)

    def test_validation_happens_before_the_call(self):
        provider = MagicMock()
        with pytest.raises(RouteError):
            plan_route(STOPS[:1], provider=provider)
        provider.directions.assert_not_called()

    def test_upstream_status_propagates(self):
        provider = MagicMock()
        provider.directions.side_effect = GoogleAPIError("ZERO_RESULTS", upstream_status="ZERO_RESULTS")
        with pytest.raises(GoogleAPIError, match="ZERO_RESULTS"):
            plan_route(STOPS, provider=provider)
