"""
Route planning between saved accounts.

The Directions API picks the visiting order; this module validates the
stops, decodes the returned step polylines into [lat, lng] points and puts
the caller's stops into the optimized order.

Polyline format (Google encoded polyline, 1e5 precision): each point is two
zig-zag signed varints (lat delta, lng delta) in 5-bit chunks, chunk + 63
as ASCII, 0x20 set on every chunk but the last.
"""
import math

import config
from providers import GoogleAPIError, GoogleProvider

FALLBACK_ORIGIN_WARNING = ('Live location unavailable. The route starts from the first '
                           'selected stop.')


class RouteError(Exception):
    """Invalid route request (reported as 400)."""
    pass


def _decode_value(encoded, index):
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            raise ValueError('Malformed polyline: truncated value')
        b = ord(encoded[index]) - 63
        index += 1
        result |= (b & 0x1f) << shift
        shift += 5
        if b < 0x20:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode_polyline(encoded):
    """Decode an encoded polyline into a list of (lat, lng) tuples."""
    points = []
    index = 0
    lat = 0
    lng = 0
    while index < len(encoded):
        dlat, index = _decode_value(encoded, index)
        dlng, index = _decode_value(encoded, index)
        lat += dlat
        lng += dlng
        points.append((lat / 1e5, lng / 1e5))
    return points


def _encode_value(value):
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= 0x20:
        chunks.append(chr((0x20 | (value & 0x1f)) + 63))
        value >>= 5
    chunks.append(chr(value + 63))
    return ''.join(chunks)


def encode_polyline(points):
    """Encode (lat, lng) pairs at 1e5 precision."""
    out = []
    prev_lat = 0
    prev_lng = 0
    for lat, lng in points:
        ilat = int(round(lat * 1e5))
        ilng = int(round(lng * 1e5))
        out.append(_encode_value(ilat - prev_lat))
        out.append(_encode_value(ilng - prev_lng))
        prev_lat, prev_lng = ilat, ilng
    return ''.join(out)


def reorder_by_permutation(items, order):
    """result[i] = items[order[i]]; order must be a permutation of range(len(items))."""
    if sorted(order) != list(range(len(items))):
        raise ValueError(f'waypoint order {order} is not a permutation of {len(items)} stops')
    return [items[i] for i in order]


def _coerce_point(raw, label):
    if not isinstance(raw, dict):
        raise RouteError(f'{label} must be an object with lat and lng')
    try:
        lat = float(raw.get('lat'))
        lng = float(raw.get('lng'))
    except (TypeError, ValueError):
        raise RouteError(f'{label} needs numeric lat and lng')
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise RouteError(f'{label} needs numeric lat and lng')
    point = dict(raw)
    point['lat'] = lat
    point['lng'] = lng
    return point


def validate_waypoints(waypoints):
    if not isinstance(waypoints, list) or len(waypoints) < 2:
        raise RouteError('At least 2 waypoints required')
    if len(waypoints) > config.MAX_WAYPOINTS:
        raise RouteError(f'Too many waypoints (max {config.MAX_WAYPOINTS}). Reduce selection.')
    return [_coerce_point(w, f'Waypoint {i + 1}') for i, w in enumerate(waypoints)]


def plan_route(waypoints, origin=None, provider=None):
    """
    Optimized round trip through the waypoints.

    origin is the user's live location when the browser granted it; without
    one the first waypoint is used and the result carries a warning.
    Raises RouteError for bad input and GoogleAPIError (with the upstream
    status as message) when Directions fails.
    """
    stops = validate_waypoints(waypoints)

    origin_fallback = origin is None
    if origin_fallback:
        start = {'lat': stops[0]['lat'], 'lng': stops[0]['lng']}
    else:
        start = _coerce_point(origin, 'Origin')

    provider = provider or GoogleProvider()
    route = provider.directions(start, stops)

    legs = route.get('legs') or []
    points = []
    try:
        for leg in legs:
            for step in leg.get('steps') or []:
                encoded = (step.get('polyline') or {}).get('points')
                if encoded:
                    points.extend([lat, lng] for lat, lng in decode_polyline(encoded))
    except ValueError as e:
        raise GoogleAPIError(f'Directions returned an unusable polyline: {e}')

    order = route.get('waypoint_order')
    if not order:
        order = list(range(len(stops)))

    try:
        ordered = reorder_by_permutation(stops, order)
    except ValueError as e:
        raise GoogleAPIError(f'Directions returned an unusable waypoint order: {e}')

    result = {
        'distance': sum((leg.get('distance') or {}).get('value', 0) for leg in legs),
        'duration': sum((leg.get('duration') or {}).get('value', 0) for leg in legs),
        'polyline': points,
        'waypoint_order': order,
        'ordered_waypoints': ordered,
        'legs': [{
            'distance': (leg.get('distance') or {}).get('text'),
            'duration': (leg.get('duration') or {}).get('text'),
            'start_address': leg.get('start_address'),
            'end_address': leg.get('end_address'),
        } for leg in legs],
        'origin': start,
        'origin_fallback': origin_fallback,
    }
    if origin_fallback:
        result['warning'] = FALLBACK_ORIGIN_WARNING
    print(f"[Route] {len(stops)} stops, {result['distance']} m, {result['duration']} s, "
          f"{len(points)} points")
    return result
