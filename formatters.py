"""Display helpers shared by the records client, export and account saving."""
from datetime import datetime


def format_currency(val):
    """$12k / $1.3M style short currency."""
    try:
        num = float(val)
    except (TypeError, ValueError):
        return '$0'
    if not num:
        return '$0'
    if num >= 1000000:
        return f"${num / 1000000:.1f}M"
    return f"${round(num / 1000)}k"


def safe_upper(value):
    return str(value or '').upper().strip()


def month_label_from_date(value):
    """'2024-01-31T00:00:00.000' -> 'Jan 24'."""
    if not value:
        return ''
    try:
        dt = datetime.fromisoformat(str(value)[:19])
    except ValueError:
        return ''
    return dt.strftime('%b %y')


def full_address(info):
    addr = info.get('location_address') or info.get('address') or ''
    city = info.get('location_city') or info.get('city') or ''
    if city:
        return f"{addr}, {city}, TX"
    return addr or 'Unknown'


def pseudo_lat_lng(seed):
    """Deterministic point in the Houston-to-Austin band for a seed string."""
    h = sum(ord(ch) for ch in str(seed or '0'))
    lat = 29.7 + ((h % 100) / 100) * 3.5
    lng = -95.5 - ((h % 200) / 200) * 3.0
    return lat, lng
