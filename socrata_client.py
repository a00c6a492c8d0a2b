"""
Texas Open Data (Socrata) client for mixed beverage gross receipts.

Three lookups back the search screens: free-text establishment search,
top accounts for a city/ZIP over the last 12 months, and the monthly
receipts history of one taxpayer location. Responses are cached in the
search_cache table for SOCRATA_CACHE_TTL_HOURS.
"""
import json
from datetime import datetime, timedelta, timezone

import requests

import config
import store
from account_state import record_key
from formatters import month_label_from_date, safe_upper


class SocrataError(Exception):
    """Raised when the open data API answers with a non-200 status."""

    def __init__(self, message, status_code=502):
        super().__init__(message)
        self.status_code = status_code


def _quote(value):
    """SoQL string literal body ('' escapes a quote)."""
    return str(value).replace("'", "''")


def socrata_query(params):
    headers = {}
    if config.SOCRATA_APP_TOKEN:
        headers['X-App-Token'] = config.SOCRATA_APP_TOKEN
    resp = requests.get(config.SOCRATA_URL, params=params, headers=headers, timeout=config.HTTP_TIMEOUT)
    if resp.status_code != 200:
        raise SocrataError(f'Texas data error ({resp.status_code})', status_code=502)
    data = resp.json()
    return data if isinstance(data, list) else []


def cached_socrata_query(feature, params):
    """socrata_query with the shared TTL cache. Cache failures never block a lookup."""
    today = datetime.now(timezone.utc).strftime('%Y-%m-%d')
    key = f"{feature}:{json.dumps(params, sort_keys=True)}:{today}"

    try:
        cached = store.get_cached(key)
    except Exception as e:
        print(f"[Cache] Read error: {e}")
        cached = None
    if cached is not None:
        print(f"[Socrata] Cache hit for {key[:60]}")
        return cached

    rows = socrata_query(params)
    try:
        store.set_cached(key, rows, config.SOCRATA_CACHE_TTL_HOURS)
    except Exception as e:
        print(f"[Cache] Write error: {e}")
    return rows


def build_where(term, city=None):
    parts = []
    if term:
        t = _quote(term)
        parts.append(f"(upper(location_name) like '%{t}%' OR upper(taxpayer_name) like '%{t}%' "
                     f"OR upper(location_address) like '%{t}%')")
    if city:
        parts.append(f"upper(location_city) = '{_quote(city)}'")
    return ' AND '.join(parts) if parts else '1=1'


def search_establishments(term, city=None):
    """Newest filing per taxpayer-location matching the term (and city)."""
    term = safe_upper(term)
    if not term:
        return []
    params = {
        '$where': build_where(term, safe_upper(city)),
        '$order': f"{config.DATE_FIELD} DESC",
        '$limit': config.SEARCH_LIMIT,
    }
    unique = []
    seen = set()
    for item in cached_socrata_query('search', params):
        key = record_key(item.get('taxpayer_number'), item.get('location_number'))
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def top_accounts(city_or_zip, now=None):
    """Highest-volume locations in a city (or 5-digit ZIP) over the last 12 months."""
    value = safe_upper(city_or_zip)
    if not value:
        return []
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    since = (now - timedelta(days=365)).strftime('%Y-%m-%dT00:00:00.000')
    if value.isdigit() and len(value) == 5:
        loc = f"location_zip = '{value}'"
    else:
        loc = f"upper(location_city) = '{_quote(value)}'"

    group = ('location_name, location_address, location_city, location_zip, '
             'taxpayer_name, taxpayer_number, location_number')
    params = {
        '$select': f"{group}, sum({config.TOTAL_FIELD}) as annual_sales, "
                   f"count({config.TOTAL_FIELD}) as months_count",
        '$where': f"{loc} AND {config.DATE_FIELD} > '{since}'",
        '$group': group,
        '$order': 'annual_sales DESC',
        '$limit': config.TOP_LIMIT,
    }
    normalized = []
    for row in cached_socrata_query('top', params):
        annual = float(row.get('annual_sales') or 0)
        months = int(float(row.get('months_count') or 0)) or 12
        item = dict(row)
        item['annual_sales'] = annual
        item['avg_monthly_volume'] = annual / months
        normalized.append(item)
    return normalized


def receipt_history(taxpayer_number, location_number):
    """Last HISTORY_MONTHS filings as MonthlyReceipt dicts, oldest first."""
    where = (f"taxpayer_number = '{_quote(taxpayer_number)}' "
             f"AND location_number = '{_quote(location_number)}'")
    params = {
        '$where': where,
        '$order': f"{config.DATE_FIELD} DESC",
        '$limit': config.HISTORY_MONTHS,
    }
    rows = cached_socrata_query('history', params)
    history = []
    for h in reversed(rows):
        history.append({
            'month': month_label_from_date(h.get(config.DATE_FIELD)),
            'liquor': float(h.get('liquor_receipts') or 0),
            'beer': float(h.get('beer_receipts') or 0),
            'wine': float(h.get('wine_receipts') or 0),
            'total': float(h.get(config.TOTAL_FIELD) or 0),
            'rawDate': h.get(config.DATE_FIELD),
        })
    return history
