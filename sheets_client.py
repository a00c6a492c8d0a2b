"""
Google Sheets v4 values reader for the personal metrics tab.
"""
from urllib.parse import quote

import requests

import config


class SheetsError(Exception):
    def __init__(self, message, status_code=502):
        super().__init__(message)
        self.status_code = status_code


def rows_to_records(rows):
    """First row is the header; missing cells become ''."""
    if not rows:
        return []
    headers = rows[0]
    records = []
    for row in rows[1:]:
        records.append({h: (row[i] if i < len(row) and row[i] is not None else '')
                        for i, h in enumerate(headers)})
    return records


def fetch_sheet(spreadsheet_id=None, range_name=None):
    api_key = config.GOOGLE_SHEETS_API_KEY
    if not api_key:
        raise SheetsError('Google Sheets API key not configured', 500)
    spreadsheet_id = spreadsheet_id or config.GOOGLE_SHEETS_ID
    if not spreadsheet_id:
        raise SheetsError('No spreadsheet id configured', 400)
    range_name = range_name or config.SHEETS_RANGE

    url = f"{config.SHEETS_URL}/{spreadsheet_id}/values/{quote(range_name)}"
    resp = requests.get(url, params={'key': api_key}, timeout=config.HTTP_TIMEOUT)
    if resp.status_code == 403:
        raise SheetsError('Access to the spreadsheet is forbidden (403). Check sheet permissions and API key.', 403)
    if resp.status_code != 200:
        print(f"[Sheets] API error: {resp.status_code} {resp.text[:300]}")
        raise SheetsError(f'Failed to fetch sheet data ({resp.status_code})')

    rows = resp.json().get('values', [])
    data = rows_to_records(rows)
    return {'rawRows': rows, 'data': data, 'count': len(data)}
