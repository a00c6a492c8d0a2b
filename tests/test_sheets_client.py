"""Sheets reader: header mapping and error statuses."""
from unittest.mock import MagicMock, patch

import pytest

import config
import sheets_client
from sheets_client import SheetsError, rows_to_records


def test_rows_to_records_pads_short_rows():
    rows = [["Month", "Calls", "Visits"], ["Jan", "12"], ["Feb", "9", "4"]]
    assert rows_to_records(rows) == [
        {"Month": "Jan", "Calls": "12", "Visits": ""},
        {"Month": "Feb", "Calls": "9", "Visits": "4"},
    ]


def test_rows_to_records_empty():
    assert rows_to_records([]) == []
    assert rows_to_records([["Only", "Header"]]) == []


def test_requires_api_key():
    with pytest.raises(SheetsError) as exc:
        sheets_client.fetch_sheet("abc")
    assert exc.value.status_code == 500


@patch("sheets_client.requests.get")
def test_fetch_uses_user_sheet_and_range(mock_get, monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_SHEETS_API_KEY", "key")
    resp = MagicMock(status_code=200)
    resp.json.return_value = {"values": [["Month", "Calls"], ["Jan", "3"]]}
    mock_get.return_value = resp

    result = sheets_client.fetch_sheet("user-sheet")

    assert result == {"rawRows": [["Month", "Calls"], ["Jan", "3"]],
                      "data": [{"Month": "Jan", "Calls": "3"}], "count": 1}
    url = mock_get.call_args[0][0]
    assert "/user-sheet/values/App%20Export%21A1%3AZ1000" in url
    assert mock_get.call_args[1]["params"] == {"key": "key"}


@patch("sheets_client.requests.get")
def test_forbidden_sheet(mock_get, monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_SHEETS_API_KEY", "key")
    mock_get.return_value = MagicMock(status_code=403)
    with pytest.raises(SheetsError) as exc:
        sheets_client.fetch_sheet("user-sheet")
    assert exc.value.status_code == 403
