"""
Pocket Prospector - Backend Server
Flask API for Texas mixed beverage account prospecting: public receipts
search, saved accounts with activity notes, forecasts, routes and intel.
"""

from flask import Flask, request, jsonify, send_file, session
from flask_cors import CORS
import os
from datetime import datetime
import csv
import io
import math
import traceback

import config
import store
import auth
import intel
import sheets_client
import socrata_client
from account_state import AccountState, record_key
from auth import AuthError, current_user_id, login_required
from forecast import GPV_TIERS, VENUE_TYPES, compute_forecast, tier_update_for
from formatters import format_currency, full_address
from geocoding import coordinates_for, geocode_address, reverse_geocode, search_places
from intel import IntelError
from providers import GoogleAPIError, GoogleProvider, NominatimError
from route_planner import RouteError, plan_route
from sheets_client import SheetsError
from socrata_client import SocrataError
from store import MergeConflictError

app = Flask(__name__)
app.secret_key = config.SECRET_KEY
CORS(app, supports_credentials=True)

UPSTREAM_ERRORS = (GoogleAPIError, NominatimError, SocrataError, SheetsError, IntelError)


def init_db():
    store.init_db()
    print(f"[Store] Database ready ({'postgres' if store.DATABASE_URL else store.DB_PATH})")


init_db()


def _error(e, action):
    """Map an exception raised while handling `action` to a JSON error response."""
    if isinstance(e, (RouteError, ValueError)):
        return jsonify({'error': str(e)}), 400
    if isinstance(e, AuthError):
        return jsonify({'error': str(e)}), e.status_code
    if isinstance(e, MergeConflictError):
        return jsonify({'error': str(e)}), 409
    if isinstance(e, UPSTREAM_ERRORS):
        print(f"[API] {action}: upstream error {e}")
        status = e.status_code if 400 <= e.status_code < 600 else 502
        return jsonify({'error': str(e)}), status
    print(f"[API] {action} error: {str(e)}")
    traceback.print_exc()
    return jsonify({'error': f'Failed to {action}'}), 500


def _body():
    return request.get_json(silent=True) or {}


def _int_param(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f'Valid {name} is required')


def _number(value, name):
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ValueError(f'{name} must be a number')
    if not math.isfinite(num):
        raise ValueError(f'{name} must be a number')
    return num


def _not_found(what='Account'):
    return jsonify({'error': f'{what} not found'}), 404


# --- Health ---

@app.route('/health')
def health():
    """Simple health check for the platform"""
    return jsonify({'status': 'ok'}), 200


def _key_status(value):
    if not value:
        return 'not set'
    return f'configured (ends in ...{value[-4:]})'


@app.route('/api/health')
def api_health():
    """API health check with integration status"""
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now().isoformat(),
        'database': 'postgres' if store.DATABASE_URL else 'sqlite',
        'google_api_key_status': _key_status(config.GOOGLE_API_KEY),
        'sheets_api_key_status': _key_status(config.GOOGLE_SHEETS_API_KEY),
        'gemini_api_key_status': _key_status(config.GEMINI_API_KEY),
        'anthropic_api_key_status': _key_status(config.ANTHROPIC_API_KEY),
    }), 200


@app.route('/api/meta')
def api_meta():
    """Venue profiles and GPV tiers for the account screens"""
    return jsonify({'venueTypes': VENUE_TYPES, 'gpvTiers': GPV_TIERS})


# --- Auth ---

@app.route('/api/auth/signup', methods=['POST'])
def api_signup():
    try:
        data = _body()
        user = auth.signup(data.get('username'), data.get('password'))
        auth.log_in(user)
        return jsonify({'success': True, 'user': user}), 201
    except Exception as e:
        return _error(e, 'create account')


@app.route('/api/auth/login', methods=['POST'])
def api_login():
    try:
        data = _body()
        user = auth.authenticate(data.get('username'), data.get('password'))
        auth.log_in(user)
        print(f"[Auth] {user['username']} logged in")
        return jsonify({'success': True, 'user': user})
    except Exception as e:
        return _error(e, 'log in')


@app.route('/api/auth/logout', methods=['POST'])
def api_logout():
    auth.log_out()
    return jsonify({'success': True})


@app.route('/api/auth/me')
@login_required
def api_me():
    user = store.get_user(current_user_id())
    if not user:
        session.clear()
        return jsonify({'error': 'Unauthorized'}), 401
    return jsonify({'id': user['id'], 'username': user['username']})


@app.route('/api/user/sheet-id', methods=['GET'])
@login_required
def api_get_sheet_id():
    try:
        user = store.get_user(current_user_id())
        if not user:
            return _not_found('User')
        return jsonify({'googleSheetId': user.get('google_sheet_id') or ''})
    except Exception as e:
        return _error(e, 'load sheet id')


@app.route('/api/user/sheet-id', methods=['POST'])
@login_required
def api_set_sheet_id():
    try:
        sheet_id = (_body().get('googleSheetId') or '').strip()
        if not sheet_id:
            raise ValueError('googleSheetId is required')
        if not store.set_sheet_id(current_user_id(), sheet_id):
            return _not_found('User')
        return jsonify({'success': True, 'googleSheetId': sheet_id})
    except Exception as e:
        return _error(e, 'save sheet id')


@app.route('/api/admin/assign-data', methods=['POST'])
def api_assign_data():
    """Give accounts and routes saved before logins existed to one user"""
    try:
        if not config.ADMIN_KEY or request.headers.get('X-Admin-Key') != config.ADMIN_KEY:
            return jsonify({'error': 'Forbidden'}), 403
        username = (_body().get('username') or '').strip().lower()
        if not username:
            raise ValueError('username is required')
        user = store.get_user_by_username(username)
        if not user:
            return _not_found('User')
        accounts, routes = store.assign_orphans(user['id'])
        print(f"[Auth] Assigned {accounts} accounts and {routes} routes to {username}")
        return jsonify({'success': True, 'accounts': accounts, 'routes': routes})
    except Exception as e:
        return _error(e, 'assign data')


# --- Public records ---

@app.route('/api/search')
@login_required
def api_search():
    """Search the Texas mixed beverage receipts by name or address"""
    try:
        q = request.args.get('q', '')
        city = request.args.get('city', '')
        if not q.strip():
            raise ValueError('Search term is required')
        results = socrata_client.search_establishments(q, city)
        print(f"[Socrata] search '{q}' ({city or 'all cities'}): {len(results)} locations")
        return jsonify({'results': results, 'count': len(results)})
    except Exception as e:
        return _error(e, 'search records')


@app.route('/api/top')
@login_required
def api_top():
    """Top accounts by 12-month sales for a city or ZIP"""
    try:
        city = request.args.get('city', '')
        if not city.strip():
            raise ValueError('City or ZIP is required')
        results = socrata_client.top_accounts(city)
        return jsonify({'results': results, 'count': len(results)})
    except Exception as e:
        return _error(e, 'load top accounts')


@app.route('/api/history')
@login_required
def api_history():
    try:
        taxpayer = request.args.get('taxpayer', '').strip()
        location = request.args.get('location', '').strip()
        if not taxpayer or not location:
            raise ValueError('taxpayer and location are required')
        history = socrata_client.receipt_history(taxpayer, location)
        return jsonify({'history': history, 'forecast': compute_forecast(history)})
    except Exception as e:
        return _error(e, 'load history')


# --- Accounts ---

@app.route('/api/accounts', methods=['GET'])
@login_required
def api_list_accounts():
    try:
        return jsonify(store.list_accounts(current_user_id()))
    except Exception as e:
        return _error(e, 'load accounts')


@app.route('/api/accounts', methods=['POST'])
@login_required
def api_create_account():
    """Save an account by hand. With manual=true the notes blob is built here."""
    try:
        data = _body()
        name = (data.get('name') or '').strip()
        address = (data.get('address') or '').strip()
        if not name:
            raise ValueError('name is required')

        if data.get('lat') is None and data.get('lng') is None:
            lat, lng = coordinates_for(address, name)
        else:
            lat = _number(data.get('lat'), 'lat')
            lng = _number(data.get('lng'), 'lng')

        if data.get('manual'):
            extra = data.get('state') if isinstance(data.get('state'), dict) else {}
            notes = AccountState.manual_entry(**extra).to_json()
        else:
            notes = str(data.get('notes') or '')

        row = store.create_account(current_user_id(), name, address, lat, lng, notes)
        return jsonify(row), 201
    except Exception as e:
        return _error(e, 'create account')


@app.route('/api/accounts/from-record', methods=['POST'])
@login_required
def api_save_record():
    """Save a receipts search result: history, coordinates and auto tier."""
    try:
        data = _body()
        taxpayer = str(data.get('taxpayer_number') or '').strip()
        location = str(data.get('location_number') or '').strip()
        if not taxpayer or not location:
            raise ValueError('taxpayer_number and location_number are required')

        user_id = current_user_id()
        key = record_key(taxpayer, location)
        if store.find_account_by_key(user_id, key):
            return jsonify({'error': 'Account already saved'}), 409

        history = socrata_client.receipt_history(taxpayer, location)
        address = full_address(data)
        lat, lng = coordinates_for(address if data.get('location_address') else '', key)

        fields = {}
        if data.get('venueType'):
            if data['venueType'] not in VENUE_TYPES:
                raise ValueError(f"Unknown venue type: {data['venueType']}")
            fields['venueType'] = data['venueType']
        state = AccountState.for_record(taxpayer, location, history, **fields)
        if data.get('gpvTier'):
            state.set_tier(data['gpvTier'])
        else:
            state.set_tier(compute_forecast(history, state.venue_type)['tier'])

        name = data.get('location_name') or data.get('taxpayer_name') or key
        row = store.create_account(user_id, name, address, lat, lng, state.to_json())
        return jsonify(row), 201
    except Exception as e:
        return _error(e, 'save account')


@app.route('/api/accounts', methods=['PATCH'])
@login_required
def api_update_account():
    try:
        account_id = _int_param(request.args.get('id'), '?id=')
        data = _body()
        lat = _number(data['lat'], 'lat') if data.get('lat') is not None else None
        lng = _number(data['lng'], 'lng') if data.get('lng') is not None else None
        notes = str(data['notes']) if data.get('notes') is not None else None
        row = store.update_account(account_id, current_user_id(), lat=lat, lng=lng, notes=notes)
        if not row:
            return _not_found()
        return jsonify(row)
    except Exception as e:
        return _error(e, 'update account')


@app.route('/api/accounts', methods=['DELETE'])
@login_required
def api_delete_account():
    try:
        user_id = current_user_id()
        if request.args.get('all') in ('1', 'true'):
            count = store.delete_all_accounts(user_id)
            print(f"[Store] Cleared {count} accounts for user {user_id}")
            return jsonify({'success': True, 'cleared': True, 'count': count})

        account_id = _int_param(request.args.get('id'), '?id= (or ?all=1 to clear)')
        if not store.delete_account(account_id, user_id):
            return _not_found()
        return jsonify({'success': True})
    except Exception as e:
        return _error(e, 'delete account')


@app.route('/api/accounts/export')
@login_required
def api_export_accounts():
    """Download saved accounts as CSV"""
    try:
        rows = store.list_accounts(current_user_id())
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow([
            'Name', 'Address', 'Latitude', 'Longitude', 'Record Key', 'GPV Tier',
            'Venue Type', 'Active Opp', 'Active Account', 'Manual', 'Notes',
            'Forecast Total', 'Forecast', 'Saved'
        ])
        for row in rows:
            state = AccountState.parse(row['notes'])
            forecast = compute_forecast(state.history, state.venue_type)
            writer.writerow([
                row['name'],
                row['address'] or '',
                row['lat'],
                row['lng'],
                state.key or '',
                state.gpv_tier or '',
                forecast['venueType'],
                'Yes' if state.active_opp else '',
                'Yes' if state.active_account else '',
                'Yes' if state.manual else '',
                len(state.notes),
                round(forecast['total'], 2),
                format_currency(forecast['total']),
                row['created_at'] or '',
            ])

        return send_file(
            io.BytesIO(buf.getvalue().encode('utf-8')),
            mimetype='text/csv',
            as_attachment=True,
            download_name=f'saved-accounts-{datetime.now().strftime("%Y-%m-%d")}.csv'
        )
    except Exception as e:
        return _error(e, 'export accounts')


# --- Account state (notes blob) ---

def _mutate(account_id, fn):
    """Run fn on the account's state. Returns (state, result) or None if not found."""
    return store.mutate_account_state(account_id, current_user_id(), fn)


@app.route('/api/notes', methods=['GET'])
@login_required
def api_get_notes():
    try:
        account_id = _int_param(request.args.get('accountId'), '?accountId=')
        row = store.get_account(account_id, current_user_id())
        if not row:
            return _not_found()
        return jsonify({'notes': AccountState.parse(row['notes']).notes})
    except Exception as e:
        return _error(e, 'load notes')


@app.route('/api/notes', methods=['POST'])
@login_required
def api_add_note():
    try:
        data = _body()
        account_id = _int_param(data.get('accountId'), 'accountId')
        text = str(data.get('text') or '').strip()
        if not text:
            raise ValueError('accountId and text are required')
        activity_type = data.get('activity_type')
        local_date = data.get('local_date')

        result = _mutate(account_id, lambda s: s.add_note(text, activity_type, local_date=local_date))
        if result is None:
            return _not_found()
        state, note = result
        return jsonify({'notes': state.notes, 'note': note})
    except Exception as e:
        return _error(e, 'save note')


@app.route('/api/notes', methods=['DELETE'])
@login_required
def api_delete_note():
    try:
        account_id = _int_param(request.args.get('accountId'), '?accountId=')
        note_id = request.args.get('noteId', '').strip()
        if not note_id:
            raise ValueError('accountId and noteId are required')

        result = _mutate(account_id, lambda s: s.delete_note(note_id))
        if result is None:
            return _not_found()
        state, removed = result
        return jsonify({'success': True, 'removed': removed, 'notes': state.notes})
    except Exception as e:
        return _error(e, 'delete note')


@app.route('/api/accounts/<int:account_id>/state', methods=['GET'])
@login_required
def api_account_state(account_id):
    try:
        row = store.get_account(account_id, current_user_id())
        if not row:
            return _not_found()
        return jsonify(AccountState.parse(row['notes']).as_dict())
    except Exception as e:
        return _error(e, 'load account state')


@app.route('/api/accounts/<int:account_id>/toggle', methods=['POST'])
@login_required
def api_toggle_flag(account_id):
    try:
        flag = _body().get('flag')
        result = _mutate(account_id, lambda s: s.toggle(flag))
        if result is None:
            return _not_found()
        state, value = result
        return jsonify({'flag': flag, 'value': value, 'state': state.as_dict()})
    except Exception as e:
        return _error(e, 'update account')


@app.route('/api/accounts/<int:account_id>/tier', methods=['PUT'])
@login_required
def api_set_tier(account_id):
    try:
        tier = _body().get('tier') or None
        result = _mutate(account_id, lambda s: s.set_tier(tier))
        if result is None:
            return _not_found()
        return jsonify({'gpvTier': tier, 'state': result[0].as_dict()})
    except Exception as e:
        return _error(e, 'update tier')


@app.route('/api/accounts/<int:account_id>/venue-type', methods=['PUT'])
@login_required
def api_set_venue_type(account_id):
    try:
        venue_type = _body().get('venueType')
        result = _mutate(account_id, lambda s: s.set_venue_type(venue_type))
        if result is None:
            return _not_found()
        return jsonify({'venueType': venue_type, 'state': result[0].as_dict()})
    except Exception as e:
        return _error(e, 'update venue type')


@app.route('/api/accounts/<int:account_id>/business-hours', methods=['POST'])
@login_required
def api_business_hours(account_id):
    """Look up opening hours on Google Places and cache them on the account"""
    try:
        row = store.get_account(account_id, current_user_id())
        if not row:
            return _not_found()
        details = GoogleProvider().place_details(row['name'], row['address'] or '')
        if not details:
            return _not_found('Place')
        result = _mutate(account_id, lambda s: s.set_business_hours(details['hours']))
        if result is None:
            return _not_found()
        return jsonify({'businessHours': details['hours'], 'website': details.get('website')})
    except Exception as e:
        return _error(e, 'fetch business hours')


# --- Forecast ---

@app.route('/api/forecast', methods=['POST'])
@login_required
def api_forecast():
    """
    Forecast from a saved account (accountId) or a raw history list.

    For a saved account the stored venue type wins when it is locked, and a
    computed tier that differs from the stored one is written back.
    """
    try:
        data = _body()
        requested_type = data.get('venueType')

        if data.get('accountId') is None:
            history = data.get('history')
            if not isinstance(history, list):
                raise ValueError('accountId or history is required')
            forecast = compute_forecast(history, requested_type)
            forecast['tierChanged'] = False
            return jsonify(forecast)

        account_id = _int_param(data.get('accountId'), 'accountId')
        row = store.get_account(account_id, current_user_id())
        if not row:
            return _not_found()
        state = AccountState.parse(row['notes'])

        def venue_for(s):
            if s.venue_type_locked or not requested_type:
                return s.venue_type
            return requested_type

        forecast = compute_forecast(state.history, venue_for(state))
        tier_changed = False
        if tier_update_for(state, forecast):
            def apply_tier(s):
                fresh = compute_forecast(s.history, venue_for(s))
                new_tier = tier_update_for(s, fresh)
                if new_tier:
                    s.set_tier(new_tier)
                return fresh, bool(new_tier)

            result = _mutate(account_id, apply_tier)
            if result is None:
                return _not_found()
            _, (forecast, tier_changed) = result
            if tier_changed:
                print(f"[Forecast] Account {account_id} moved to {forecast['tier']}")

        forecast['tierChanged'] = tier_changed
        return jsonify(forecast)
    except Exception as e:
        return _error(e, 'compute forecast')


# --- Routes ---

@app.route('/api/route', methods=['POST'])
@login_required
def api_route():
    try:
        data = _body()
        return jsonify(plan_route(data.get('waypoints'), origin=data.get('origin')))
    except GoogleAPIError as e:
        print(f"[Route] Directions failed: {e}")
        return jsonify({'error': str(e), 'details': e.upstream_status}), 502
    except Exception as e:
        return _error(e, 'calculate route')


@app.route('/api/saved-routes', methods=['GET'])
@login_required
def api_list_routes():
    try:
        return jsonify(store.list_routes(current_user_id()))
    except Exception as e:
        return _error(e, 'fetch routes')


@app.route('/api/saved-routes', methods=['POST'])
@login_required
def api_save_route():
    try:
        data = _body()
        name = (data.get('name') or '').strip()
        route_data = data.get('routeData')
        if not name or not isinstance(route_data, dict):
            raise ValueError('Missing required fields')
        return jsonify(store.create_route(current_user_id(), name, route_data)), 201
    except Exception as e:
        return _error(e, 'save route')


@app.route('/api/saved-routes', methods=['DELETE'])
@login_required
def api_delete_route():
    try:
        route_id = _int_param(request.args.get('id'), 'route ID')
        if not store.delete_route(route_id, current_user_id()):
            return _not_found('Route')
        return jsonify({'success': True})
    except Exception as e:
        return _error(e, 'delete route')


# --- Geocoding & places ---

@app.route('/api/geocode', methods=['POST'])
@login_required
def api_geocode_post():
    try:
        address = (_body().get('address') or '').strip()
        if not address:
            raise ValueError('Address is required')
        result = geocode_address(address)
        if not result:
            return jsonify({'error': 'Geocoding failed'}), 404
        return jsonify(result)
    except Exception as e:
        return _error(e, 'geocode')


@app.route('/api/geocode', methods=['GET'])
@login_required
def api_geocode_get():
    try:
        address = request.args.get('address', '').strip()
        lat = request.args.get('lat')
        lng = request.args.get('lng')
        if address:
            result = geocode_address(address)
            if not result:
                return jsonify({'error': 'Geocoding failed'}), 404
            return jsonify(result)
        if lat and lng:
            result = reverse_geocode(_number(lat, 'lat'), _number(lng, 'lng'))
            if not result:
                return jsonify({'error': 'Reverse geocoding failed'}), 404
            return jsonify(result)
        raise ValueError('Missing required parameters')
    except Exception as e:
        return _error(e, 'geocode')


@app.route('/api/places')
@login_required
def api_places():
    try:
        query = request.args.get('query', '').strip()
        if len(query) < 3:
            raise ValueError('Query must be at least 3 characters')
        results = search_places(query, request.args.get('city', ''))
        return jsonify({'results': results})
    except Exception as e:
        return _error(e, 'search places')


@app.route('/api/place-details')
@login_required
def api_place_details():
    try:
        name = request.args.get('name', '').strip()
        address = request.args.get('address', '').strip()
        if not name or not address:
            raise ValueError('Name and address required')
        details = GoogleProvider().place_details(name, address)
        if not details:
            return _not_found('Place')
        if not details['hours']:
            return jsonify({'hours': None, 'website': details.get('website'),
                            'message': 'Hours not available'})
        return jsonify(details)
    except Exception as e:
        return _error(e, 'fetch place details')


# --- Intel & sheets ---

@app.route('/api/intel', methods=['POST'])
@login_required
def api_intel():
    """Owners / location count / summary for a business, optionally cached on the account"""
    try:
        data = _body()
        account_id = None
        if data.get('accountId') is not None:
            account_id = _int_param(data.get('accountId'), 'accountId')
            if not store.get_account(account_id, current_user_id()):
                return _not_found()

        answer = intel.lookup_business(data.get('name'), data.get('city'), data.get('taxpayer'))

        if account_id is not None and answer['provider'] != 'mock':
            _mutate(account_id, lambda s: s.set_ai_response(answer['text']))
        return jsonify(answer)
    except Exception as e:
        return _error(e, 'fetch business intel')


@app.route('/api/sheets')
@login_required
def api_sheets():
    try:
        user = store.get_user(current_user_id()) or {}
        return jsonify(sheets_client.fetch_sheet(user.get('google_sheet_id')))
    except Exception as e:
        return _error(e, 'fetch sheet data')


if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=False)
