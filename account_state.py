"""
AccountState: the JSON object stored in accounts.notes.

The column is an opaque blob shared with older clients, so every mutation
works on the full parsed dict and writes the whole dict back. Keys this
module does not know about ride along untouched.

Shape:
{
    'key': 'KEY:<taxpayer>-<location>',   # optional records correlation
    'notes': [ActivityNote, ...],          # most recent first
    'history': [MonthlyReceipt, ...],      # oldest first
    'gpvTier': 'tier3' | None,
    'activeOpp': bool, 'activeAccount': bool, 'venueTypeLocked': bool,
    'venueType': 'casual_dining',
    'aiResponse': str,
    'manual': bool,
    'businessHours': {...},
}
"""
import json
import re
import threading
import time
from datetime import datetime, timezone

from forecast import GPV_TIER_IDS, VENUE_TYPES

KEY_PREFIX = 'KEY:'
LEGACY_KEY_RE = re.compile(r'^KEY:(\S+)')

ACTIVITY_TYPES = ['walk-in', 'call', 'text', 'email', 'update']
DEFAULT_ACTIVITY_TYPE = 'walk-in'

TOGGLE_FLAGS = ('activeOpp', 'activeAccount', 'venueTypeLocked')

_id_lock = threading.Lock()
_last_note_id = 0


def record_key(taxpayer_number, location_number):
    return f"{taxpayer_number}-{location_number}"


def _next_note_id(existing_notes):
    """
    Millisecond timestamp, bumped past every id already in the account and
    every id handed out by this process, so rapid adds never collide.
    """
    global _last_note_id
    highest = 0
    for note in existing_notes:
        try:
            highest = max(highest, int(float(note.get('id'))))
        except (TypeError, ValueError, AttributeError):
            continue
    with _id_lock:
        candidate = max(int(time.time() * 1000), highest + 1, _last_note_id + 1)
        _last_note_id = candidate
    return candidate


def same_note_id(a, b):
    """Ids from older clients are floats (time + random fraction); compare numerically when possible."""
    try:
        return float(a) == float(b)
    except (TypeError, ValueError):
        return str(a) == str(b)


class AccountState:
    """Typed accessor over the parsed notes blob. `data` is the full dict."""

    def __init__(self, data=None):
        self.data = data if isinstance(data, dict) else {}
        if not isinstance(self.data.get('notes'), list):
            self.data['notes'] = []
        if not isinstance(self.data.get('history'), list):
            self.data['history'] = []

    @classmethod
    def parse(cls, raw):
        """
        Parse a stored notes string. Never raises: unparseable text becomes
        an empty state, and a legacy plain 'KEY:<taxpayer>-<location>'
        string is kept as the key.
        """
        text = (raw or '').strip() if isinstance(raw, str) else ''
        if not text:
            return cls()
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            parsed = None
        if isinstance(parsed, dict):
            return cls(parsed)
        match = LEGACY_KEY_RE.match(text)
        if match:
            return cls({'key': KEY_PREFIX + match.group(1)})
        return cls()

    @classmethod
    def for_record(cls, taxpayer_number, location_number, history=None, **fields):
        data = {
            'key': KEY_PREFIX + record_key(taxpayer_number, location_number),
            'notes': [],
            'history': list(history or []),
        }
        data.update(fields)
        return cls(data)

    @classmethod
    def manual_entry(cls, **fields):
        data = {'manual': True, 'notes': [], 'history': []}
        data.update(fields)
        data['manual'] = True
        return cls(data)

    def to_json(self):
        return json.dumps(self.data, separators=(',', ':'), ensure_ascii=False)

    def as_dict(self):
        """Public view: same dict with the KEY: prefix stripped from the key."""
        view = dict(self.data)
        if 'key' in view:
            view['key'] = self.key
        return view

    # --- read accessors ---

    @property
    def key(self):
        raw = self.data.get('key')
        if not raw:
            return None
        raw = str(raw)
        return raw[len(KEY_PREFIX):] if raw.startswith(KEY_PREFIX) else raw

    @property
    def notes(self):
        return self.data['notes']

    @property
    def history(self):
        return self.data['history']

    @property
    def gpv_tier(self):
        return self.data.get('gpvTier')

    @property
    def venue_type(self):
        return self.data.get('venueType')

    @property
    def venue_type_locked(self):
        return bool(self.data.get('venueTypeLocked'))

    @property
    def active_opp(self):
        return bool(self.data.get('activeOpp'))

    @property
    def active_account(self):
        return bool(self.data.get('activeAccount'))

    @property
    def manual(self):
        return bool(self.data.get('manual'))

    @property
    def ai_response(self):
        return self.data.get('aiResponse') or ''

    @property
    def business_hours(self):
        return self.data.get('businessHours')

    # --- mutations (each touches exactly one field) ---

    def add_note(self, text, activity_type=None, now=None, local_date=None):
        text = (text or '').strip()
        if not text:
            raise ValueError('Note text is required')
        activity_type = activity_type or DEFAULT_ACTIVITY_TYPE
        if activity_type not in ACTIVITY_TYPES:
            raise ValueError(f"Unknown activity type: {activity_type}")

        now = now or datetime.now(timezone.utc)
        if local_date is None:
            local_date = now.astimezone().date().isoformat()
        note = {
            'id': _next_note_id(self.notes),
            'text': text,
            'activity_type': activity_type,
            'created_at': now.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'created_local_date': local_date,
        }
        self.notes.insert(0, note)
        return note

    def delete_note(self, note_id):
        """Remove by exact id. Returns False (not an error) when the id is absent."""
        kept = [n for n in self.notes if not same_note_id(n.get('id'), note_id)]
        removed = len(kept) != len(self.notes)
        self.data['notes'] = kept
        return removed

    def toggle(self, flag):
        if flag not in TOGGLE_FLAGS:
            raise ValueError(f"Unknown flag: {flag}")
        self.data[flag] = not bool(self.data.get(flag))
        return self.data[flag]

    def set_tier(self, tier):
        if tier is not None and tier not in GPV_TIER_IDS:
            raise ValueError(f"Unknown GPV tier: {tier}")
        self.data['gpvTier'] = tier

    def set_venue_type(self, venue_type):
        if venue_type not in VENUE_TYPES:
            raise ValueError(f"Unknown venue type: {venue_type}")
        self.data['venueType'] = venue_type

    def set_ai_response(self, text):
        self.data['aiResponse'] = text or ''

    def set_business_hours(self, hours):
        self.data['businessHours'] = hours
