"""
Forecast engine: monthly revenue forecast and GPV tiering.

Turns a receipts history (MonthlyReceipt dicts, oldest first) plus a venue
profile into an average monthly alcohol volume, an estimated food revenue
and a GPV tier id.
"""

# Food/alcohol revenue split per venue type
VENUE_TYPES = {
    'fine_dining': {'label': 'Fine Dining', 'alcoholPct': 0.35, 'foodPct': 0.65, 'desc': '65% Food / 35% Alcohol'},
    'casual_dining': {'label': 'Casual Dining', 'alcoholPct': 0.25, 'foodPct': 0.75, 'desc': '75% Food / 25% Alcohol'},
    'pub_grill': {'label': 'Pub / Grill', 'alcoholPct': 0.45, 'foodPct': 0.55, 'desc': '55% Food / 45% Alcohol'},
    'sports_bar': {'label': 'Sports Bar', 'alcoholPct': 0.55, 'foodPct': 0.45, 'desc': '45% Food / 55% Alcohol'},
    'dive_bar': {'label': 'Dive Bar / Tavern', 'alcoholPct': 0.90, 'foodPct': 0.10, 'desc': '10% Food / 90% Alcohol'},
    'no_food': {'label': 'No Food', 'alcoholPct': 1.0, 'foodPct': 0.0, 'desc': '0% Food / 100% Alcohol'},
}
DEFAULT_VENUE_TYPE = 'casual_dining'

# Fine dining checks run far above the generic ratio; applied on top of it
FINE_DINING_VENUE_TYPE = 'fine_dining'
FINE_DINING_FOOD_MULTIPLIER = 1.75

GPV_TIERS = [
    {'id': 'nro', 'label': 'NRO', 'color': '#06b6d4'},  # New Retail Opportunity, set by hand only
    {'id': 'tier1', 'label': '$0-50K', 'color': '#3b82f6'},
    {'id': 'tier2', 'label': '$50-100K', 'color': '#8b5cf6'},
    {'id': 'tier3', 'label': '$100-250K', 'color': '#ec4899'},
    {'id': 'tier4', 'label': '$250-500K', 'color': '#f59e0b'},
    {'id': 'tier5', 'label': '$500K-1M', 'color': '#10b981'},
    {'id': 'tier6', 'label': '$1M+', 'color': '#ef4444'},
]
GPV_TIER_IDS = [t['id'] for t in GPV_TIERS]

# (upper bound exclusive, tier) in ascending order; anything above is tier6
TIER_THRESHOLDS = [
    (50000, 'tier1'),
    (100000, 'tier2'),
    (250000, 'tier3'),
    (500000, 'tier4'),
    (1000000, 'tier5'),
]
TOP_TIER = 'tier6'


def venue_profile(venue_type):
    """Return (venue_type, profile), falling back to casual dining for unknown keys."""
    if venue_type in VENUE_TYPES:
        return venue_type, VENUE_TYPES[venue_type]
    return DEFAULT_VENUE_TYPE, VENUE_TYPES[DEFAULT_VENUE_TYPE]


def average_alcohol(history):
    """Mean monthly total over the months that reported receipts."""
    totals = []
    for month in history or []:
        try:
            total = float(month.get('total') or 0)
        except (TypeError, ValueError):
            continue
        if total > 0:
            totals.append(total)
    if not totals:
        return 0.0
    return sum(totals) / len(totals)


def estimate_food(avg_alcohol, profile):
    """Generic food estimate from the venue's alcohol/food split."""
    alcohol_pct = profile.get('alcoholPct') or 0
    if alcohol_pct <= 0:
        return 0.0
    return (avg_alcohol / alcohol_pct) * profile.get('foodPct', 0)


def tier_for_total(total):
    """Map a monthly forecast total to its GPV tier id (lower bound inclusive)."""
    for upper, tier in TIER_THRESHOLDS:
        if total < upper:
            return tier
    return TOP_TIER


def compute_forecast(history, venue_type=None):
    venue_type, profile = venue_profile(venue_type)
    avg_alcohol = average_alcohol(history)
    est_food = estimate_food(avg_alcohol, profile)
    if venue_type == FINE_DINING_VENUE_TYPE:
        est_food = est_food * FINE_DINING_FOOD_MULTIPLIER
    total = avg_alcohol + est_food
    return {
        'venueType': venue_type,
        'avgAlcohol': avg_alcohol,
        'estFood': est_food,
        'total': total,
        'tier': tier_for_total(total),
    }


def is_tier_exempt(state):
    """Accounts with no history and no records key (hand-entered) are never auto-tiered."""
    return not state.history and not state.key


def tier_update_for(state, forecast):
    """
    Return the tier the stored state should move to, or None when the
    stored tier already matches or the account is exempt.
    """
    if is_tier_exempt(state):
        return None
    if state.gpv_tier == forecast['tier']:
        return None
    return forecast['tier']
