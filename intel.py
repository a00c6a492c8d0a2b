"""
Business intel lookups for a prospect: owners, location count and a short
account summary, produced by an LLM with web search.

Gemini (REST, google_search tool) is used when GEMINI_API_KEY is set,
Claude (web_search tool) when only ANTHROPIC_API_KEY is set, and a mock
answer when neither is configured so the UI can still be exercised.
"""
import re
import time

import anthropic
import requests

import config

SYSTEM_PROMPT = 'You are a business intelligence assistant specialized in the Texas hospitality market.'

SECTION_NAMES = {
    'owners': 'OWNERS',
    'locations': 'LOCATION COUNT',
    'details': 'ACCOUNT DETAILS',
}
NOT_AVAILABLE = 'Not available'


class IntelError(Exception):
    """Raised when the LLM provider fails after retries."""

    def __init__(self, message, status_code=502):
        super().__init__(message)
        self.status_code = status_code


def build_prompt(name, city, taxpayer):
    return f"""Find the individual owners or executive management for "{name}" in {city}, TX. Look specifically for the people behind the LLC "{taxpayer}".

Please provide your response in EXACTLY this format:

OWNERS: [List individual people's names, titles, or relationships. If not found, say "Not readily available"]

LOCATION COUNT: [Number of locations this business operates. If not found, say "Unknown"]

ACCOUNT DETAILS: [Brief company overview, industry, notable info. If not found, provide general context]"""


def parse_ai_sections(text):
    """Split a formatted answer into owners / locations / details."""
    text = text or ''
    labels = '|'.join(SECTION_NAMES.values())
    sections = {}
    for field, label in SECTION_NAMES.items():
        pattern = re.compile(rf"{label}:\s*(.+?)(?=\n(?:{labels}):|$)", re.IGNORECASE | re.DOTALL)
        match = pattern.search(text)
        sections[field] = match.group(1).strip() if match else NOT_AVAILABLE
    return sections


def _backoff_delays():
    delay = config.INTEL_INITIAL_DELAY
    for _ in range(config.INTEL_MAX_RETRIES):
        yield delay
        delay = min(delay * 2, config.INTEL_MAX_DELAY)


def call_gemini(prompt, api_key=None):
    """Gemini generateContent with backoff on 429, 5xx and connection errors."""
    api_key = api_key or config.GEMINI_API_KEY
    url = f"{config.GEMINI_URL}/{config.GEMINI_MODEL}:generateContent"
    payload = {
        'contents': [{'parts': [{'text': prompt}]}],
        'systemInstruction': {'parts': [{'text': SYSTEM_PROMPT}]},
        'tools': [{'google_search': {}}],
    }
    delays = _backoff_delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            resp = requests.post(url, params={'key': api_key}, json=payload, timeout=config.HTTP_TIMEOUT * 3)
        except requests.RequestException as e:
            wait = next(delays, None)
            if wait is None:
                raise IntelError(f'Cannot reach Gemini: {e}')
            print(f"[Intel] Gemini connection error (attempt {attempt}), waiting {wait:.1f}s...")
            time.sleep(wait)
            continue

        if resp.status_code == 429 or resp.status_code >= 500:
            wait = next(delays, None)
            if wait is not None:
                print(f"[Intel] Gemini HTTP {resp.status_code} (attempt {attempt}), waiting {wait:.1f}s...")
                time.sleep(wait)
                continue
        if resp.status_code != 200:
            raise IntelError(resp.text[:500] or f'Gemini HTTP {resp.status_code}')
        break

    data = resp.json()
    candidates = data.get('candidates') or [{}]
    parts = (candidates[0].get('content') or {}).get('parts') or []
    return ''.join(p.get('text', '') for p in parts)


def call_claude(prompt, api_key=None, max_retries=3):
    client = anthropic.Anthropic(api_key=api_key or config.ANTHROPIC_API_KEY)
    message = None
    for attempt in range(max_retries + 1):
        try:
            message = client.messages.create(
                model=config.CLAUDE_MODEL,
                max_tokens=2048,
                system=SYSTEM_PROMPT,
                tools=[
                    {
                        "type": "web_search_20250305",
                        "name": "web_search",
                        "max_uses": 3
                    }
                ],
                messages=[{"role": "user", "content": prompt}]
            )
            break
        except anthropic.RateLimitError:
            if attempt < max_retries:
                wait_time = 2 ** (attempt + 1)
                print(f"[Intel] Rate limited (attempt {attempt + 1}/{max_retries + 1}), waiting {wait_time}s...")
                time.sleep(wait_time)
            else:
                raise IntelError('Claude API rate limit reached. Please wait 1-2 minutes and try again.', 429)
        except anthropic.AuthenticationError:
            raise IntelError('Invalid ANTHROPIC_API_KEY', 500)
        except anthropic.APIConnectionError:
            raise IntelError('Cannot connect to Claude API')

    response_text = ""
    for block in message.content:
        if block.type == "text":
            response_text += block.text
    return response_text


def lookup_business(name, city=None, taxpayer=None):
    """Returns {text, sections, provider}; provider is 'mock' without keys."""
    name = (name or '').strip() or '(unknown)'
    city = (city or '').strip() or 'Texas'
    taxpayer = (taxpayer or '').strip() or name

    if config.GEMINI_API_KEY:
        provider = 'gemini'
        text = call_gemini(build_prompt(name, city, taxpayer))
    elif config.ANTHROPIC_API_KEY:
        provider = 'claude'
        text = call_claude(build_prompt(name, city, taxpayer))
    else:
        provider = 'mock'
        text = f'Mock response for "{name}" (no server API key configured).'

    print(f"[Intel] {provider} answered {len(text)} chars for {name}")
    return {'text': text, 'sections': parse_ai_sections(text), 'provider': provider}
