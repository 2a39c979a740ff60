"""
Deterministic extraction.

Keyword and regex rules used when no LLM reply is available. Coarse by
nature: a schedule hint flags the whole message as the schedule phrase.
"""

import re
from typing import Optional

from .types import BookingIntent, ExtractedData

# ==================================
# Greetings
# ==================================

GREETING_PATTERN = re.compile(
    r"^(?:hi+|hello+|hey+|hiya|howdy|yo|greetings|namaste|hola|"
    r"good\s+(?:morning|afternoon|evening|day))"
    r"(?:\s+there)?[\s!.,?]*$"
)

GREETING_MAX_LENGTH = 20


def is_greeting(message: str) -> bool:
    """Short message made only of a greeting token."""
    text = message.strip().lower()
    return len(text) < GREETING_MAX_LENGTH and bool(GREETING_PATTERN.match(text))


# ==================================
# Presenting problem
# ==================================

# (condition, pattern) - explicit names win over emotional keywords
EXPLICIT_CONDITIONS: list[tuple[str, str]] = [
    ("anxiety", r"\banxiety\b|\bpanic\s+attacks?\b"),
    ("depression", r"\bdepression\b"),
    ("ptsd", r"\bptsd\b|\bpost[- ]traumatic\b"),
    ("ocd", r"\bocd\b|\bobsessive[- ]compulsive\b"),
    ("adhd", r"\badhd\b"),
    ("bipolar disorder", r"\bbipolar\b"),
    ("eating disorder", r"\beating\s+disorder\b|\banorexia\b|\bbulimia\b"),
    ("insomnia", r"\binsomnia\b"),
    ("addiction", r"\baddiction\b|\balcoholism\b|\bsubstance\s+(?:use|abuse)\b"),
    ("trauma", r"\btrauma\b"),
    ("grief", r"\bgrief\b|\bbereavement\b"),
    ("stress", r"\bstress\b"),
    ("relationship issues", r"\brelationship\s+(?:issues|problems)\b|\bcouples?\s+therapy\b|\bmarriage\b"),
    ("loneliness", r"\bloneliness\b"),
]

# (category, pattern) - also used to pick empathetic reply templates
EMOTIONAL_KEYWORDS: list[tuple[str, str]] = [
    ("depression", r"\b(?:sad|sadness|depressed|hopeless|empty|unmotivated|worthless|feeling\s+down|low\s+mood)\b"),
    ("anxiety", r"\b(?:anxious|nervous|worried|worrying|panic|panicking|on\s+edge|restless|scared)\b"),
    ("stress", r"\b(?:stressed|overwhelmed|burn(?:ed|t)?\s*out|under\s+pressure|exhausted)\b"),
    ("grief", r"\b(?:grieving|mourning|passed\s+away|lost\s+(?:my|a)\s+\w+|death\s+of)\b"),
    ("loneliness", r"\b(?:lonely|alone|isolated|no\s+friends)\b"),
]

EMOTIONAL_CATEGORIES = ("depression", "anxiety", "stress", "grief", "loneliness")


def infer_problem(message: str) -> Optional[str]:
    """Condition named or implied by the message."""
    text = message.lower()
    for condition, pattern in EXPLICIT_CONDITIONS:
        if re.search(pattern, text):
            return condition
    for category, pattern in EMOTIONAL_KEYWORDS:
        if re.search(pattern, text):
            return category
    return None


def emotional_category(message: str) -> str:
    """Emotional bucket of a message, "generic" when nothing stands out."""
    problem = infer_problem(message)
    if problem in EMOTIONAL_CATEGORIES:
        return problem
    return "generic"


# ==================================
# Schedule hints
# ==================================

SCHEDULE_PATTERNS: list[str] = [
    # Day names and ranges
    r"\b(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)s?\b",
    r"\bweek(?:day|end)s?\b",
    r"\b(?:today|tomorrow|tonight|next\s+week|this\s+week)\b",
    # Month names ("may" only next to a number)
    r"\b(?:january|february|march|april|june|july|august|september|october|november|december)\b",
    r"\b(?:jan|feb|mar|apr|jun|jul|aug|sept?|oct|nov|dec)\b\.?",
    r"\bmay\s+\d{1,2}\b|\b\d{1,2}(?:st|nd|rd|th)?\s+(?:of\s+)?may\b",
    # Time of day
    r"\b(?:mornings?|afternoons?|evenings?|nights?|noon|lunch\s*time)\b",
    # Clock times
    r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)",
    r"\b\d{1,2}:\d{2}\b",
    r"\bat\s+\d{1,2}\b",
    # Day of month
    r"\b\d{1,2}(?:st|nd|rd|th)\b",
]

BARE_NUMBER_PATTERN = r"\b\d{1,2}\b"


def mentions_schedule(message: str, allow_bare_numbers: bool = True) -> bool:
    text = message.lower()
    if any(re.search(pattern, text) for pattern in SCHEDULE_PATTERNS):
        return True
    return allow_bare_numbers and bool(re.search(BARE_NUMBER_PATTERN, text))


# ==================================
# Insurance
# ==================================

# (display name, lower-case aliases)
INSURANCE_PROVIDERS: list[tuple[str, tuple[str, ...]]] = [
    ("Aetna", ("aetna",)),
    ("Blue Cross Blue Shield", ("blue cross", "blue shield", "bcbs")),
    ("Cigna", ("cigna",)),
    ("UnitedHealthcare", ("unitedhealthcare", "united healthcare", "united health", "uhc")),
    ("Humana", ("humana",)),
    ("Kaiser Permanente", ("kaiser",)),
    ("Anthem", ("anthem",)),
    ("Medicare", ("medicare",)),
    ("Medicaid", ("medicaid",)),
    ("Tricare", ("tricare",)),
    ("Oscar Health", ("oscar",)),
    ("Molina Healthcare", ("molina",)),
    ("Star Health", ("star health",)),
    ("HDFC ERGO", ("hdfc ergo", "hdfc")),
    ("ICICI Lombard", ("icici lombard", "icici")),
    ("Niva Bupa", ("niva bupa", "max bupa", "bupa")),
    ("Care Health", ("care health",)),
    ("Bajaj Allianz", ("bajaj allianz", "bajaj")),
    ("Tata AIG", ("tata aig",)),
    ("New India Assurance", ("new india assurance",)),
    ("Self-pay", ("self-pay", "self pay", "out of pocket", "no insurance", "don't have insurance", "uninsured")),
]


def find_insurance(message: str) -> Optional[str]:
    text = message.lower()
    for name, aliases in INSURANCE_PROVIDERS:
        if any(re.search(rf"\b{re.escape(alias)}\b", text) for alias in aliases):
            return name
    return None


# ==================================
# Booking intent
# ==================================

AFFIRMATIVE_PATTERN = re.compile(
    r"\b(?:yes|yeah|yep|yup|ya|sure|ok|okay|please\s+do|book\s+(?:it|me|that|this|the|a|my)|"
    r"go\s+ahead|let'?s\s+book|(?:want|like|ready)\s+to\s+book|sounds\s+good|confirm|let'?s\s+do\s+it|absolutely|definitely|perfect)\b"
)
NEGATIVE_PATTERN = re.compile(
    r"\b(?:no(?!\s+(?:problem|worries))|nope|nah|don'?t|dont|do\s+not|never\s*mind|maybe\s+later|hold\s+off|"
    r"not\s+(?:now|yet|ready|(?:so\s+|really\s+|too\s+|quite\s+)?sure|book\w*))\b"
)


def detect_booking_intent(message: str) -> BookingIntent:
    # A negation outweighs any yes in the same message ("no, don't book it yet")
    text = message.lower()
    if NEGATIVE_PATTERN.search(text):
        return BookingIntent.NO
    if AFFIRMATIVE_PATTERN.search(text):
        return BookingIntent.YES
    if "?" in text:
        return BookingIntent.CLARIFICATION
    return BookingIntent.NOT_SPECIFIED


# ==================================
# Therapist selection
# ==================================

ORDINALS = {
    "first": 1, "1st": 1,
    "second": 2, "2nd": 2,
    "third": 3, "3rd": 3,
    "fourth": 4, "4th": 4,
    "fifth": 5, "5th": 5,
}

ORDINAL_PATTERN = re.compile(r"\b(" + "|".join(ORDINALS) + r"|last)\b")
NUMBERED_PATTERN = re.compile(r"(?:\b(?:option|number|choice|no\.?)|#)\s*(\d{1,2})\b")
LONE_DIGIT_PATTERN = re.compile(r"^\D*?\b(\d)\b(?!\s*(?::|am|pm|a\.m|p\.m))\D*$")

NAME_TITLES = {"dr", "dr.", "doctor", "mr", "mr.", "ms", "ms.", "mrs", "mrs."}


def detect_selection(message: str, pending_names: list[str]) -> Optional[int]:
    """1-based index into the pending list, or None."""
    if not pending_names:
        return None
    text = message.lower().strip()
    count = len(pending_names)

    candidate: Optional[int] = None
    match = ORDINAL_PATTERN.search(text)
    if match:
        word = match.group(1)
        candidate = count if word == "last" else ORDINALS[word]
    else:
        match = NUMBERED_PATTERN.search(text) or LONE_DIGIT_PATTERN.match(text)
        if match:
            candidate = int(match.group(1))

    if candidate is not None and 1 <= candidate <= count:
        return candidate

    for index, name in enumerate(pending_names, start=1):
        parts = [p for p in name.lower().split() if p not in NAME_TITLES and len(p) > 2]
        if any(re.search(rf"\b{re.escape(part)}\b", text) for part in parts):
            return index

    return None


def fallback_extract(
    message: str,
    has_matched_therapist: bool = False,
    pending_names: Optional[list[str]] = None,
) -> ExtractedData:
    """Rule-based extraction for when no LLM reply is available."""
    selection = detect_selection(message, pending_names or [])

    schedule = None
    if mentions_schedule(message, allow_bare_numbers=selection is None):
        schedule = message.strip()

    intent = BookingIntent.NOT_SPECIFIED
    if has_matched_therapist:
        intent = detect_booking_intent(message)

    return ExtractedData(
        problem=infer_problem(message),
        schedule=schedule,
        insurance=find_insurance(message),
        booking_intent=intent,
        therapist_selection=selection,
        source="fallback",
    )
