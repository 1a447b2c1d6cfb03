"""
Keyword-based category inference and billing-date projection for detections.
"""
import calendar
import re
from collections import Counter
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from app.schemas import RawEvent

DEFAULT_CATEGORY = "Other"

# Checked in order; first category with a matching keyword wins
CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "Streaming": ["netflix", "prime video", "hotstar", "disney", "youtube", "zee5",
                  "sonyliv", "hulu", "hbo", "jiocinema", "crunchyroll"],
    "Music": ["spotify", "apple music", "gaana", "saavn", "wynk", "tidal", "deezer"],
    "Investment": ["groww", "zerodha", "upstox", "mutual fund", "sip", "smallcase"],
    "Food & Dining": ["zomato", "swiggy", "uber eats", "doordash", "deliveroo"],
    "Fitness": ["gym", "fitness", "cult.fit", "cult fit", "cultfit", "strava", "peloton"],
    "Cloud Storage": ["google one", "icloud", "dropbox", "onedrive", "pcloud"],
    "Productivity": ["notion", "evernote", "microsoft", "office", "google workspace",
                     "slack", "todoist"],
    "Software": ["adobe", "github", "jetbrains", "figma", "canva", "openai", "chatgpt"],
    "Rentals": ["furlenco", "rentomojo", "rental", "lease"],
    "News & Media": ["times", "hindu", "medium", "substack", "economist"],
    "Gaming": ["xbox", "playstation", "steam", "nintendo"],
}


def categorize_merchant(merchant_name: Optional[str]) -> str:
    """Map a merchant name to a category, "Other" when nothing matches."""
    if not merchant_name:
        return DEFAULT_CATEGORY

    name = merchant_name.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}\b", name):
                return category

    return DEFAULT_CATEGORY


def resolve_category(events: Sequence[RawEvent], merchant_name: Optional[str]) -> str:
    """Prefer the most frequent extraction category hint, else keyword matching."""
    hints = [
        str(e.extra.get("category")).strip()
        for e in events
        if e.extra.get("category") and str(e.extra.get("category")).strip()
    ]
    if hints:
        return Counter(hints).most_common(1)[0][0]
    return categorize_merchant(merchant_name)


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_billing_date(last_charge: Optional[date], billing_cycle: str) -> Optional[date]:
    """Project the next charge date from the last one; None when the cycle is unknown."""
    if last_charge is None:
        return None

    if billing_cycle == "daily":
        return last_charge + timedelta(days=1)
    if billing_cycle == "weekly":
        return last_charge + timedelta(days=7)
    if billing_cycle == "monthly":
        return _add_months(last_charge, 1)
    if billing_cycle == "quarterly":
        return _add_months(last_charge, 3)
    if billing_cycle == "yearly":
        return _add_months(last_charge, 12)

    return None
