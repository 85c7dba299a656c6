"""Country name to ISO 3166-1 alpha-2 lookup for processor address fields."""

DEFAULT_COUNTRY_CODE = "US"

COUNTRY_CODES: dict[str, str] = {
    "Nigeria": "NG",
    "United States": "US",
    "United Kingdom": "GB",
    "Canada": "CA",
    "Australia": "AU",
    "Germany": "DE",
    "France": "FR",
    "Italy": "IT",
    "Spain": "ES",
    "Netherlands": "NL",
    "Belgium": "BE",
    "Switzerland": "CH",
    "Sweden": "SE",
    "Norway": "NO",
    "Denmark": "DK",
    "Finland": "FI",
    "Poland": "PL",
    "Ireland": "IE",
    "Portugal": "PT",
    "Austria": "AT",
    "Greece": "GR",
    "South Africa": "ZA",
    "Kenya": "KE",
    "Ghana": "GH",
    "Egypt": "EG",
    "Morocco": "MA",
    "Brazil": "BR",
    "Mexico": "MX",
    "Argentina": "AR",
    "Chile": "CL",
    "Japan": "JP",
    "South Korea": "KR",
    "China": "CN",
    "India": "IN",
    "Singapore": "SG",
    "Malaysia": "MY",
    "Thailand": "TH",
    "Indonesia": "ID",
    "Philippines": "PH",
    "Vietnam": "VN",
    "New Zealand": "NZ",
    "United Arab Emirates": "AE",
    "Saudi Arabia": "SA",
    "Israel": "IL",
    "Turkey": "TR",
}

_BY_LOWER = {name.lower(): code for name, code in COUNTRY_CODES.items()}


def country_code(name: str | None) -> str:
    """Map a free-text country name to its two-letter code; unknown names give the default."""
    if not name:
        return DEFAULT_COUNTRY_CODE
    return _BY_LOWER.get(name.strip().lower(), DEFAULT_COUNTRY_CODE)
