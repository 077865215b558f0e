"""
Geographic region mapping and neighboring country utilities.

Used for geo tier 1 (same country) and tier 2 (neighbor or shared
macro-region) matching in the reranker. Countries are keyed by ISO 3166-1
alpha-2 codes; free-text locations from the directory are resolved to codes
through the name/alias table and the US state table.

Usage:
    from relief_recs.utils.geo_regions import resolve_country, find_countries, are_neighbors

    resolve_country("Türkiye")              # "TR"
    find_countries("Istanbul, Turkey")      # ["TR"]
    find_countries("Austin, TX")            # ["US"]
    are_neighbors("TR", "GR")               # True
"""

import re
import unicodedata
from functools import lru_cache
from typing import Optional

# Macro-regions based on geographic proximity and shared borders
REGION_MAP: dict[str, list[str]] = {
    # Africa
    "north_africa": ["DZ", "EG", "LY", "MA", "TN", "SD", "SS"],
    "west_africa": ["BJ", "BF", "CV", "CI", "GM", "GH", "GN", "GW", "LR", "ML", "MR", "NE", "NG", "SN", "SL", "TG"],
    "east_africa": ["BI", "KM", "DJ", "ER", "ET", "KE", "MG", "MW", "MU", "MZ", "RW", "SC", "SO", "TZ", "UG", "ZM", "ZW"],
    "central_africa": ["AO", "CM", "CF", "TD", "CG", "CD", "GQ", "GA", "ST"],
    "southern_africa": ["BW", "LS", "NA", "ZA", "SZ"],
    # Asia
    "middle_east": ["BH", "IQ", "IR", "IL", "JO", "KW", "LB", "OM", "PS", "QA", "SA", "SY", "TR", "AE", "YE"],
    "south_asia": ["AF", "BD", "BT", "IN", "MV", "NP", "PK", "LK"],
    "southeast_asia": ["BN", "KH", "ID", "LA", "MY", "MM", "PH", "SG", "TH", "TL", "VN"],
    "east_asia": ["CN", "HK", "JP", "KP", "KR", "MN", "MO", "TW"],
    "central_asia": ["KZ", "KG", "TJ", "TM", "UZ"],
    "caucasus": ["AM", "AZ", "GE"],
    # Europe
    "western_europe": ["AT", "BE", "FR", "DE", "LI", "LU", "MC", "NL", "CH"],
    "northern_europe": ["DK", "EE", "FI", "IS", "IE", "LV", "LT", "NO", "SE", "GB"],
    "southern_europe": ["AL", "AD", "BA", "HR", "CY", "GR", "IT", "XK", "MT", "ME", "MK", "PT", "SM", "RS", "SI", "ES", "VA"],
    "eastern_europe": ["BY", "BG", "CZ", "HU", "MD", "PL", "RO", "RU", "SK", "UA"],
    # Americas
    "north_america": ["CA", "MX", "US"],
    "central_america": ["BZ", "CR", "SV", "GT", "HN", "NI", "PA"],
    "caribbean": ["AG", "BS", "BB", "CU", "DM", "DO", "GD", "HT", "JM", "KN", "LC", "VC", "TT", "PR"],
    "south_america": ["AR", "BO", "BR", "CL", "CO", "EC", "GY", "PY", "PE", "SR", "UY", "VE", "GF"],
    # Oceania
    "oceania": ["AU", "FJ", "KI", "MH", "FM", "NR", "NZ", "PW", "PG", "WS", "SB", "TO", "TV", "VU"],
}

# Countries that share a land border (or a short strait for island pairs)
NEIGHBORING_COUNTRIES: dict[str, list[str]] = {
    # Africa
    "DZ": ["TN", "LY", "NE", "ML", "MR", "MA"],
    "EG": ["LY", "SD", "IL", "PS"],
    "LY": ["DZ", "TN", "EG", "SD", "TD", "NE"],
    "MA": ["DZ", "ES"],
    "TN": ["DZ", "LY"],
    "SD": ["EG", "LY", "TD", "CF", "SS", "ET", "ER"],
    "SS": ["SD", "ET", "KE", "UG", "CD", "CF"],
    "ET": ["ER", "DJ", "SO", "KE", "SS", "SD"],
    "KE": ["ET", "SO", "SS", "UG", "TZ"],
    "SO": ["DJ", "ET", "KE"],
    "UG": ["SS", "KE", "TZ", "RW", "CD"],
    "TZ": ["KE", "UG", "RW", "BI", "CD", "ZM", "MW", "MZ"],
    "NG": ["BJ", "NE", "TD", "CM"],
    "CD": ["CG", "CF", "SS", "UG", "RW", "BI", "TZ", "ZM", "AO"],
    "ZA": ["NA", "BW", "ZW", "MZ", "SZ", "LS"],
    "MZ": ["TZ", "MW", "ZM", "ZW", "ZA", "SZ"],
    "MW": ["TZ", "MZ", "ZM"],
    # Middle East and Caucasus
    "TR": ["GR", "BG", "GE", "AM", "AZ", "IR", "IQ", "SY"],
    "SY": ["TR", "IQ", "JO", "IL", "LB"],
    "IQ": ["TR", "SY", "JO", "SA", "KW", "IR"],
    "IR": ["TR", "IQ", "KW", "SA", "OM", "AE", "AF", "PK", "TM", "AZ", "AM"],
    "SA": ["JO", "IQ", "KW", "QA", "AE", "OM", "YE"],
    "YE": ["SA", "OM"],
    "IL": ["LB", "SY", "JO", "EG", "PS"],
    "PS": ["IL", "EG", "JO"],
    "JO": ["SY", "IQ", "SA", "IL", "PS"],
    "LB": ["SY", "IL"],
    "GE": ["TR", "AM", "AZ", "RU"],
    "AM": ["TR", "GE", "AZ", "IR"],
    "AZ": ["GE", "AM", "IR", "RU", "TR"],
    # South Asia
    "AF": ["IR", "PK", "CN", "TJ", "UZ", "TM"],
    "PK": ["AF", "IR", "IN", "CN"],
    "IN": ["PK", "CN", "NP", "BT", "MM", "BD", "LK"],
    "BD": ["IN", "MM"],
    "NP": ["CN", "IN"],
    "BT": ["CN", "IN"],
    "LK": ["IN"],
    # Southeast Asia
    "MM": ["BD", "IN", "CN", "LA", "TH"],
    "TH": ["MM", "LA", "KH", "MY"],
    "LA": ["CN", "MM", "TH", "KH", "VN"],
    "VN": ["CN", "LA", "KH"],
    "KH": ["TH", "LA", "VN"],
    "MY": ["TH", "BN", "ID"],
    "ID": ["MY", "PG", "TL"],
    "PH": ["MY", "ID", "TW"],
    # East Asia
    "CN": ["KP", "KR", "MN", "RU", "KZ", "KG", "TJ", "AF", "PK", "IN", "NP", "BT", "MM", "LA", "VN"],
    "KP": ["CN", "KR", "RU"],
    "KR": ["KP", "JP"],
    "JP": ["KR"],
    "MN": ["CN", "RU"],
    # Europe
    "FR": ["ES", "AD", "BE", "LU", "DE", "CH", "IT", "MC"],
    "DE": ["DK", "PL", "CZ", "AT", "CH", "FR", "LU", "BE", "NL"],
    "IT": ["FR", "CH", "AT", "SI", "SM", "VA"],
    "ES": ["PT", "FR", "AD", "MA"],
    "PT": ["ES"],
    "PL": ["DE", "CZ", "SK", "UA", "BY", "LT", "RU"],
    "UA": ["PL", "SK", "HU", "RO", "MD", "RU", "BY"],
    "RU": ["NO", "FI", "EE", "LV", "LT", "PL", "BY", "UA", "GE", "AZ", "KZ", "CN", "MN", "KP"],
    "GR": ["AL", "MK", "BG", "TR"],
    "BG": ["RO", "RS", "MK", "GR", "TR"],
    "GB": ["IE"],
    "IE": ["GB"],
    # Americas
    "US": ["CA", "MX"],
    "CA": ["US"],
    "MX": ["US", "GT", "BZ"],
    "GT": ["MX", "BZ", "HN", "SV"],
    "BZ": ["MX", "GT"],
    "HN": ["GT", "SV", "NI"],
    "SV": ["GT", "HN"],
    "NI": ["HN", "CR"],
    "CR": ["NI", "PA"],
    "PA": ["CR", "CO"],
    "HT": ["DO"],
    "DO": ["HT"],
    "CO": ["PA", "VE", "BR", "PE", "EC"],
    "VE": ["CO", "BR", "GY"],
    "BR": ["VE", "GY", "SR", "GF", "UY", "AR", "PY", "BO", "PE", "CO"],
    "AR": ["CL", "BO", "PY", "BR", "UY"],
    "CL": ["PE", "BO", "AR"],
    "PE": ["EC", "CO", "BR", "BO", "CL"],
    "BO": ["PE", "BR", "PY", "AR", "CL"],
    "PY": ["BO", "BR", "AR"],
    "UY": ["BR", "AR"],
    "EC": ["CO", "PE"],
    # Oceania
    "AU": ["ID", "TL", "PG", "NZ"],
    "PG": ["ID", "AU"],
    "NZ": ["AU"],
}

# Country names and common aliases -> ISO code (lowercase, accents stripped)
COUNTRY_NAMES: dict[str, str] = {
    "afghanistan": "AF", "albania": "AL", "algeria": "DZ", "andorra": "AD", "angola": "AO",
    "antigua and barbuda": "AG", "argentina": "AR", "armenia": "AM", "australia": "AU", "austria": "AT",
    "azerbaijan": "AZ", "bahamas": "BS", "bahrain": "BH", "bangladesh": "BD", "barbados": "BB",
    "belarus": "BY", "belgium": "BE", "belize": "BZ", "benin": "BJ", "bhutan": "BT", "bolivia": "BO",
    "bosnia and herzegovina": "BA", "bosnia": "BA", "botswana": "BW", "brazil": "BR", "brunei": "BN",
    "bulgaria": "BG", "burkina faso": "BF", "burundi": "BI", "cabo verde": "CV", "cape verde": "CV",
    "cambodia": "KH", "cameroon": "CM", "canada": "CA", "central african republic": "CF", "chad": "TD",
    "chile": "CL", "china": "CN", "colombia": "CO", "comoros": "KM", "republic of the congo": "CG",
    "democratic republic of the congo": "CD", "dr congo": "CD", "drc": "CD", "congo": "CG",
    "costa rica": "CR", "cote d'ivoire": "CI", "ivory coast": "CI", "croatia": "HR", "cuba": "CU",
    "cyprus": "CY", "czech republic": "CZ", "czechia": "CZ", "denmark": "DK", "djibouti": "DJ",
    "dominica": "DM", "dominican republic": "DO", "ecuador": "EC", "egypt": "EG", "el salvador": "SV",
    "equatorial guinea": "GQ", "eritrea": "ER", "estonia": "EE", "eswatini": "SZ", "swaziland": "SZ",
    "ethiopia": "ET", "fiji": "FJ", "finland": "FI", "france": "FR", "french guiana": "GF", "gabon": "GA",
    "gambia": "GM", "republic of georgia": "GE", "germany": "DE", "ghana": "GH", "greece": "GR",
    "grenada": "GD", "guatemala": "GT", "guinea-bissau": "GW", "guinea": "GN", "guyana": "GY",
    "haiti": "HT", "honduras": "HN", "hong kong": "HK", "hungary": "HU", "iceland": "IS", "india": "IN",
    "indonesia": "ID", "iran": "IR", "iraq": "IQ", "ireland": "IE", "israel": "IL", "italy": "IT",
    "jamaica": "JM", "japan": "JP", "jordan": "JO", "kazakhstan": "KZ", "kenya": "KE", "kiribati": "KI",
    "kosovo": "XK", "kuwait": "KW", "kyrgyzstan": "KG", "laos": "LA", "latvia": "LV", "lebanon": "LB",
    "lesotho": "LS", "liberia": "LR", "libya": "LY", "liechtenstein": "LI", "lithuania": "LT",
    "luxembourg": "LU", "macau": "MO", "madagascar": "MG", "malawi": "MW", "malaysia": "MY",
    "maldives": "MV", "mali": "ML", "malta": "MT", "marshall islands": "MH", "mauritania": "MR",
    "mauritius": "MU", "mexico": "MX", "micronesia": "FM", "moldova": "MD", "monaco": "MC",
    "mongolia": "MN", "montenegro": "ME", "morocco": "MA", "mozambique": "MZ", "myanmar": "MM",
    "burma": "MM", "namibia": "NA", "nauru": "NR", "nepal": "NP", "netherlands": "NL",
    "new zealand": "NZ", "nicaragua": "NI", "niger": "NE", "nigeria": "NG", "north korea": "KP",
    "north macedonia": "MK", "macedonia": "MK", "norway": "NO", "oman": "OM", "pakistan": "PK",
    "palau": "PW", "palestine": "PS", "gaza": "PS", "west bank": "PS", "panama": "PA",
    "papua new guinea": "PG", "paraguay": "PY", "peru": "PE", "philippines": "PH", "poland": "PL",
    "portugal": "PT", "puerto rico": "PR", "qatar": "QA", "romania": "RO", "russia": "RU",
    "russian federation": "RU", "rwanda": "RW", "saint kitts and nevis": "KN", "saint lucia": "LC",
    "saint vincent and the grenadines": "VC", "samoa": "WS", "san marino": "SM",
    "sao tome and principe": "ST", "saudi arabia": "SA", "senegal": "SN", "serbia": "RS",
    "seychelles": "SC", "sierra leone": "SL", "singapore": "SG", "slovakia": "SK", "slovenia": "SI",
    "solomon islands": "SB", "somalia": "SO", "south africa": "ZA", "south korea": "KR",
    "korea": "KR", "south sudan": "SS", "spain": "ES", "sri lanka": "LK", "sudan": "SD",
    "suriname": "SR", "sweden": "SE", "switzerland": "CH", "syria": "SY", "taiwan": "TW",
    "tajikistan": "TJ", "tanzania": "TZ", "thailand": "TH", "timor-leste": "TL", "east timor": "TL",
    "togo": "TG", "tonga": "TO", "trinidad and tobago": "TT", "tunisia": "TN", "turkey": "TR",
    "turkiye": "TR", "turkmenistan": "TM", "tuvalu": "TV", "uganda": "UG", "ukraine": "UA",
    "united arab emirates": "AE", "uae": "AE", "united kingdom": "GB", "uk": "GB",
    "great britain": "GB", "england": "GB", "scotland": "GB", "wales": "GB",
    "united states of america": "US", "united states": "US", "usa": "US", "u.s.a.": "US",
    "u.s.": "US", "america": "US", "uruguay": "UY", "uzbekistan": "UZ", "vanuatu": "VU",
    "vatican city": "VA", "venezuela": "VE", "vietnam": "VN", "viet nam": "VN", "yemen": "YE",
    "zambia": "ZM", "zimbabwe": "ZW",
}

# "Georgia" alone is treated as the US state; the country needs "Republic of Georgia".
US_STATES: dict[str, str] = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "district of columbia": "DC",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID", "illinois": "IL",
    "indiana": "IN", "iowa": "IA", "kansas": "KS", "kentucky": "KY", "louisiana": "LA",
    "maine": "ME", "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK", "oregon": "OR",
    "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC", "south dakota": "SD",
    "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT", "virginia": "VA",
    "washington": "WA", "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
}

US_STATE_CODES = set(US_STATES.values())
KNOWN_CODES = set(COUNTRY_NAMES.values()) | {code for codes in REGION_MAP.values() for code in codes}


def _fold(text: str) -> str:
    """Lowercase and strip accents ("Türkiye" -> "turkiye")."""
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch)).lower().strip()


@lru_cache(maxsize=1)
def _place_patterns() -> list[tuple[re.Pattern, str]]:
    """Country and US-state name patterns, longest first so "new mexico" beats "mexico"."""
    places = {name: code for name, code in COUNTRY_NAMES.items()}
    places.update({name: "US" for name in US_STATES})
    ordered = sorted(places.items(), key=lambda item: len(item[0]), reverse=True)
    return [(re.compile(rf"(?<![\w.]){re.escape(name)}(?![\w])"), code) for name, code in ordered]


def resolve_country(value: Optional[str]) -> Optional[str]:
    """
    Resolve a crisis country (name, alias, or ISO code) to an ISO code.

    Args:
        value: "Turkey", "Türkiye", "TR", "USA", ...

    Returns:
        ISO 3166-1 alpha-2 code, or None if unknown
    """
    if not value:
        return None

    stripped = value.strip()
    if len(stripped) == 2 and stripped.upper() in KNOWN_CODES:
        return stripped.upper()

    folded = _fold(stripped)
    if folded in COUNTRY_NAMES:
        return COUNTRY_NAMES[folded]
    if folded in US_STATES:
        return "US"

    found = find_countries(stripped)
    return found[0] if len(found) == 1 else None


def find_countries(text: Optional[str]) -> list[str]:
    """
    Find every country referenced by a free-text location or description.

    Matches country names/aliases and US state names anywhere in the text,
    plus a trailing two-letter token ("Austin, TX" -> US, "Lyon, FR" -> FR).

    Args:
        text: Location text such as "Istanbul, Turkey" or "New York, NY 10001"

    Returns:
        ISO codes in order of first appearance, deduplicated
    """
    if not text:
        return []

    folded = _fold(text)
    found: list[tuple[int, str]] = []

    for pattern, code in _place_patterns():
        for match in pattern.finditer(folded):
            found.append((match.start(), code))
        # Blank out matched spans so shorter names cannot re-match inside them
        folded = pattern.sub(lambda m: " " * len(m.group(0)), folded)

    trailing = _trailing_code(text)
    if trailing:
        found.append((len(text), trailing))

    codes: list[str] = []
    for _, code in sorted(found):
        if code not in codes:
            codes.append(code)
    return codes


def _trailing_code(text: str) -> Optional[str]:
    """Country for a trailing "ST" or "ST 12345" token in an address."""
    last_part = text.split(",")[-1].strip()
    match = re.match(r"^([A-Z]{2})(?:\s+\d{5}(?:-\d{4})?)?$", last_part)
    if not match:
        return None
    token = match.group(1)
    if token in US_STATE_CODES:
        return "US"
    if token in KNOWN_CODES:
        return token
    return None


def mentions_place(text: Optional[str], place: Optional[str]) -> bool:
    """Whole-word, accent-insensitive check that text mentions a place name."""
    if not text or not place:
        return False
    needle = _fold(place)
    if not needle:
        return False
    return re.search(rf"(?<![\w]){re.escape(needle)}(?![\w])", _fold(text)) is not None


def get_regions(country_code: str) -> list[str]:
    """
    Get the macro-region(s) a country belongs to.

    Args:
        country_code: ISO 2-letter country code

    Returns:
        List of region names the country belongs to
    """
    upper_code = country_code.upper()
    return [region for region, countries in REGION_MAP.items() if upper_code in countries]


def are_in_same_region(country1: str, country2: str) -> bool:
    """Check if two countries share at least one macro-region."""
    regions1 = get_regions(country1)
    regions2 = get_regions(country2)
    return any(region in regions2 for region in regions1)


def get_neighboring_countries(country_code: str) -> list[str]:
    """Get the neighbors of a country (ISO codes)."""
    return NEIGHBORING_COUNTRIES.get(country_code.upper(), [])


def are_neighbors(country1: str, country2: str) -> bool:
    """Check if two countries are neighbors, in either direction of the table."""
    code1 = country1.upper()
    code2 = country2.upper()
    return code2 in NEIGHBORING_COUNTRIES.get(code1, []) or code1 in NEIGHBORING_COUNTRIES.get(code2, [])
