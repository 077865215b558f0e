"""
NTEE (National Taxonomy of Exempt Entities) Code Mapper.

Maps NTEE codes to human-readable categories for charities, and normalizes
the directory's free-form category text so the reranker can compare
categories (diversity rule) and read cause signals from them.
NTEE is the standard classification system used by the IRS and nonprofit databases.
"""

import re
from typing import Optional

# Major NTEE categories (first letter)
NTEE_MAJOR_CATEGORIES = {
    "A": "Arts, Culture & Humanities",
    "B": "Education",
    "C": "Environment",
    "D": "Animal-Related",
    "E": "Health Care",
    "F": "Mental Health & Crisis Intervention",
    "G": "Diseases, Disorders & Medical Disciplines",
    "H": "Medical Research",
    "I": "Crime & Legal-Related",
    "J": "Employment",
    "K": "Food, Agriculture & Nutrition",
    "L": "Housing & Shelter",
    "M": "Public Safety, Disaster Preparedness & Relief",
    "N": "Recreation & Sports",
    "O": "Youth Development",
    "P": "Human Services",
    "Q": "International, Foreign Affairs & National Security",
    "R": "Civil Rights, Social Action & Advocacy",
    "S": "Community Improvement & Capacity Building",
    "T": "Philanthropy, Voluntarism & Grantmaking Foundations",
    "U": "Science & Technology",
    "V": "Social Science",
    "W": "Public & Societal Benefit",
    "X": "Religion-Related",
    "Y": "Mutual & Membership Benefit",
    "Z": "Unknown",
}


# Detailed NTEE subcategories for crisis-relevant codes
NTEE_DETAILED_CATEGORIES = {
    # Public Safety, Disaster Preparedness & Relief (M)
    "M20": "Disaster Preparedness & Relief Services",
    "M23": "Search & Rescue Squads",
    "M24": "Fire Prevention",
    "M40": "Safety Education",
    # International (Q)
    "Q30": "International Development",
    "Q33": "International Relief",
    "Q70": "International Migration & Refugee Issues",
    "Q71": "International Migration & Refugee Issues",
    # Human Services (P)
    "P20": "Human Service Organizations",
    "P30": "Children & Youth Services",
    "P40": "Family Services",
    "P60": "Emergency Assistance",
    "P61": "Travelers' Aid",
    "P62": "Victims' Services",
    # Food (K)
    "K30": "Food Programs",
    "K31": "Food Banks & Pantries",
    "K34": "Congregate Meals",
    # Housing (L)
    "L40": "Temporary Housing",
    "L41": "Homeless Shelters",
    # Health (E)
    "E20": "Hospitals & Primary Medical Care",
    "E30": "Ambulatory Health Centers & Clinics",
    "E60": "Health Support Services",
    "E61": "Blood Banks",
    "E62": "Emergency Medical Services & Transport",
    "E70": "Public Health",
    # Philanthropy (T)
    "T20": "Private Grantmaking Foundations",
    "T30": "Public Foundations",
    "T70": "Federated Giving Programs",
    "T90": "Named Trusts",
    # Unknown/Unclassified
    "Z99": "Unknown",
}


# Directory category phrasing -> canonical category key
CATEGORY_SYNONYMS = {
    "disaster relief": "disaster-relief",
    "disaster-relief": "disaster-relief",
    "disaster preparedness & relief": "disaster-relief",
    "disaster preparedness & relief services": "disaster-relief",
    "public safety, disaster preparedness & relief": "disaster-relief",
    "emergency relief": "disaster-relief",
    "humanitarian aid": "humanitarian",
    "humanitarian": "humanitarian",
    "international relief": "humanitarian",
    "refugees": "refugees",
    "refugee support": "refugees",
    "international migration & refugee issues": "refugees",
    "food security": "food-security",
    "hunger": "food-security",
    "food banks": "food-security",
    "food banks & pantries": "food-security",
    "health": "health",
    "medical": "health",
    "housing": "housing",
    "homeless shelters": "housing",
}


def get_ntee_category(ntee_code: Optional[str]) -> Optional[str]:
    """
    Get human-readable category from NTEE code.

    Priority:
    1. Exact match in detailed categories (e.g., "M20" -> "Disaster Preparedness & Relief Services")
    2. Major category match (e.g., "M99" -> "Public Safety, Disaster Preparedness & Relief")
    3. None if code is invalid or missing

    Args:
        ntee_code: NTEE code (e.g., "M20", "Q33", "P60")

    Returns:
        Human-readable category string or None

    Examples:
        >>> get_ntee_category("Q33")
        "International Relief"
        >>> get_ntee_category("M99")
        "Public Safety, Disaster Preparedness & Relief"
        >>> get_ntee_category("Z99")
        "Unknown"
    """
    if not ntee_code:
        return None

    ntee_code = ntee_code.strip().upper()
    if not ntee_code:
        return None

    if ntee_code in NTEE_DETAILED_CATEGORIES:
        return NTEE_DETAILED_CATEGORIES[ntee_code]

    # Fall back to major category (first letter)
    major_code = ntee_code[0]
    if major_code in NTEE_MAJOR_CATEGORIES:
        return NTEE_MAJOR_CATEGORIES[major_code]

    return None


def get_ntee_description(ntee_code: Optional[str]) -> Optional[str]:
    """
    Get detailed description including both major and subcategory.

    Args:
        ntee_code: NTEE code (e.g., "M20", "Q33")

    Returns:
        Description like "International, Foreign Affairs & National Security: International Relief"

    Examples:
        >>> get_ntee_description("M20")
        "Public Safety, Disaster Preparedness & Relief: Disaster Preparedness & Relief Services"
    """
    if not ntee_code:
        return None

    ntee_code = ntee_code.strip().upper()
    if not ntee_code:
        return None

    subcategory = NTEE_DETAILED_CATEGORIES.get(ntee_code)
    major_category = NTEE_MAJOR_CATEGORIES.get(ntee_code[0])

    if subcategory and major_category:
        if subcategory != major_category:
            return f"{major_category}: {subcategory}"
        return subcategory
    elif subcategory:
        return subcategory
    elif major_category:
        return major_category

    return None


def normalize_category(category_text: Optional[str], ntee_code: Optional[str] = None) -> Optional[str]:
    """
    Canonical category key for a directory record.

    The directory's category text wins; the NTEE code is the fallback.
    Unknown phrasing is slugified so equal phrasing still compares equal.

    Examples:
        >>> normalize_category("Disaster Relief")
        "disaster-relief"
        >>> normalize_category(None, "Q33")
        "humanitarian"
        >>> normalize_category("  Animal Welfare ")
        "animal-welfare"
        >>> normalize_category(None, None)
        None
    """
    for text in (category_text, get_ntee_category(ntee_code)):
        if not text:
            continue
        lowered = re.sub(r"\s+", " ", text.strip().lower())
        if not lowered or lowered == "unknown":
            continue
        if lowered in CATEGORY_SYNONYMS:
            return CATEGORY_SYNONYMS[lowered]
        slug = re.sub(r"[^a-z0-9]+", "-", lowered).strip("-")
        if slug:
            return slug

    return None
