"""Generated descriptions and purposes for new inventory records."""

from typing import Any, Dict, Optional

from ..audit.models.scan import UNKNOWN_PROVIDER

PURPOSE_IDS: Dict[str, int] = {
    'necessary': 1,
    'analytics': 2,
    'marketing': 3,
    'advertising': 4,
    'functional': 5,
    'functionality': 5,
    'personalization': 6,
    'social': 7,
    'performance': 8,
    'unknown': 0,
}

PURPOSE_NAMES: Dict[str, str] = {
    'necessary': 'Essential website functionality',
    'analytics': 'Measurement and performance analysis',
    'marketing': 'Targeted marketing and advertising',
    'advertising': 'Personalized advertising',
    'functional': 'Enhanced functionality',
    'functionality': 'Enhanced functionality',
    'personalization': 'Content personalization',
    'social': 'Social network integration',
    'performance': 'Performance optimization',
}

CATEGORY_USES: Dict[str, str] = {
    'necessary': 'essential functionality',
    'analytics': 'analytics and metrics',
    'marketing': 'marketing and advertising',
    'advertising': 'targeted advertising',
    'functional': 'additional functionality',
    'functionality': 'additional functionality',
    'personalization': 'personalization',
    'social': 'social features',
    'performance': 'performance optimization',
}


def _known(provider: Optional[str]) -> bool:
    return bool(provider) and provider != UNKNOWN_PROVIDER


def purpose_id(category: Optional[str]) -> int:
    return PURPOSE_IDS.get(category or 'unknown', 0)


def describe_cookie(name: str, provider: Optional[str], category: Optional[str]) -> Dict[str, Any]:
    """Auto-generated description document."""
    if _known(provider):
        use = CATEGORY_USES.get(category or '', 'an unidentified purpose')
        text = f"{provider} cookie used for {use}"
    else:
        text = f'Cookie "{name}" categorized as {category or "unknown"}'
    return {'en': text, 'auto': True}


def describe_purpose(category: Optional[str], provider: Optional[str]) -> Dict[str, Any]:
    """Purpose document with id, name and description."""
    name = PURPOSE_NAMES.get(category or '', 'Unidentified purpose')
    if _known(provider):
        name = f"{name} ({provider})"
    return {'id': purpose_id(category), 'name': name, 'description': name}
