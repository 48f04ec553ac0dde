import re


def normalize_type(deal_type):
    """Map a partner product type onto TEST/PACKAGE/PROFILE"""
    if not deal_type:
        return 'TEST'
    value = str(deal_type).lower()
    if value in ('package', 'combo'):
        return 'PACKAGE'
    if value == 'profile':
        return 'PROFILE'
    return 'TEST'


def slugify_name(name):
    """
    Lowercase slug with runs of non-alphanumerics collapsed to a dash

    Examples:
    - "Full Body Checkup" -> "full-body-checkup"
    - "  Vitamins & Minerals!" -> "vitamins-minerals"
    """
    slug = re.sub(r'[^a-z0-9]+', '-', (name or '').lower())
    return slug.strip('-')
