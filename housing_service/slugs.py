import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """
    Lowercase ``text`` and collapse every run of non-alphanumerics into a
    single hyphen, trimming hyphens at both ends.

    ``slugify(slugify(x)) == slugify(x)`` for any input.

    >>> slugify("Founders Hall")
    'founders-hall'
    """
    return _NON_ALNUM.sub("-", str(text).lower()).strip("-")
