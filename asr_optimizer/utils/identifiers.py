import re

_WHITESPACE = re.compile(r"\s")


def format_user_id(user_id: str) -> str:
    """
    Recover an E.164-style identifier that lost its leading "+" in transit.

    Query-string decoding turns "+" into a space and some CLI tools drop it
    entirely, so: every whitespace char becomes "+", one trailing "+" is
    stripped, and a leading "+" is added when missing.
    """
    value = _WHITESPACE.sub("+", str(user_id or ""))
    if value.endswith("+"):
        value = value[:-1]
    if value and not value.startswith("+"):
        value = "+" + value
    return value
