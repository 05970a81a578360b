"""Presentable route and stop names from raw feed strings."""


def _title(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def _clean(raw: str) -> str:
    return raw.upper().replace('"', "")


def route_display_name(raw: str) -> str:
    """
    Normalize a route long name.

    Each hyphen-separated segment (usually a terminus) is title-cased on its own,
    e.g. ``"ст. м. \"ПАРНАС\" - КУПЧИНО"`` becomes ``"Ст. М. Парнас-Купчино"``.
    """
    return "-".join(_title(segment) for segment in _clean(raw).split("-"))


def stop_display_name(raw: str) -> str:
    """Normalize a stop name."""
    return _title(_clean(raw))
