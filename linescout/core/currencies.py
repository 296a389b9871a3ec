SUPPORTED_CURRENCY_CATALOG: list[tuple[str, str]] = [
    ("NGN", "Nigerian Naira"),
    ("RMB", "Chinese Yuan Renminbi"),
    ("USD", "US Dollar"),
]

SUPPORTED_CURRENCY_CODES = {code for code, _name in SUPPORTED_CURRENCY_CATALOG}

# CNY and RMB refer to the same currency; rates are stored under RMB.
_CURRENCY_ALIASES = {"CNY": "RMB"}


def normalize_currency_code(value: str) -> str:
    code = (value or "").strip().upper()
    return _CURRENCY_ALIASES.get(code, code)
