import secrets

import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_quote_token() -> str:
    # 9 random bytes, hex encoded.
    return secrets.token_hex(9)


def generate_handoff_token(route_type: str) -> str:
    prefix = {
        "machine_sourcing": "MS",
        "white_label": "WL",
        "simple_sourcing": "SS",
    }.get(route_type, "LS")
    return f"{prefix}-{shortuuid.ShortUUID().random(length=8).upper()}"


def generate_short_token(length: int = 8) -> str:
    return shortuuid.ShortUUID().random(length=length).lower()
