from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
WHOLE_QUANT = Decimal("1")
ZERO_MONEY = Decimal("0.00")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_whole_naira(value: Decimal | int | float | str | None) -> Decimal:
    """Rounds half up to the nearest whole unit, matching how amounts are charged."""
    return to_decimal(value).quantize(WHOLE_QUANT, rounding=ROUND_HALF_UP)


def naira_to_kobo(value: Decimal | int | float | str) -> int:
    return int(to_whole_naira(to_decimal(value) * 100))


def kobo_to_naira(value: int | str | None) -> Decimal:
    return to_money(to_decimal(value) / 100)
