import re

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def only_digits(value: str | None) -> str:
    return re.sub(r"\D+", "", value or "")


def validate_cpf(cpf: str | None) -> bool:
    digits = only_digits(cpf)
    if len(digits) != 11:
        return False
    if digits == digits[0] * 11:
        return False

    def _calc_digit(digs: str, factor: int) -> str:
        total = 0
        for idx, char in enumerate(digs):
            total += int(char) * (factor - idx)
        remainder = total % 11
        return "0" if remainder < 2 else str(11 - remainder)

    first = _calc_digit(digits[:9], 10)
    second = _calc_digit(digits[:9] + first, 11)
    return digits[-2:] == first + second


def validate_email(email: str | None) -> bool:
    value = (email or "").strip()
    return bool(value) and len(value) <= 255 and bool(_EMAIL_RE.match(value))


def normalize_cpf(cpf: str | None) -> str:
    return only_digits(cpf)


def normalize_phone(phone: str | None) -> str:
    return only_digits(phone)


def normalize_cep(cep: str | None) -> str:
    return only_digits(cep)[:8]


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()
