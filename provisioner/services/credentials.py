"""Random credential generation.

Passwords are drawn with the ``secrets`` module from letters, digits and a
bounded punctuation subset. Characters rejected by Amazon RDS for master
passwords are never emitted, whatever punctuation the caller asks for.
"""

import secrets
import string
from typing import Optional

# Amazon RDS rejects these in master user passwords
RDS_EXCLUDED_CHARACTERS = frozenset('/@" ')

DEFAULT_SPECIAL = "!#$%&*()-_=+[]{}<>:?"

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def allowed_special(override_special: Optional[str] = None) -> str:
    """Punctuation that may appear in a generated password."""
    candidates = DEFAULT_SPECIAL if override_special is None else override_special
    seen = []
    for char in candidates:
        if (
            char in string.punctuation
            and char not in RDS_EXCLUDED_CHARACTERS
            and char not in seen
        ):
            seen.append(char)
    return "".join(seen)


def generate_password(
    length: int = 32,
    special: bool = True,
    override_special: Optional[str] = None,
) -> str:
    """Generate a secure random password.

    The result contains at least one lowercase letter, one uppercase
    letter, one digit and, when ``special`` is set and a usable punctuation
    set remains, one punctuation character.

    Raises:
        ValueError: if ``length`` is outside the supported range.
    """
    if length < MIN_PASSWORD_LENGTH or length > MAX_PASSWORD_LENGTH:
        raise ValueError(
            f"Password length must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH}"
        )

    punctuation = allowed_special(override_special) if special else ""
    alphabet = string.ascii_letters + string.digits + punctuation

    password = [
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.digits),
    ]
    if punctuation:
        password.append(secrets.choice(punctuation))
    password.extend(secrets.choice(alphabet) for _ in range(length - len(password)))
    secrets.SystemRandom().shuffle(password)
    return "".join(password)


def is_valid_password(value: str, length: int, special: bool = True,
                      override_special: Optional[str] = None) -> bool:
    """Check a stored password still satisfies its declared constraints."""
    if len(value) != length:
        return False
    allowed = set(string.ascii_letters + string.digits)
    if special:
        allowed.update(allowed_special(override_special))
    return all(char in allowed for char in value)
