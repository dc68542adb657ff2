"""Password hashing, policy validation and random password generation."""

from __future__ import annotations

import re
import secrets

from aegisx.auth.models import PasswordValidationResult
from aegisx.core.config import PasswordPolicy
from aegisx.core.security import hash_password, verify_password

LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DIGITS = "0123456789"
SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"\d")
_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

_RANDOM = secrets.SystemRandom()


class PasswordService:
    """Password utility bound to a work factor and a default policy."""

    def __init__(self, *, rounds: int, policy: PasswordPolicy | None = None) -> None:
        if rounds < 1:
            raise ValueError("rounds must be positive")
        self._rounds = rounds
        self._policy = policy or PasswordPolicy()

    @property
    def policy(self) -> PasswordPolicy:
        return self._policy

    def hash(self, plaintext: str) -> str:
        """Return a new, independently salted hash."""
        return hash_password(plaintext, self._rounds)

    def compare(self, plaintext: str, stored_hash: str) -> bool:
        """Check plaintext against a stored hash; malformed hashes never match."""
        return verify_password(plaintext, stored_hash)

    def validate(
        self, plaintext: str, policy: PasswordPolicy | None = None
    ) -> PasswordValidationResult:
        """Check every enabled rule and report all violations at once."""
        rules = policy or self._policy
        errors: list[str] = []

        if len(plaintext) < rules.min_length:
            errors.append(f"Password must be at least {rules.min_length} characters long")
        if rules.max_length is not None and len(plaintext) > rules.max_length:
            errors.append(f"Password must not exceed {rules.max_length} characters")
        if rules.require_uppercase and not _UPPER_RE.search(plaintext):
            errors.append("Password must contain at least one uppercase letter")
        if rules.require_lowercase and not _LOWER_RE.search(plaintext):
            errors.append("Password must contain at least one lowercase letter")
        if rules.require_numbers and not _DIGIT_RE.search(plaintext):
            errors.append("Password must contain at least one number")
        if rules.require_special_chars and not _SPECIAL_RE.search(plaintext):
            errors.append("Password must contain at least one special character")

        return PasswordValidationResult(is_valid=not errors, errors=errors)

    @staticmethod
    def generate_random(length: int = 12) -> str:
        """Generate a password holding at least one char of every class.

        Lengths below 4 cannot satisfy that guarantee and raise ``ValueError``.
        """
        if length < 4:
            raise ValueError("length must be at least 4")
        chars = [
            secrets.choice(LOWERCASE),
            secrets.choice(UPPERCASE),
            secrets.choice(DIGITS),
            secrets.choice(SPECIAL_CHARS),
        ]
        alphabet = LOWERCASE + UPPERCASE + DIGITS + SPECIAL_CHARS
        chars.extend(secrets.choice(alphabet) for _ in range(length - 4))
        _RANDOM.shuffle(chars)
        return "".join(chars)

    @staticmethod
    def is_compromised(plaintext: str) -> bool:
        """Breach-database lookup hook; no backing service is wired yet."""
        return False
