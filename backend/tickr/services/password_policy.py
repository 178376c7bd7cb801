"""Password complexity rules applied on registration."""

from __future__ import annotations

from dataclasses import dataclass

from tickr.config import Settings

SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

WEAK_PATTERNS = (
    "password", "12345", "qwerty", "abc123", "letmein",
    "welcome", "monkey", "dragon", "master", "sunshine",
)


@dataclass(frozen=True)
class PasswordValidator:
    min_length: int = 12
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special_char: bool = True
    special_chars: str = SPECIAL_CHARS

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordValidator":
        return cls(
            min_length=settings.password_min_length,
            require_uppercase=settings.password_require_uppercase,
            require_lowercase=settings.password_require_lowercase,
            require_digit=settings.password_require_digit,
            require_special_char=settings.password_require_special_char,
        )

    def validate(self, password: str) -> list[str]:
        """Return the list of violated rules; empty means the password is acceptable."""
        errors: list[str] = []
        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters long")
        if self.require_uppercase and not any(c.isupper() for c in password):
            errors.append("Password must contain at least one uppercase letter")
        if self.require_lowercase and not any(c.islower() for c in password):
            errors.append("Password must contain at least one lowercase letter")
        if self.require_digit and not any(c.isdigit() for c in password):
            errors.append("Password must contain at least one digit")
        if self.require_special_char and not any(c in self.special_chars for c in password):
            errors.append(f"Password must contain at least one special character ({self.special_chars})")
        lowered = password.lower()
        if any(p in lowered for p in WEAK_PATTERNS):
            errors.append("Password contains common weak patterns")
        if has_sequential_chars(password):
            errors.append("Password contains sequential characters")
        return errors

    def requirements(self) -> str:
        parts = [f"At least {self.min_length} characters"]
        if self.require_uppercase:
            parts.append("One uppercase letter")
        if self.require_lowercase:
            parts.append("One lowercase letter")
        if self.require_digit:
            parts.append("One digit")
        if self.require_special_char:
            parts.append("One special character")
        return ", ".join(parts)


def has_sequential_chars(password: str) -> bool:
    """True for any run of three consecutive code points, ascending or descending ("abc", "321")."""
    for a, b, c in zip(password, password[1:], password[2:]):
        step1 = ord(b) - ord(a)
        step2 = ord(c) - ord(b)
        if step1 == step2 and step1 in (1, -1):
            return True
    return False
