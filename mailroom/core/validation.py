"""
Input Validation Utilities

- Subscriber and sender email addresses (email-validator)
- Idempotency keys
"""
import re

from email_validator import EmailNotValidError, validate_email


class ValidationPatterns:
    """Regex patterns for validation"""

    # Anything printable, no control characters
    IDEMPOTENCY_KEY = re.compile(r"^[^\x00-\x1f\x7f]+$")


class EmailValidator:
    """Email address syntax checks and masking for logs"""

    @staticmethod
    def validate(email: str) -> bool:
        """
        Check the address syntax only; the domain is never looked up.

        Quoted local parts, domain literals and internationalized addresses
        are accepted.
        """
        if not email:
            return False
        try:
            validate_email(
                email,
                check_deliverability=False,
                allow_quoted_local=True,
                allow_domain_literal=True,
            )
        except EmailNotValidError:
            return False
        return True

    @staticmethod
    def mask(email: str) -> str:
        """
        Mask email address for logging (privacy).

        Returns:
            Masked address (e.g., jo***@example.com)
        """
        if not email or "@" not in email:
            return "****"
        local, _, domain = email.rpartition("@")
        return f"{local[:2]}***@{domain}"
