"""Validation utilities for tenant identifiers and contact data."""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import phonenumbers


@dataclass
class ValidationError:
    """Validation error details."""
    field: str
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


def normalize_host(host: Optional[str]) -> Optional[str]:
    """Lowercase a host name and strip any port and trailing dot."""
    if not host:
        return None
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal, never a tenant host
        return None
    host = host.split(":", 1)[0].rstrip(".")
    return host or None


class SubdomainValidator:
    """Validator for tenant subdomains (a single DNS label)."""

    SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61}[a-z0-9])$")

    @classmethod
    def normalize(cls, subdomain: str) -> str:
        return subdomain.strip().lower()

    @classmethod
    def validate(cls, subdomain: Optional[str], reserved: List[str]) -> List[ValidationError]:
        """Validate subdomain format and reservation."""
        errors = []

        if not subdomain:
            errors.append(ValidationError(
                field="subdomain",
                code="SUBDOMAIN_REQUIRED",
                message="Subdomain is required"
            ))
            return errors

        if not cls.SUBDOMAIN_PATTERN.match(subdomain):
            errors.append(ValidationError(
                field="subdomain",
                code="INVALID_SUBDOMAIN_FORMAT",
                message="Subdomain must be 3-63 lowercase letters, digits or hyphens, "
                        "and may not start or end with a hyphen",
                details={"provided": subdomain}
            ))

        if subdomain in reserved:
            errors.append(ValidationError(
                field="subdomain",
                code="RESERVED_SUBDOMAIN",
                message=f"Subdomain '{subdomain}' is reserved",
                details={"provided": subdomain}
            ))

        return errors


class DomainValidator:
    """Validator for tenant custom domains."""

    LABEL_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")

    @classmethod
    def validate(cls, domain: Optional[str], base_domain: str) -> List[ValidationError]:
        """Validate a fully qualified custom domain."""
        errors = []

        if not domain:
            return errors

        labels = domain.split(".")
        if (
            len(domain) > 253
            or len(labels) < 2
            or not all(cls.LABEL_PATTERN.match(label) for label in labels)
            or labels[-1].isdigit()
        ):
            errors.append(ValidationError(
                field="custom_domain",
                code="INVALID_DOMAIN_FORMAT",
                message="Custom domain must be a fully qualified host name",
                details={"provided": domain}
            ))
            return errors

        if domain == base_domain or domain.endswith("." + base_domain):
            errors.append(ValidationError(
                field="custom_domain",
                code="PLATFORM_DOMAIN_NOT_ALLOWED",
                message="Custom domain may not be under the platform domain",
                details={"provided": domain, "base_domain": base_domain}
            ))

        return errors


class PhoneValidator:
    """Validator for phone numbers."""

    @classmethod
    def validate(cls, phone: Optional[str], country_code: Optional[str] = None) -> List[ValidationError]:
        """Validate phone number format."""
        errors = []

        if not phone:
            return errors

        try:
            parsed = phonenumbers.parse(phone, country_code)

            if not phonenumbers.is_valid_number(parsed):
                errors.append(ValidationError(
                    field="phone",
                    code="INVALID_PHONE_NUMBER",
                    message="Invalid phone number format",
                    details={"provided": phone}
                ))

        except phonenumbers.NumberParseException as e:
            errors.append(ValidationError(
                field="phone",
                code="PHONE_PARSE_ERROR",
                message=f"Failed to parse phone number: {e}",
                details={"provided": phone, "error": str(e)}
            ))

        return errors

    @classmethod
    def format_international(cls, phone: str, country_code: Optional[str] = None) -> Optional[str]:
        """Format phone number in international format."""
        try:
            parsed = phonenumbers.parse(phone, country_code)
        except phonenumbers.NumberParseException:
            return None
        if phonenumbers.is_valid_number(parsed):
            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.INTERNATIONAL)
        return None


class EmailValidator:
    """Validator for email addresses."""

    EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

    @classmethod
    def validate(cls, email: Optional[str]) -> List[ValidationError]:
        """Validate email format."""
        errors = []

        if not email:
            return errors

        if not cls.EMAIL_PATTERN.match(email):
            errors.append(ValidationError(
                field="email",
                code="INVALID_EMAIL_FORMAT",
                message="Invalid email address format",
                details={"provided": email}
            ))

        if len(email) > 255:
            errors.append(ValidationError(
                field="email",
                code="EMAIL_TOO_LONG",
                message="Email address too long (max 255 characters)",
                details={"provided_length": len(email)}
            ))

        return errors
