"""Shared validation utilities"""

import re
from typing import Optional

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
HEX_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")
E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a phone number to E.164 format.

    Ten-digit numbers are treated as US numbers.

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    stripped = phone.strip()
    digits = re.sub(r"\D", "", stripped)

    if not stripped.startswith("+"):
        if len(digits) == 10:
            digits = f"1{digits}"
        elif not (len(digits) == 11 and digits.startswith("1")):
            raise ValueError("Phone number must include a country code (e.g. +15551234567)")

    normalized = f"+{digits}"
    if not E164_PATTERN.match(normalized):
        raise ValueError("Invalid phone number")
    return normalized


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def slugify(value: str) -> str:
    """'Acme Corp, Inc.' -> 'acme-corp-inc'"""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:100]


def validate_slug(slug: Optional[str]) -> Optional[str]:
    if slug is None:
        return slug
    slug = slug.strip().lower()
    if not slug or len(slug) > 100 or not SLUG_PATTERN.match(slug):
        raise ValueError("Slug may only contain lowercase letters, digits and single hyphens")
    return slug


def validate_hex_color(color: Optional[str]) -> Optional[str]:
    if not color:
        return color
    if not HEX_COLOR_PATTERN.match(color):
        raise ValueError("Color must be a hex value like #1e40af")
    return color.lower()


def validate_https_url(url: Optional[str]) -> Optional[str]:
    """Outbound webhook targets must be absolute https URLs"""
    if not url:
        return url
    url = url.strip()
    if not re.match(r"^https://[^\s/$.?#][^\s]*$", url, re.IGNORECASE):
        raise ValueError("URL must start with https://")
    return url
