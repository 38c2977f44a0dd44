"""Parsing of bank notification emails into structured payments."""

from .email_parser import EmailParser
from .extraction import first_group_or_match, parse_amount

__all__ = ["EmailParser", "first_group_or_match", "parse_amount"]
