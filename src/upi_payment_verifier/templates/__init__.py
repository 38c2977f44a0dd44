"""Bank email template configuration.

Templates describe, per payment provider, where the amount, reference and VPA
fields live in a confirmation email.
"""

from .registry import DEFAULT_BANK_TEMPLATES, TemplateRegistry, default_registry, load_templates_file

__all__ = ["DEFAULT_BANK_TEMPLATES", "TemplateRegistry", "default_registry", "load_templates_file"]
