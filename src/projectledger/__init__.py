"""Project tracking and billing: phases, tracking codes, invoices and payments."""

__version__ = "0.1.0"
