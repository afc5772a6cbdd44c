"""
Donor Sync Service

Reconciles a local donor roster against a Mollie account:
- One customer per donor
- One SEPA direct-debit mandate per customer
- One monthly subscription per customer

Only what is missing is created, so repeated runs are safe.
"""

__version__ = "0.1.0"
