"""Storage, ledger, notification and webhook pipeline services.

Import from the submodules directly; this package does not re-export them.
"""
