"""
Services Package

Repositories for ledger entries (services.ledger), budget settings
(services.profile) and recurring rules (services.recurring), layered
over the storage package (services.storage).

Import from the submodules directly. The audit logger depends on
services.storage, and the repositories depend on the audit logger,
so this package re-exports nothing.
"""
