"""Services for the ledger kernel (write side).

Import concrete services from their modules; this package stays import-light
because models/ pulls SequenceCounter from services.sequence_service.
"""
