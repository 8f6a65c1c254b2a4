"""Order core for the outlet-orders service.

Outlet matching and delivery fees live in :mod:`geo`, authoritative pricing in
:mod:`pricing`, the order state machine in :mod:`ledger`, provider calls in
:mod:`payment_gateway` and callback ingestion in :mod:`webhooks`.
"""
