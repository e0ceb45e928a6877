"""Shared lead ledger for parallel investigation workers.

Workers in separate processes coordinate through ``leads.json`` in the case
directory. Every mutation runs under an exclusive sentinel lock
(``leads.json.lock``) and bumps the document ``version``; claims are additive
fields on a pending lead and expire after a staleness threshold so a crashed
worker cannot hold a lead forever.
"""
