"""Verification layer: independent verifiers, termination gates and gap digests.

Everything here only reads the case directory (apart from the reports it
writes under ``control/``), so it is safe to run alongside ledger mutation.
Verifier and gate failures are turned into data, never propagated.
"""
