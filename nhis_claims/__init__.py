"""
NHIS Claims Core
================

Claim and batch lifecycle state machines plus the financial reconciliation
engine for a national health insurance scheme.

This package tracks facility claims through TPA review, groups them into
batches, and settles closed batches through advance payments and
reimbursements without double-paying any batch.
"""

__version__ = "0.1.0"
__author__ = "NHIS Claims"
