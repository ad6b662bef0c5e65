"""
Core modules for Creator Payout.

This package contains the attribution formula, ownership resolution,
payout orchestration and the job registry.
"""
