"""
Creator Payout.

Attributes generation costs to the resources a job used and pays the
owning creators once per day.
"""

__version__ = "0.1.0"
