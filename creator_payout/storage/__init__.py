"""
Storage layer: analytics, relational, ledger and job watermark stores.
"""
