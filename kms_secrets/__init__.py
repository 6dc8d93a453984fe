"""
Provision per-region AWS KMS keys for a secrets file and inventory their grants.
"""

__version__ = '0.1.0'
