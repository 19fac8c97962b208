"""
Sales Pipeline API.

HTTP surface over the referral, commission and lead pipeline core.
"""

__version__ = "1.0.0"
