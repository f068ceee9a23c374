"""SarkariPulse service layer.

The extraction pipeline lives in :mod:`src.services.extraction`; import
from there directly.
"""
