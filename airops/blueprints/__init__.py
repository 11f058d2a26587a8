"""
Airfield Operations Platform
Blueprint registry.
"""
