"""
Fiat conversion domain: rates, fees, eligibility, lifecycle and reporting.
"""
