"""
Payment processor integration (Stripe credential resolution only).
"""
