"""
Course Payment server: course pages with Stripe and PayPal checkout.
"""
__version__ = "1.0.0"
