"""
Cart, checkout and receipt storage pipeline for the scan-and-pay app.
"""
__version__ = "1.0.0"
