"""Stripe Checkout for order payments and the signed webhook that books them.

Import from submodules (``from .routes import router``); importing this
package does not touch the Stripe SDK.
"""
