# portal_api/router_config.py
"""
Router configuration for the order portal
Centralized router management separated from main.py
"""

def setup_routers(app):
    """Configure all application routers"""

    from .src.auth.routes import router as auth_router
    from .src.customers.routes import router as customers_router
    from .src.catalog.routes import router as catalog_router
    from .src.orders.routes import router as orders_router
    from .src.quotes.routes import router as quotes_router
    from .src.production.routes import router as production_router
    from .src.invoices.routes import router as invoices_router
    from .src.documents.routes import router as documents_router
    from .src.stripe.routes import router as stripe_router
    from .src.shipping.routes import router as shipping_router
    from .src.wholesale.routes import router as wholesale_router
    from .src.notifications.routes import router as notifications_router
    from .src.portal.routes import router as portal_router
    from .src.dashboard.routes import router as dashboard_router

    # Core authentication and user management
    app.include_router(auth_router, tags=["Authentication"])
    app.include_router(customers_router, tags=["Customers"])
    app.include_router(wholesale_router, tags=["Wholesale"])

    # Orders and fulfilment
    app.include_router(catalog_router, tags=["Catalog"])
    app.include_router(orders_router, tags=["Orders"])
    app.include_router(quotes_router, tags=["Quotes"])
    app.include_router(production_router, tags=["Production"])
    app.include_router(shipping_router, tags=["Shipping"])

    # Billing and payments
    app.include_router(invoices_router, tags=["Invoices"])
    app.include_router(stripe_router, tags=["Payments"])
    app.include_router(documents_router, tags=["Documents"])

    # Communication services
    app.include_router(notifications_router, tags=["Notifications"])

    # Staff and customer views
    app.include_router(dashboard_router, tags=["Dashboard"])
    app.include_router(portal_router, tags=["Customer Portal"])

    return app
