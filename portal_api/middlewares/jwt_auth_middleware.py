from fastapi import Request, HTTPException, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from .jwt_auth import JWTAuthController
from ..src.auth.schema import UserRole, STAFF_ROLES

class JWTAuthMiddleware(BaseHTTPMiddleware):
    """Middleware for JWT authentication with httpOnly cookies"""

    def __init__(self, app):
        super().__init__(app)
        self.jwt_auth = JWTAuthController()

        # Routes that don't require authentication (prefix matching)
        self.public_routes = {
            "/",
            "/auth/login",
            "/auth/me",
            "/auth/refresh",
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
            "/stripe/webhook",  # Stripe signs its own requests
            "/quotes/accept",  # link in the quote email
            "/quotes/view",
            "/quotes/check-expiring",  # scheduler, guarded by the internal webhook secret
            "/wholesale/apply",
            "/shipping/track",  # share links
            "/shipping/tracking/refresh",  # scheduler, guarded by the internal webhook secret
            "/notifications/sms/send",  # guarded by the internal webhook secret
        }

        # Which roles may use a route family at all; finer checks live in the routes
        self.service_routes = {
            "/dashboard": STAFF_ROLES,
            "/production": STAFF_ROLES,
            "/shipping": STAFF_ROLES,
            "/invoices": STAFF_ROLES,
            "/catalog": STAFF_ROLES,
            "/customers": STAFF_ROLES,
            "/wholesale": STAFF_ROLES,
            "/portal": (UserRole.CUSTOMER,),
        }

    def _is_public(self, path: str) -> bool:
        return any(path == route or path.startswith(route + "/") for route in self.public_routes)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        if self._is_public(path):
            return await call_next(request)

        access_token = request.cookies.get(self.jwt_auth.access_token_cookie)
        if not access_token:
            # Bearer callers (scripts, tests, server-to-server) are validated in the route
            if request.headers.get("Authorization"):
                return await call_next(request)

            refresh_token = request.cookies.get(self.jwt_auth.refresh_token_cookie)
            if refresh_token and path != "/auth/refresh":
                try:
                    return await self._refresh_and_continue(request, call_next, refresh_token)
                except HTTPException:
                    pass

            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Authentication required"}
            )

        try:
            user = self.jwt_auth.verify_access_token(access_token)
        except HTTPException as e:
            refresh_token = request.cookies.get(self.jwt_auth.refresh_token_cookie)
            if e.status_code == status.HTTP_401_UNAUTHORIZED and refresh_token:
                try:
                    return await self._refresh_and_continue(request, call_next, refresh_token)
                except HTTPException:
                    pass
            return JSONResponse(status_code=e.status_code, content={"detail": e.detail})

        if request.method in ["POST", "PUT", "DELETE", "PATCH"]:
            csrf_token = request.headers.get("X-CSRF-Token")
            if not csrf_token:
                return JSONResponse(
                    status_code=status.HTTP_403_FORBIDDEN,
                    content={"detail": "CSRF token required"}
                )
            try:
                self.jwt_auth.verify_csrf_token(request, csrf_token)
            except HTTPException as e:
                return JSONResponse(status_code=e.status_code, content={"detail": e.detail})

        request.state.user = user

        if not self.check_service_permission(path, user):
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Insufficient permissions for this service"}
            )

        return await call_next(request)

    async def _refresh_and_continue(self, request: Request, call_next, refresh_token: str):
        """Silent refresh: mint a new access token and attach fresh cookies to the response"""
        from ..src.auth.controller import AuthController

        token_data = self.jwt_auth.verify_refresh_token(refresh_token)
        user_data = await AuthController().get_user_data_for_token(token_data["user_id"])

        new_access_token = self.jwt_auth.create_access_token(
            token_data["user_id"],
            user_data["role_entity_id"],
            user_data["role"],
            user_data["email"],
        )
        new_user = self.jwt_auth.verify_access_token(new_access_token)
        request.state.user = new_user

        if not self.check_service_permission(request.url.path, new_user):
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Insufficient permissions for this service"}
            )

        response = await call_next(request)
        self.jwt_auth.set_auth_cookies(response, new_access_token, refresh_token)
        return response

    def check_service_permission(self, path: str, user) -> bool:
        for route_prefix, roles in self.service_routes.items():
            if path == route_prefix or path.startswith(route_prefix + "/"):
                return user.role in roles
        return True
