"""Tool Gateway - FastAPI Application.

Exposes registry procedures that opted in as tools:
- GET  /tools/list        paginated discovery
- GET  /tools/describe    single tool descriptor
- POST /tools/invoke      invocation
- GET|POST /tools/{name}  per-tool invocation alias
- POST|DELETE /session    bearer token to session cookie exchange
- GET  /.well-known/oauth-protected-resource
"""

import hashlib
import json
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import Settings, get_settings
from shared.logging import bind_request, clear_context, get_logger, setup_logging
from shared.models import Principal
from rpc_registry.dispatcher import RpcDispatcher
from rpc_registry.examples import register_examples
from rpc_registry.permissions import RolePermissionPredicate
from rpc_registry.registry import MethodRegistry
from tool_gateway.audit import AuditLogger
from tool_gateway.controller import GatewayController
from tool_gateway.discovery import DISCOVERY_CACHE_TAG, ToolDiscoveryService
from tool_gateway.errors import InvalidJsonError, ToolGatewayError, ToolNotFoundError
from tool_gateway.identity import SESSION_COOKIE, PrincipalResolver, SessionStore
from tool_gateway.interfaces import CallDispatcher, TokenStore
from tool_gateway.normalizer import ToolNormalizer
from tool_gateway.oauth import ACCEPTED_SCOPES_HEADER, CURRENT_SCOPES_HEADER, OAuthGate
from tool_gateway.resource_metadata import ScopeCatalog, build_resource_metadata, warn_unknown_scopes
from tool_gateway.routes import RouteTable
from tool_gateway.tokens import InMemoryTokenStore, JWTTokenStore

logger = get_logger(__name__)

VERSION = "0.1.0"
NO_STORE = "no-store"


@dataclass
class GatewayServices:
    """Everything a request handler needs, wired once at startup."""
    settings: Settings
    registry: MethodRegistry
    permissions: RolePermissionPredicate
    token_store: TokenStore
    resolver: PrincipalResolver
    discovery: ToolDiscoveryService
    controller: GatewayController
    routes: RouteTable
    audit_logger: AuditLogger


def create_token_store(settings: Settings) -> TokenStore:
    """Token store selected by configuration."""
    oauth = settings.oauth
    if oauth.token_backend == "memory":
        return InMemoryTokenStore(default_ttl_minutes=oauth.token_expire_minutes)
    if oauth.token_backend == "jwt":
        return JWTTokenStore(
            secret_key=oauth.secret_key,
            algorithm=oauth.algorithm,
            token_expire_minutes=oauth.token_expire_minutes,
        )
    raise ValueError(f"Unknown token backend: {oauth.token_backend}")


def build_services(
    settings: Settings,
    registry: Optional[MethodRegistry] = None,
    token_store: Optional[TokenStore] = None,
    dispatcher: Optional[CallDispatcher] = None,
    permissions: Optional[RolePermissionPredicate] = None,
    audit_logger: Optional[AuditLogger] = None
) -> GatewayServices:
    """
    Wire the gateway from settings and optional collaborator overrides.

    Args:
        settings: Application settings
        registry: Method registry; a new one (with the examples when
            configured) is created if omitted
        token_store: OAuth token store; chosen from settings if omitted
        dispatcher: Inner call dispatcher; an RpcDispatcher if omitted
        permissions: Permission predicate; role based from settings if omitted
        audit_logger: Audit logger; created from settings if omitted
    """
    gateway = settings.gateway

    if registry is None:
        registry = MethodRegistry()
        if gateway.load_examples:
            register_examples(registry)

    permissions = permissions or RolePermissionPredicate(settings.role_permissions)
    token_store = token_store or create_token_store(settings)
    dispatcher = dispatcher or RpcDispatcher(registry, permissions)
    audit_logger = audit_logger or AuditLogger(
        log_path=gateway.audit_log_path,
        enabled=gateway.enable_audit
    )

    discovery = ToolDiscoveryService(
        registry,
        permissions,
        cache_enabled=gateway.discovery_cache_enabled
    )
    controller = GatewayController(
        discovery=discovery,
        normalizer=ToolNormalizer(registry),
        gate=OAuthGate(token_store, permissions, realm=gateway.realm),
        dispatcher=dispatcher,
        audit_logger=audit_logger,
        page_size=gateway.page_size,
        invoke_timeout=gateway.invoke_timeout_seconds,
    )

    warn_unknown_scopes(registry, ScopeCatalog(settings.scopes))

    return GatewayServices(
        settings=settings,
        registry=registry,
        permissions=permissions,
        token_store=token_store,
        resolver=PrincipalResolver(token_store, settings.users, SessionStore()),
        discovery=discovery,
        controller=controller,
        routes=RouteTable(registry),
        audit_logger=audit_logger,
    )


def create_app(services: Optional[GatewayServices] = None) -> FastAPI:
    """
    Create the FastAPI application.

    When ``services`` is given it is used as is; otherwise the services are
    built from settings during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            settings = get_settings()
            setup_logging(
                settings.log_level,
                json_output=settings.environment == "production",
                environment=settings.environment
            )
            app.state.services = build_services(settings)

        current: GatewayServices = app.state.services
        logger.info(
            "Tool Gateway started",
            procedure_count=len(current.registry.list_procedures()),
            tool_route_count=len(current.routes)
        )

        yield

        logger.info("Shutting down Tool Gateway")
        await current.audit_logger.flush()

    app = FastAPI(
        title="Tool Gateway",
        description="Exposes registry procedures as discoverable, invocable tools",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["WWW-Authenticate", CURRENT_SCOPES_HEADER, ACCEPTED_SCOPES_HEADER],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        bind_request(
            request_id=request.headers.get("X-Request-ID") or str(uuid.uuid4()),
            http_method=request.method,
            path=request.url.path,
        )
        try:
            return await call_next(request)
        finally:
            clear_context()

    @app.exception_handler(ToolGatewayError)
    async def tool_gateway_error_handler(request: Request, exc: ToolGatewayError) -> Response:
        headers = {**exc.headers, "Cache-Control": NO_STORE}
        if exc.empty_body:
            return Response(status_code=exc.status_code, headers=headers)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    register_routes(app)
    return app


def get_services(request: Request) -> GatewayServices:
    """Dependency returning the wired services."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Tool Gateway not initialized")
    return services


def get_principal(
    request: Request,
    services: GatewayServices = Depends(get_services)
) -> Principal:
    """Dependency identifying the requester."""
    return services.resolver.resolve(
        authorization=request.headers.get("Authorization"),
        session_id=request.cookies.get(SESSION_COOKIE),
    )


def cacheable_response(
    content: dict[str, Any],
    services: GatewayServices,
    principal: Principal,
    vary_key: str
) -> JSONResponse:
    """JSON response carrying the discovery cache metadata."""
    fingerprint = services.permissions.fingerprint(principal)
    etag_source = f"{services.registry.version}:{fingerprint}:{principal.user_id}:{vary_key}"
    return JSONResponse(
        content=content,
        headers={
            "Cache-Control": f"private, max-age={services.settings.gateway.cache_max_age}",
            "Vary": "Authorization, Cookie",
            "Cache-Tag": f"{DISCOVERY_CACHE_TAG}, user.permissions",
            "ETag": '"' + hashlib.sha256(etag_source.encode("utf-8")).hexdigest()[:32] + '"',
        },
    )


def no_store_response(content: dict[str, Any]) -> JSONResponse:
    return JSONResponse(content=content, headers={"Cache-Control": NO_STORE})


def query_arguments(request: Request) -> dict[str, Any]:
    """
    Read invocation arguments from the query string.

    A single ``arguments`` parameter holding a JSON object is used as is;
    otherwise every parameter is an argument, with JSON scalars decoded
    (``?nid=1`` gives ``{"nid": 1}``).
    """
    params = request.query_params
    if list(params.keys()) == ["arguments"]:
        try:
            arguments = json.loads(params["arguments"])
        except json.JSONDecodeError:
            raise InvalidJsonError("Query parameter \"arguments\" must be a JSON object")
        if not isinstance(arguments, dict):
            raise InvalidJsonError("Query parameter \"arguments\" must be a JSON object")
        return arguments

    arguments: dict[str, Any] = {}
    for key, value in params.items():
        try:
            arguments[key] = json.loads(value)
        except json.JSONDecodeError:
            arguments[key] = value
    return arguments


def register_routes(app: FastAPI) -> None:
    """Attach the HTTP endpoints."""

    @app.get("/health", tags=["System"])
    async def health_check(services: GatewayServices = Depends(get_services)):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": VERSION,
            "registry_version": services.registry.version,
            "tool_count": len(services.routes),
        }

    @app.get("/tools/list", tags=["Tools"])
    def list_tools(
        cursor: Optional[str] = None,
        services: GatewayServices = Depends(get_services),
        principal: Principal = Depends(get_principal)
    ):
        """List the tools visible to the requester, one page at a time."""
        content = services.controller.list_tools(principal, cursor)
        return cacheable_response(content, services, principal, f"cursor={cursor or ''}")

    @app.get("/tools/describe", tags=["Tools"])
    def describe_tool(
        name: Optional[str] = None,
        services: GatewayServices = Depends(get_services),
        principal: Principal = Depends(get_principal)
    ):
        """Describe a single tool."""
        content = services.controller.describe_tool(principal, name)
        return cacheable_response(content, services, principal, f"name={name}")

    @app.post("/tools/invoke", tags=["Tools"])
    async def invoke_tool(
        request: Request,
        services: GatewayServices = Depends(get_services),
        principal: Principal = Depends(get_principal)
    ):
        """Invoke a tool with ``{"name": ..., "arguments": {...}}``."""
        body = await request.body()
        content = await services.controller.invoke_from_body(
            principal,
            body,
            authorization=request.headers.get("Authorization"),
        )
        return no_store_response(content)

    @app.api_route("/tools/{tool_name:path}", methods=["GET", "POST"], tags=["Tools"])
    async def invoke_tool_alias(
        tool_name: str,
        request: Request,
        services: GatewayServices = Depends(get_services),
        principal: Principal = Depends(get_principal)
    ):
        """Per-tool invocation endpoint."""
        route = services.routes.get(tool_name)
        if route is None or not route.allows(request.method):
            raise ToolNotFoundError(tool_name)
        logger.debug("Tool route matched", route=route.route_name)

        authorization = request.headers.get("Authorization")
        if request.method == "GET":
            content = await services.controller.invoke_tool(
                principal,
                tool_name,
                query_arguments(request),
                authorization=authorization,
                requirements=route.requirements,
            )
        else:
            content = await services.controller.invoke_from_body(
                principal,
                await request.body(),
                authorization=authorization,
                name=tool_name,
                requirements=route.requirements,
            )
        return no_store_response(content)

    @app.post("/session", tags=["Session"])
    def open_session(
        request: Request,
        services: GatewayServices = Depends(get_services),
        principal: Principal = Depends(get_principal)
    ):
        """Exchange an active bearer token for a session cookie."""
        denial = services.controller.gate.require_bearer(
            principal, request.headers.get("Authorization")
        )
        if denial is not None:
            raise denial

        session_id = services.resolver.sessions.open(principal.user_id)
        logger.info("Session opened", user=principal.user_id)

        response = no_store_response({"session": {"user": principal.user_id}})
        response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
        return response

    @app.delete("/session", tags=["Session"], status_code=204)
    def close_session(
        request: Request,
        services: GatewayServices = Depends(get_services)
    ):
        """End the current session, if any."""
        session_id = request.cookies.get(SESSION_COOKIE)
        if session_id:
            services.resolver.sessions.close(session_id)

        response = Response(status_code=204, headers={"Cache-Control": NO_STORE})
        response.delete_cookie(SESSION_COOKIE)
        return response

    @app.get("/.well-known/oauth-protected-resource", tags=["OAuth"])
    def protected_resource_metadata(
        services: GatewayServices = Depends(get_services),
        principal: Principal = Depends(get_principal)
    ):
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        gateway = services.settings.gateway
        tools = services.discovery.discover(principal).values()
        return build_resource_metadata(
            services.registry,
            tools,
            resource=gateway.resource_url,
            authorization_servers=gateway.authorization_servers,
        )


app = create_app()


def main():
    """Run the Tool Gateway."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "tool_gateway.main:app",
        host=settings.gateway.host,
        port=settings.gateway.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
