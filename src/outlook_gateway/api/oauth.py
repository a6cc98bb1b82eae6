"""OAuth 2.0 authorization-server facade in front of Microsoft identity.

Clients register with the gateway, are redirected to Microsoft with the
gateway's client_id, and exchange codes through ``/token``. PKCE parameters
are passed through untouched.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from outlook_gateway.auth.microsoft import DEFAULT_SCOPES, MicrosoftOAuthClient
from outlook_gateway.auth.registry import ClientRegistrationRequest, ClientRegistry
from outlook_gateway.dependencies import get_client_registry, get_oauth_client
from outlook_gateway.utils.errors import TokenExchangeError
from outlook_gateway.utils.logging import get_logger

logger = get_logger("oauth")

router = APIRouter(tags=["oauth"])

# Microsoft error statuses relayed as-is; anything else becomes 400
PASSTHROUGH_STATUSES = frozenset(
    {400, 401, 403, 404, 405, 409, 410, 415, 422, 429, 500, 502, 503, 504}
)


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(request: Request):
    origin = str(request.base_url).rstrip("/")
    return {
        "issuer": origin,
        "authorization_endpoint": f"{origin}/authorize",
        "token_endpoint": f"{origin}/token",
        "registration_endpoint": f"{origin}/register",
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["none"],
        "code_challenge_methods_supported": ["S256", "plain"],
        "scopes_supported": DEFAULT_SCOPES,
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_client(
    body: ClientRegistrationRequest,
    registry: ClientRegistry = Depends(get_client_registry),
):
    """Dynamic client registration. Clients are public (no secret)."""
    client = registry.register(body)
    logger.info(f"Registered OAuth client {client.client_id} ({client.client_name})")
    return client.model_dump(exclude={"created_at"})


@router.get("/authorize")
async def authorize(request: Request, oauth: MicrosoftOAuthClient = Depends(get_oauth_client)):
    params = dict(request.query_params)
    logger.info(
        f"Authorize redirect: code_challenge_method={params.get('code_challenge_method')}, "
        f"redirect_uri={params.get('redirect_uri')}"
    )
    return RedirectResponse(oauth.authorize_url(params), status_code=status.HTTP_302_FOUND)


@router.post("/token")
async def token(request: Request, oauth: MicrosoftOAuthClient = Depends(get_oauth_client)):
    """Forward authorization_code and refresh_token grants to Microsoft."""
    form = await request.form()
    grant_type = form.get("grant_type")
    logger.info(f"Token request: grant_type={grant_type}")

    try:
        if grant_type == "authorization_code":
            result = await oauth.exchange_code(
                code=str(form.get("code") or ""),
                redirect_uri=str(form.get("redirect_uri") or ""),
                code_verifier=form.get("code_verifier") or None,
                scope=form.get("scope") or None,
            )
        elif grant_type == "refresh_token":
            result = await oauth.refresh(str(form.get("refresh_token") or ""))
        else:
            return JSONResponse({"error": "unsupported_grant_type"}, status_code=400)
    except TokenExchangeError as e:
        status_code = e.upstream_status if e.upstream_status in PASSTHROUGH_STATUSES else 400
        return JSONResponse(e.body or {"error": "invalid_request"}, status_code=status_code)

    return result.model_dump(exclude_none=True)
