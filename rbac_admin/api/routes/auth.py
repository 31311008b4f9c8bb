"""
Authentication routes.
"""

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm

from rbac_admin.api.dependencies.services import get_auth_service, get_user_service
from rbac_admin.core.authz.dependencies import CurrentIdentity, Origin, Resolver
from rbac_admin.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ProfileResponse,
    RefreshTokenRequest,
    RegisterRequest,
    TokenResponse,
)
from rbac_admin.schemas.user import UserResponse
from rbac_admin.services.auth import AuthService, TokenPair
from rbac_admin.services.user import UserService

router = APIRouter()


def _tokens(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type="bearer",
        expires_in=tokens.expires_in,
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    origin: Origin,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Register a new user. The account starts with no roles."""
    user, tokens = await auth_service.register(
        username=data.username,
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
        origin=origin,
    )
    return AuthResponse(user=UserResponse.model_validate(user), tokens=_tokens(tokens))


@router.post("/login", response_model=AuthResponse)
async def login(
    origin: Origin,
    form_data: OAuth2PasswordRequestForm = Depends(),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Login with username or email and password."""
    user, tokens = await auth_service.login(
        form_data.username,
        form_data.password,
        origin=origin,
    )
    return AuthResponse(user=UserResponse.model_validate(user), tokens=_tokens(tokens))


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    data: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Refresh access token."""
    return _tokens(await auth_service.refresh_tokens(data.refresh_token))


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    identity: CurrentIdentity,
    resolver: Resolver,
    user_service: UserService = Depends(get_user_service),
):
    """Current user with effective roles and permissions."""
    user = await user_service.get(identity.user_id)
    roles = await resolver.effective_roles(identity.user_id)
    permissions = await resolver.effective_permissions(identity.user_id)
    return ProfileResponse(
        user=UserResponse.model_validate(user),
        roles=[r.name for r in roles],
        permissions=sorted(p.pair.key for p in permissions),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    identity: CurrentIdentity,
    origin: Origin,
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.logout(identity, origin=origin)


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    data: ChangePasswordRequest,
    identity: CurrentIdentity,
    origin: Origin,
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.change_password(
        identity,
        data.current_password,
        data.new_password,
        origin=origin,
    )
