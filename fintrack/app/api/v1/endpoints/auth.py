"""
Authentication API endpoints.

Provides register, login, logout, profile and password change endpoints.
The login logic itself lives in the authentication coordinator.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from fintrack.app.db.session import get_db
from fintrack.app.models.user import User
from fintrack.app.models.enums import UserRole, PasswordChangedBy
from fintrack.app.schemas.auth import (
    UserRegister, UserLogin, PasswordChangeRequest, ProfileUpdateRequest,
    TokenResponse, UserResponse, MessageResponse
)
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.core.security import hash_password_async, verify_password_async
from fintrack.app.core.jwt import create_session_token
from fintrack.app.core.redis_client import get_redis
from fintrack.app.core.token_revocation import revoke_token
from fintrack.app.core.dependencies import (
    get_current_account,
    get_current_user,
    get_activity_log,
    get_account_security_service,
    get_authentication_coordinator,
)
from fintrack.app.services.account_security import AccountSecurityService
from fintrack.app.services.activity_log import ActivityLog, ActivityType
from fintrack.app.services.authentication import AuthenticationCoordinator
from fintrack.app.services.user_agent import resolve_client_context

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db),
    activity_log: ActivityLog = Depends(get_activity_log),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """
    Register a new user.

    Self-registered accounts always get the USER role and start active
    with zero failed attempts.
    """
    # Check if username or email already exists (deleted accounts included)
    result = await db.execute(
        select(User).where(
            or_(User.username == user_data.username, User.email == user_data.email)
        )
    )
    existing_user = result.scalars().first()

    if existing_user:
        if existing_user.username == user_data.username:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Username already registered"
            )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    new_user = User(
        email=user_data.email,
        username=user_data.username,
        full_name=user_data.full_name,
        hashed_password=await hash_password_async(user_data.password),
        role=UserRole.USER,
    )

    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    await activity_log.record(
        ActivityType.USER_CREATED,
        user_id=new_user.id,
        description="Account registered",
        data={"username": new_user.username, "email": new_user.email},
        client_context=client_context,
    )

    return TokenResponse(
        access_token=create_session_token(new_user),
        token_type="bearer",
        user_id=new_user.id,
        uuid=new_user.uuid,
        username=new_user.username,
        email=new_user.email,
        role=new_user.role,
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db),
    coordinator: AuthenticationCoordinator = Depends(get_authentication_coordinator),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """
    Login with username or email and return a JWT token.

    Responses:
        200: Token plus first-login, password-age and anomaly information
        401: Generic credential error (unknown identifier or wrong password)
        403: Structured denial for blocked, suspended, terminated,
            inactive or locked accounts
    """
    session = await coordinator.attempt(db, credentials.identifier, credentials.password, client_context)
    account = session.account

    return TokenResponse(
        access_token=session.access_token,
        token_type="bearer",
        user_id=account.id,
        uuid=account.uuid,
        username=account.username,
        email=account.email,
        role=account.role,
        first_login=session.first_login,
        needs_password_change=session.needs_password_change,
        risk_level=session.anomaly_report.risk_level,
        anomaly_flags=list(session.anomaly_report.flags),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    current_user: dict = Depends(get_current_user),
    redis=Depends(get_redis),
    activity_log: ActivityLog = Depends(get_activity_log),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Revoke the bearer token used for this request."""
    user_id = current_user["user_id"]
    await revoke_token(redis, current_user.get("jti"), user_id)

    await activity_log.record(
        ActivityType.LOGOUT,
        user_id=user_id,
        description="User logged out",
        client_context=client_context,
    )

    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    account: User = Depends(get_current_account),
    account_security: AccountSecurityService = Depends(get_account_security_service),
):
    """
    Get current authenticated user information.

    Requires valid JWT token in Authorization header.
    """
    response = UserResponse.model_validate(account)
    response.needs_password_change = account_security.needs_password_change(account)
    return response


@router.patch("/me", response_model=UserResponse)
async def update_profile(
    request: ProfileUpdateRequest,
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Update the current account's name, email or position."""
    changes = request.model_dump(exclude_unset=True)

    if changes.get("email") and changes["email"] != account.email:
        result = await db.execute(
            select(User.id).where(User.email == changes["email"], User.id != account.id)
        )
        if result.first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )
    if "email" in changes and changes["email"] is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email cannot be removed"
        )

    await account_security.update_profile(db, account, changes, client_context=client_context)

    response = UserResponse.model_validate(account)
    response.needs_password_change = account_security.needs_password_change(account)
    return response


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    request: PasswordChangeRequest,
    account: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    account_security: AccountSecurityService = Depends(get_account_security_service),
    client_context: ClientContext = Depends(resolve_client_context),
):
    """Change the current account's password."""
    if not await verify_password_async(request.current_password, account.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect"
        )
    if request.current_password == request.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="New password must differ from the current password"
        )

    await account_security.change_password(
        db,
        account,
        request.new_password,
        changed_by=PasswordChangedBy.SELF,
        client_context=client_context,
    )

    return MessageResponse(message="Password changed")
