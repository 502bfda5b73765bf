from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.core.db import get_db
from app.core.redis import get_redis
from app.models.user import User
from app.schemas.auth import (
    AuthOut,
    LoginIn,
    MessageOut,
    ProfileOut,
    ProfileUpdateIn,
    RegisterIn,
    RegisterOut,
    ResendOtpIn,
    UserPublic,
    VerifyEmailIn,
)
from app.services import audit, otp, password as password_service, risk
from app.services.email import OtpNotifier, get_notifier
from app.services.otp import OtpFailure, OtpIssueError, VerifyResult
from app.services.tokens import issue_access

router = APIRouter(prefix="/auth", tags=["auth"])

GENERIC = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password"
)

ISSUE_FAILED = HTTPException(
    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    detail="Unable to issue verification code. Please request a new one.",
)

OTP_FAILURE_STATUS = {
    OtpFailure.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "OTP not found. Please request a new one."),
    OtpFailure.EXPIRED: (status.HTTP_410_GONE, "OTP has expired. Please request a new one."),
    OtpFailure.TOO_MANY_ATTEMPTS: (
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many attempts. Please request a new OTP.",
    ),
    OtpFailure.INVALID_CODE: (status.HTTP_400_BAD_REQUEST, "Invalid OTP."),
}


def _public_user(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        email=user.email,
        firstName=user.first_name,
        lastName=user.last_name,
        imageUrl=user.image_url,
        authProvider=user.auth_provider,
        isEmailVerified=user.email_verified,
    )


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _otp_error(result: VerifyResult) -> HTTPException:
    status_code, detail = OTP_FAILURE_STATUS[result.reason]
    if result.reason is OtpFailure.INVALID_CODE and result.attempts is not None:
        remaining = max(otp.MAX_ATTEMPTS - result.attempts, 0)
        detail = f"{detail} {remaining} attempt(s) remaining."
    return HTTPException(status_code=status_code, detail=detail)


async def _find_user(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


@router.post("/register", response_model=RegisterOut, status_code=status.HTTP_201_CREATED)
async def register(
    req: RegisterIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    notifier: OtpNotifier = Depends(get_notifier),
):
    user = User(
        email=req.email,
        password_hash=password_service.hash_password(req.password),
        first_name=req.firstName,
        last_name=req.lastName,
        image_url=None,
        auth_provider="email",
        email_verified=False,
    )
    try:
        async with db.begin():
            if await _find_user(db, req.email):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="User already exists with this email",
                )
            db.add(user)
            await db.flush()
            await audit.record_event(
                db,
                event="register",
                user_id=user.id,
                email=user.email,
                ip=_client_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists with this email"
        )

    try:
        code = await otp.issue(db, user.email)
    except OtpIssueError:
        raise ISSUE_FAILED

    sent = await notifier.send_otp(user.email, code)
    message = (
        "Registration successful. OTP sent to your email."
        if sent
        else "Registration successful, but the OTP email could not be sent. Please request a new one."
    )
    return RegisterOut(message=message, user=_public_user(user), otpSent=sent)


@router.post("/verify-email", response_model=AuthOut)
async def verify_email(
    req: VerifyEmailIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    notifier: OtpNotifier = Depends(get_notifier),
):
    async with db.begin():
        user = await _find_user(db, req.email)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    result = await otp.verify(db, req.email, req.otp)
    if not result.ok:
        raise _otp_error(result)

    async with db.begin():
        user.email_verified = True
        await audit.record_event(
            db,
            event="verify_email",
            user_id=user.id,
            email=user.email,
            ip=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )

    token = issue_access(user.id, user.email)
    await notifier.send_welcome(user.email, user.first_name)
    return AuthOut(message="Email verified successfully", user=_public_user(user), token=token)


@router.post("/resend-otp", response_model=MessageOut)
async def resend_otp(
    req: ResendOtpIn,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    notifier: OtpNotifier = Depends(get_notifier),
):
    retry_after = await risk.hit_resend(redis, req.email)
    if retry_after is not None:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many OTP requests. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    async with db.begin():
        user = await _find_user(db, req.email)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.email_verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is already verified")

    try:
        code = await otp.issue(db, user.email)
    except OtpIssueError:
        raise ISSUE_FAILED

    if not await notifier.send_otp(user.email, code):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="OTP email could not be sent. Please try again.",
        )
    return MessageOut(message="OTP sent to your email")


@router.post("/login", response_model=AuthOut)
async def login(
    req: LoginIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    ip = _client_ip(request)
    if await risk.is_locked(redis, req.email):
        raise GENERIC

    ip_count, email_count = await risk.hit_signin(redis, req.email, ip)
    if risk.is_rate_limited(ip_count, email_count):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Slow down")

    async with db.begin():
        user = await _find_user(db, req.email)

    if user is None or not password_service.verify_password(user.password_hash, req.password):
        await risk.after_fail(redis, req.email)
        async with db.begin():
            await audit.record_event(
                db,
                event="signin.fail",
                user_id=user.id if user else None,
                email=req.email,
                ip=ip,
                user_agent=request.headers.get("user-agent"),
            )
        raise GENERIC

    if not user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please verify your email first. Check your inbox for OTP.",
        )

    await risk.reset_fail(redis, req.email)
    async with db.begin():
        if password_service.needs_rehash(user.password_hash):
            user.password_hash = password_service.hash_password(req.password)
        await audit.record_event(
            db,
            event="signin.success",
            user_id=user.id,
            email=user.email,
            ip=ip,
            user_agent=request.headers.get("user-agent"),
        )

    token = issue_access(user.id, user.email)
    return AuthOut(message="Login successful", user=_public_user(user), token=token)


@router.get("/me", response_model=UserPublic)
async def me(user: User = Depends(get_current_user)):
    return _public_user(user)


@router.put("/me", response_model=ProfileOut)
async def update_me(
    req: ProfileUpdateIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    async with db.begin():
        if req.firstName is not None:
            user.first_name = req.firstName
        if req.lastName is not None:
            user.last_name = req.lastName
        if req.imageUrl is not None:
            user.image_url = req.imageUrl
    return ProfileOut(message="Profile updated successfully", user=_public_user(user))
