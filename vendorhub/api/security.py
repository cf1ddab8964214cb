# vendorhub/api/security.py
import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from vendorhub.services import Services, get_services

logger = logging.getLogger("uvicorn.error")

# --- Simple HTTP Basic Auth for /admin/* endpoints ---
security = HTTPBasic()


def verify_admin(
    credentials: HTTPBasicCredentials = Depends(security),
    services: Services = Depends(get_services),
):
    ok_user = secrets.compare_digest(credentials.username.encode("utf-8"), services.settings.ADMIN_USER.encode("utf-8"))
    ok_pass = secrets.compare_digest(credentials.password.encode("utf-8"), services.settings.ADMIN_PASS.encode("utf-8"))
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


def _bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def is_authorized_trigger(request: Request, services: Services, *, allow_cron: bool = False) -> bool:
    """
    Bearer check for the internal job triggers. Without a configured secret the
    trigger is open outside production and closed in production.
    """
    settings = services.settings
    accepted = [s for s in (settings.JOB_WORKER_SECRET, settings.CRON_SECRET if allow_cron else "") if s]
    if not accepted:
        if settings.is_production:
            logger.error("[AUTH] no job worker secret configured in production; rejecting %s", request.url.path)
            return False
        logger.warning("[AUTH] no job worker secret configured; allowing %s (APP_ENV=%s)", request.url.path, settings.APP_ENV)
        return True

    token = _bearer_token(request)
    if not token:
        return False
    matched = False
    for secret in accepted:
        # compare against every secret so timing does not reveal which one matched
        matched |= secrets.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))
    return matched
