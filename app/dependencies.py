from fastapi import Depends, HTTPException, Request, status
from app.core.rate_limit import RateLimiter, retry_after_header
from app.core.security import verify_token
from app.services.distribution_service import DistributionService

def get_distribution_service(request: Request) -> DistributionService:
  return request.app.state.distribution

def get_rate_limiter(request: Request) -> RateLimiter:
  return request.app.state.limiter

def client_identity(request: Request) -> str:
  return request.client.host if request.client else "unknown"

def admit_request(
  request: Request,
  claims: dict = Depends(verify_token),
  limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict:
  """Authorization first, then one token from the caller's bucket"""
  decision = limiter.acquire(client_identity(request))
  if not decision.allowed:
    raise HTTPException(
      status_code=status.HTTP_429_TOO_MANY_REQUESTS,
      detail="Rate limit exceeded",
      headers={"Retry-After": retry_after_header(decision)},
    )
  return claims
