import math

from pydantic import BaseModel


class RateLimitDecision(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
