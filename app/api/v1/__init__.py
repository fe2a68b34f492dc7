from app.api.v1 import referrals

__all__ = ["referrals"]
