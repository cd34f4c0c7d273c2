"""
Auth2 모듈 패키지
"""

# 각 모듈을 명시적으로 노출
from . import provider
from . import account
from . import connection
from . import auth
from . import refresh_job

__all__ = [
    "provider",
    "account",
    "connection",
    "auth",
    "refresh_job",
]
