"""Runtime configuration for the storefront service."""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    """Tunable values handed to the services.

    Thresholds and defaults live here rather than in the services so tests
    can run the same rules with different numbers.
    """

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    jwt_secret: str = "dev-secret-change-me"
    jwt_expires_min: int = 60
    jwt_refresh_expires_min: int = 60 * 24 * 7
    verification_token_expires_min: int = 60 * 24
    bcrypt_rounds: int = 12
    lockout_threshold: int = 5
    default_minimum_stock_level: int = 10
    default_page_size: int = 20
    max_page_size: int = 100
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            jwt_expires_min=int(os.getenv("JWT_EXPIRES_MIN", cls.jwt_expires_min)),
            jwt_refresh_expires_min=int(
                os.getenv("JWT_REFRESH_EXPIRES_MIN", cls.jwt_refresh_expires_min)
            ),
            verification_token_expires_min=int(
                os.getenv("VERIFICATION_TOKEN_EXPIRES_MIN", cls.verification_token_expires_min)
            ),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", cls.bcrypt_rounds)),
            lockout_threshold=int(os.getenv("LOCKOUT_THRESHOLD", cls.lockout_threshold)),
            default_minimum_stock_level=int(
                os.getenv("DEFAULT_MINIMUM_STOCK_LEVEL", cls.default_minimum_stock_level)
            ),
            default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", cls.default_page_size)),
            max_page_size=int(os.getenv("MAX_PAGE_SIZE", cls.max_page_size)),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
        )
