from chirp.models.database import Base, get_db
from chirp.models.user import User
from chirp.models.auth_token import PasswordResetCode, RefreshToken

__all__ = ["Base", "get_db", "User", "PasswordResetCode", "RefreshToken"]
