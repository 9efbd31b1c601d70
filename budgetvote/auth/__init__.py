from .auth import (
    create_access_token,
    get_token_from_request,
    get_current_user,
    get_current_active_user,
    require_admin,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
)
