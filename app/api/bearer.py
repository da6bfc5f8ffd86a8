from fastapi.security import HTTPBearer

# HTTP Bearer authentication schemes for each user domain.
# auto_error is disabled so that a missing header is reported as InvalidToken (401)
bearer_admin = HTTPBearer(scheme_name="Admin HTTPBearer", auto_error=False)
bearer_driver = HTTPBearer(scheme_name="Driver HTTPBearer", auto_error=False)
bearer_auth = HTTPBearer(scheme_name="Auth HTTPBearer", auto_error=False)
