"""
Mock Google OAuth2 token endpoint accepting JWT-bearer assertions.
"""

import secrets
import time
from typing import Any, Dict, List, Optional

import jwt
from fastapi import FastAPI, Form, HTTPException
from fastapi.responses import JSONResponse

from shared.logging import get_logger


JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
REQUIRED_CLAIMS = ["iss", "scope", "aud", "iat", "exp"]


class MockGoogleOAuthServer:
    """Mock Google OAuth2 server implementation."""

    def __init__(self, port: int = 8090, expires_in: Optional[int] = 3600):
        self.port = port
        self.logger = get_logger("mock.google_oauth")
        self.app = FastAPI(title="Mock Google OAuth2", version="1.0.0")

        self.token_uri = f"http://localhost:{port}/token"
        self.expires_in = expires_in

        # client_email -> public key; assertions from unknown issuers are decoded unverified
        self.public_keys: Dict[str, Any] = {}

        # Failure injection
        self.fail_status: Optional[int] = None
        self.fail_remaining = 0
        self.omit_access_token = False

        self.requests: List[Dict[str, Any]] = []
        self.issued: List[str] = []

        self._setup_routes()

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def register_public_key(self, client_email: str, public_key: Any) -> None:
        self.public_keys[client_email] = public_key

    def fail_next(self, status_code: int, times: int = 1) -> None:
        """Answer the next ``times`` token requests with ``status_code``."""
        self.fail_status = status_code
        self.fail_remaining = times

    def reset(self) -> None:
        self.fail_status = None
        self.fail_remaining = 0
        self.omit_access_token = False
        self.requests.clear()
        self.issued.clear()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/health")
        async def health():
            return {"status": "ok", "service": "mock-google-oauth", "requests": self.call_count}

        @self.app.post("/token")
        async def token_endpoint(
            grant_type: str = Form(...),
            assertion: str = Form(...),
        ):
            """Token endpoint for the JWT-bearer grant."""
            self.requests.append({"grant_type": grant_type, "assertion": assertion})

            if self.fail_remaining > 0:
                self.fail_remaining -= 1
                return JSONResponse(
                    status_code=self.fail_status,
                    content={"error": "backend_error", "error_description": "Injected failure"},
                )

            if grant_type != JWT_BEARER_GRANT:
                raise HTTPException(status_code=400, detail="unsupported_grant_type")

            claims = self._decode_assertion(assertion)
            return self._issue_token(claims)

    def _decode_assertion(self, assertion: str) -> Dict[str, Any]:
        try:
            unverified = jwt.decode(assertion, options={"verify_signature": False})
            public_key = self.public_keys.get(unverified.get("iss"))
            if public_key is None:
                claims = unverified
            else:
                claims = jwt.decode(
                    assertion,
                    public_key,
                    algorithms=["RS256"],
                    audience=unverified.get("aud"),
                )
        except jwt.InvalidTokenError as e:
            self.logger.warning("Rejected assertion", error=str(e))
            raise HTTPException(status_code=400, detail="invalid_grant")

        missing = [claim for claim in REQUIRED_CLAIMS if claim not in claims]
        if missing:
            raise HTTPException(status_code=400, detail=f"invalid_grant: missing {', '.join(missing)}")
        if claims["exp"] <= claims["iat"]:
            raise HTTPException(status_code=400, detail="invalid_grant: bad lifetime")
        return claims

    def _issue_token(self, claims: Dict[str, Any]) -> Dict[str, Any]:
        access_token = f"ya29.mock-{secrets.token_urlsafe(16)}"
        self.issued.append(access_token)
        self.logger.info("Issued access token", iss=claims["iss"], scope=claims["scope"])

        body: Dict[str, Any] = {"token_type": "Bearer", "issued_at": int(time.time())}
        if not self.omit_access_token:
            body["access_token"] = access_token
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        return body


def create_app():
    """Create mock Google OAuth2 application."""
    server = MockGoogleOAuthServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8090)
