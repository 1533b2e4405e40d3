# SPDX-License-Identifier: Apache-2.0

"""
JWT service for RS256 access tokens.

Tokens are issued by the marketplace's identity provider; this service
verifies them and can mint tokens for local development and tests.
"""

import os
import uuid
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
import logging

from escrow_api.models.enums import UserRole

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when a token cannot be issued."""
    pass


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


def generate_key_pair() -> Tuple[str, str]:
    """Generate an RSA key pair as (private PEM, public PEM)."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    return private_pem, public_pem


def _pem_from_env(name: str) -> Optional[str]:
    # Single-line env values carry escaped newlines
    value = os.getenv(name)
    return value.replace("\\n", "\n") if value else None


class AuthService:
    """
    RS256 JWT verification and issuance.

    Access token claims are ``sub``, ``role``, ``email``, ``name``, ``type``,
    ``jti``, ``iat`` and ``exp``.
    """

    def __init__(self, private_key: Optional[str] = None, public_key: Optional[str] = None):
        """
        Initialize the authentication service.

        Args:
            private_key: RS256 private key for token signing (PEM format)
            public_key: RS256 public key for token verification (PEM format)
        """
        private_key = private_key or _pem_from_env("JWT_PRIVATE_KEY")
        public_key = public_key or _pem_from_env("JWT_PUBLIC_KEY")

        if not public_key:
            logger.warning("No JWT_PUBLIC_KEY found, generating development key pair")
            private_key, public_key = generate_key_pair()

        self.private_key = private_key
        self.public_key = public_key
        self.algorithm = "RS256"
        self.access_token_expire_minutes = int(os.getenv("JWT_ACCESS_TOKEN_MINUTES", "15"))

    def generate_access_token(self, user_id: str, role: str = UserRole.BUYER.value,
                              email: Optional[str] = None, name: Optional[str] = None,
                              expires_in_minutes: Optional[int] = None) -> str:
        """
        Sign an access token.

        Raises:
            AuthenticationError: If no private key is configured or signing fails
        """
        with tracer.start_as_current_span("auth.generate_access_token") as span:
            span.set_attributes({"user.id": user_id, "user.role": role})

            if not self.private_key:
                raise AuthenticationError("No private key configured for token signing")

            now = datetime.now(timezone.utc)
            minutes = self.access_token_expire_minutes if expires_in_minutes is None else expires_in_minutes
            payload = {
                "sub": user_id,
                "role": role,
                "email": email,
                "name": name,
                "type": "access",
                "jti": uuid.uuid4().hex,
                "iat": now,
                "exp": now + timedelta(minutes=minutes)
            }

            try:
                token = jwt.encode(payload, self.private_key, algorithm=self.algorithm)
            except Exception as e:
                logger.error(f"Token generation failed: {str(e)}")
                raise AuthenticationError(f"Failed to generate token: {str(e)}")

            logger.info("Access token issued", extra={"user_id": user_id, "role": role})
            return token

    def validate_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Validate and decode a JWT token.

        Args:
            token: JWT token string to validate
            token_type: Expected ``type`` claim

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If token is invalid or expired
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attributes({
                "auth.operation": "validate_token",
                "auth.token_type": token_type
            })

            try:
                payload = jwt.decode(
                    token,
                    self.public_key,
                    algorithms=[self.algorithm],
                    options={"verify_exp": True, "require": ["sub", "exp"]}
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")

            if payload.get("type") != token_type:
                span.set_attribute("auth.validation_result", "wrong_type")
                raise TokenValidationError(f"Invalid token type. Expected {token_type}")

            if payload.get("role") not in [role.value for role in UserRole]:
                span.set_attribute("auth.validation_result", "unknown_role")
                raise TokenValidationError("Token carries an unknown role")

            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload.get("sub"),
                "user.role": payload.get("role")
            })
            return payload

    def extract_token_id(self, token: str) -> str:
        """
        Identifier used for the token blocklist.

        Uses the ``jti`` claim, or ``sub:iat:type`` for tokens without one.
        """
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            logger.error(f"Failed to extract token ID: {str(e)}")
            raise TokenValidationError(f"Invalid token format: {str(e)}")

        if payload.get("jti"):
            return payload["jti"]
        return f"{payload.get('sub')}:{payload.get('iat')}:{payload.get('type')}"
