"""PKCE (Proof Key for Code Exchange) の値を生成する。"""

from __future__ import annotations

import base64
from dataclasses import dataclass
import hashlib
import secrets

CODE_VERIFIER_LENGTH = 128
CODE_VERIFIER_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
CHALLENGE_METHOD_S256 = "S256"


@dataclass(frozen=True, slots=True)
class PKCEInformation:
    """コード交換で使うverifierとchallengeの組。"""

    verifier: str
    challenge: str
    method: str = CHALLENGE_METHOD_S256


def create_pkce_information() -> PKCEInformation:
    """新しいverifierを生成し、S256のchallengeと組にして返す。"""

    verifier = generate_verifier()
    return PKCEInformation(verifier=verifier, challenge=generate_challenge(verifier))


def generate_verifier(length: int = CODE_VERIFIER_LENGTH) -> str:
    if not 43 <= length <= 128:
        raise ValueError("verifierの長さは43以上128以下である必要があります")
    return "".join(secrets.choice(CODE_VERIFIER_CHARSET) for _ in range(length))


def generate_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
