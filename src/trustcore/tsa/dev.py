"""Internal development TSA: simulated tokens signed with the dev key."""

import secrets
from datetime import UTC, datetime

from trustcore.canonical import canonicalize, hash_b64, rfc3339
from trustcore.signers.dev import DevKey, verify_signature
from trustcore.tsa.models import DevTsaToken, MessageImprint

DEV_TSA_ISSUER = "trustcore internal dev TSA"


class DevTimestampAuthority:
    def __init__(self, key: DevKey, policy_oid: str, issuer: str = DEV_TSA_ISSUER) -> None:
        self.key = key
        self.policy_oid = policy_oid
        self.issuer = issuer

    def issue(self, data: bytes, fallback_from_rfc3161: bool = False) -> DevTsaToken:
        """Issue a token over SHA-256(data); the canonical token body is signed."""
        unsigned = DevTsaToken(
            policy_oid=self.policy_oid,
            gen_time=rfc3339(datetime.now(UTC)),
            nonce=secrets.token_hex(16),
            serial=secrets.token_hex(8),
            message_imprint=MessageImprint(hashed_message=hash_b64(data)),
            issuer=self.issuer,
            fallback_from_rfc3161=True if fallback_from_rfc3161 else None,
            cert_chain=[self.key.cert_entry()],
        )
        signature = self.key.sign_b64(canonicalize(unsigned.signed_body()))
        return unsigned.model_copy(update={"signature": signature})


def verify_dev_token(token: DevTsaToken, data: bytes) -> bool:
    """Check the imprint covers ``data`` and the token signature holds."""
    if token.message_imprint.hashed_message != hash_b64(data):
        return False
    if not token.signature or not token.cert_chain or not token.cert_chain[0].public_key:
        return False
    return verify_signature(
        token.cert_chain[0].public_key,
        canonicalize(token.signed_body()),
        token.signature,
    )
