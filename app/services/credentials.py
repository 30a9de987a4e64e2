"""
Credential encryption/decryption and provider credential access.
Vendor keys, passwords and tokens are only ever stored Fernet-encrypted.
"""
import json
import base64
import logging
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from app.config import settings
from app.models import ProviderCredential

logger = logging.getLogger(__name__)

OWNER_BUSINESS = "business"
OWNER_STORE = "store"


def get_encryption_key() -> bytes:
    """Derive the Fernet key from ENCRYPTION_KEY (padded/truncated to 32 bytes)."""
    key_bytes = settings.ENCRYPTION_KEY.encode()[:32].ljust(32, b'0')
    return base64.urlsafe_b64encode(key_bytes)


def encrypt_token(token: str) -> str:
    f = Fernet(get_encryption_key())
    return f.encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


def mask_secret(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if len(value) <= 4:
        return "****"
    return "*" * (len(value) - 4) + value[-4:]


def _find(db: Session, owner_type: str, owner_id: str, provider_id: str) -> Optional[ProviderCredential]:
    return (
        db.query(ProviderCredential)
        .filter(
            ProviderCredential.owner_type == owner_type,
            ProviderCredential.owner_id == owner_id,
            ProviderCredential.provider_id == provider_id,
        )
        .first()
    )


def get_provider_credentials(
    db: Session, owner_type: str, owner_id: str, provider_id: str
) -> Optional[dict[str, Any]]:
    """Return the decrypted credentials dict for an owner and provider, or None."""
    cred = _find(db, owner_type, owner_id, provider_id)
    if not cred or not cred.value_encrypted:
        return None
    try:
        dec = decrypt_token(cred.value_encrypted)
    except InvalidToken:
        logger.warning("Stored credentials for %s/%s/%s cannot be decrypted", owner_type, owner_id, provider_id)
        return None
    if dec.strip().startswith("{"):
        return json.loads(dec)
    return {"apiKey": dec}


def save_provider_credentials(
    db: Session, owner_type: str, owner_id: str, provider_id: str, values: dict[str, Any], merge: bool = True
) -> ProviderCredential:
    """Encrypt and upsert credentials. With merge=True existing keys not in values are kept."""
    cred = _find(db, owner_type, owner_id, provider_id)
    data: dict[str, Any] = {}
    if cred and merge:
        data = get_provider_credentials(db, owner_type, owner_id, provider_id) or {}
    data.update(values)
    encrypted = encrypt_token(json.dumps(data))
    if cred:
        cred.value_encrypted = encrypted
    else:
        cred = ProviderCredential(
            owner_type=owner_type,
            owner_id=owner_id,
            provider_id=provider_id,
            value_encrypted=encrypted,
        )
        db.add(cred)
    db.flush()
    return cred


def delete_provider_credentials(db: Session, owner_type: str, owner_id: str, provider_id: str) -> bool:
    cred = _find(db, owner_type, owner_id, provider_id)
    if not cred:
        return False
    db.delete(cred)
    db.flush()
    return True


def list_providers(db: Session, owner_type: str, owner_id: str) -> list[str]:
    rows = (
        db.query(ProviderCredential.provider_id)
        .filter(ProviderCredential.owner_type == owner_type, ProviderCredential.owner_id == owner_id)
        .all()
    )
    return sorted(r[0] for r in rows)
