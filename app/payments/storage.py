"""
Proof-of-payment storage on Django's ``default_storage``.

Files are saved under ``payment_proofs/<transaction_id>/``. Signed URLs are
S3 presigned URLs when the storage backend exposes a bucket (django-storages
S3Storage); otherwise a ``django.core.signing`` token is issued and served
by the ``proof_download`` view, which checks the token's age.

Usage:
    storage = DefaultStorageProofStorage()
    stored = storage.upload_proof(request.FILES["file"], txn.id)
    url = storage.get_signed_url(stored.key, ttl_seconds=3600)
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import TYPE_CHECKING, Any

from django.core import signing
from django.core.files.storage import default_storage
from django.urls import reverse

from payments.protocols import StoredProof

if TYPE_CHECKING:
    from django.core.files.base import File

logger = logging.getLogger(__name__)

PROOF_DIRECTORY = "payment_proofs"
PROOF_TOKEN_SALT = "payments.proof_download"

ALLOWED_PROOF_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".pdf"})
MAX_PROOF_SIZE_BYTES = 10 * 1024 * 1024


def make_proof_token(key: str) -> str:
    return signing.dumps({"key": key}, salt=PROOF_TOKEN_SALT, compress=True)


def read_proof_token(token: str, max_age: int) -> str:
    """
    Return the storage key inside a proof token.

    Raises:
        signing.SignatureExpired: Token older than ``max_age`` seconds
        signing.BadSignature: Token tampered with or malformed
    """
    return signing.loads(token, salt=PROOF_TOKEN_SALT, max_age=max_age)["key"]


class DefaultStorageProofStorage:
    """ProofStorage implementation over ``django.core.files.storage.default_storage``."""

    def __init__(self, storage=None):
        self.storage = storage or default_storage

    def upload_proof(self, file: File, transaction_id: Any) -> StoredProof:
        extension = os.path.splitext(getattr(file, "name", "") or "")[1].lower()
        name = f"{PROOF_DIRECTORY}/{transaction_id}/{uuid.uuid4().hex}{extension}"
        key = self.storage.save(name, file)

        logger.info(
            "Stored payment proof",
            extra={"transaction_id": str(transaction_id), "key": key},
        )

        return StoredProof(url=self.storage.url(key), key=key)

    def get_signed_url(self, key: str, ttl_seconds: int) -> str:
        if hasattr(self.storage, "bucket"):
            # S3Storage signs with querystring_expire; pass the TTL explicitly
            client = self.storage.bucket.meta.client
            return client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.storage.bucket.name, "Key": key},
                ExpiresIn=ttl_seconds,
            )

        return reverse("payments:proof-download", kwargs={"token": make_proof_token(key)})

    def delete_proof(self, key: str) -> None:
        self.storage.delete(key)
        logger.info("Deleted payment proof", extra={"key": key})
