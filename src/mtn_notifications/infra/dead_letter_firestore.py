"""Dead-letter durável em Firestore.

Schema:
    /{collection}/{request_id}
    ├── request_id: str
    ├── final_attempt_number: int
    ├── last_error: str
    ├── moved_at: datetime
    ├── reason: str (PERMANENT | RETRIES_EXHAUSTED)
    └── request: map (DeliveryRequest serializada)
"""

from __future__ import annotations

from google.cloud import firestore

from mtn_notifications.domain.errors import DeadLetterStoreError
from mtn_notifications.domain.models import DeadLetterEntry
from mtn_notifications.domain.protocols.dead_letter import DeadLetterStore
from mtn_notifications.observability.logging import get_logger

logger = get_logger(__name__)


class FirestoreDeadLetterStore(DeadLetterStore):
    """Implementação de dead-letter usando Firestore."""

    def __init__(
        self,
        client: firestore.Client,
        *,
        collection: str = "notification_dead_letters",
    ) -> None:
        self._client = client
        self._collection = collection

    def _doc(self, request_id: str):
        return self._client.collection(self._collection).document(request_id)

    def save(self, entry: DeadLetterEntry) -> None:
        data = entry.to_dict()
        data["moved_at"] = entry.moved_at
        try:
            self._doc(entry.request_id).set(data)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "firestore_dead_letter_error",
                extra={"operation": "save", "error": type(exc).__name__},
            )
            raise DeadLetterStoreError(f"Falha ao gravar dead-letter: {exc}") from exc

    def get(self, request_id: str) -> DeadLetterEntry | None:
        try:
            snapshot = self._doc(request_id).get()
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "firestore_dead_letter_error",
                extra={"operation": "get", "error": type(exc).__name__},
            )
            raise DeadLetterStoreError(f"Falha ao consultar dead-letter: {exc}") from exc

        if not snapshot.exists:
            return None
        return DeadLetterEntry.from_dict(snapshot.to_dict() or {})

    def list(self, limit: int = 100) -> list[DeadLetterEntry]:  # noqa: A003
        query = (
            self._client.collection(self._collection)
            .order_by("moved_at", direction=firestore.Query.ASCENDING)
            .limit(limit)
        )
        try:
            return [DeadLetterEntry.from_dict(doc.to_dict() or {}) for doc in query.stream()]
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "firestore_dead_letter_error",
                extra={"operation": "list", "error": type(exc).__name__},
            )
            raise DeadLetterStoreError(f"Falha ao listar dead-letters: {exc}") from exc

    def claim(self, request_id: str) -> DeadLetterEntry | None:
        """Lê e apaga o documento na mesma transação."""
        doc_ref = self._doc(request_id)

        @firestore.transactional
        def _txn(transaction: firestore.Transaction) -> DeadLetterEntry | None:
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            transaction.delete(doc_ref)
            return DeadLetterEntry.from_dict(snapshot.to_dict() or {})

        try:
            return _txn(self._client.transaction())
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "firestore_dead_letter_error",
                extra={"operation": "claim", "error": type(exc).__name__},
            )
            raise DeadLetterStoreError(f"Falha ao reivindicar dead-letter: {exc}") from exc
