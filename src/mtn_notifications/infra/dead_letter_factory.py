"""Factory para DeadLetterStore: criação backend-agnóstica."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mtn_notifications.domain.protocols.dead_letter import DeadLetterStore
from mtn_notifications.infra.dead_letter_memory import InMemoryDeadLetterStore
from mtn_notifications.observability.logging import get_logger

if TYPE_CHECKING:
    from mtn_notifications.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def create_dead_letter_store(
    settings: Settings,
    firestore_client: Any | None = None,
) -> DeadLetterStore:
    """Cria o store conforme DEAD_LETTER_BACKEND (memory | firestore).

    Raises:
        ValueError: Se backend inválido ou projeto GCP ausente
    """
    backend = settings.dead_letter_backend.lower()

    if backend == "memory":
        logger.warning("Using in-memory dead-letter store (dev only)")
        return InMemoryDeadLetterStore()

    if backend == "firestore":
        from mtn_notifications.infra.dead_letter_firestore import FirestoreDeadLetterStore

        if firestore_client is None:
            project_id = settings.firestore_project_id or settings.gcp_project
            if not project_id:
                raise ValueError(
                    "FIRESTORE_PROJECT_ID ou GCP_PROJECT é obrigatório para dead-letter firestore"
                )
            from google.cloud import firestore

            firestore_client = firestore.Client(project=project_id)

        logger.info(
            "Using Firestore dead-letter store",
            extra={"collection": settings.dead_letter_collection},
        )
        return FirestoreDeadLetterStore(
            firestore_client, collection=settings.dead_letter_collection
        )

    raise ValueError(f"Unknown dead-letter backend: {backend}")
