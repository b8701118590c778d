"""Camada de infraestrutura: adapters para serviços externos.

- Idempotência: InMemoryIdempotencyStore, RedisIdempotencyStore
- Rate limit: InMemoryRateLimitStore, RedisRateLimitStore
- Dead-letter: InMemoryDeadLetterStore, FirestoreDeadLetterStore
- HTTP: HttpClient (timeout + circuit breaker)
- Fila de eventos: InMemoryMessageQueue
- Secrets: EnvSecretProvider, SecretManagerProvider

Infraestrutura não decide regra de negócio; logs estruturados sem PII.
"""
