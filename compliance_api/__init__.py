"""Motor de agregación y refresco de cumplimiento de edificios.

Estructura:
- core/domain/    → Modelos de dominio
- sources/        → Adaptadores de datasets (HPD, DOB, LL97, DSNY)
- resilience/     → Rate limiting, backoff, circuit breaker
- normalization/  → RawRecord → CanonicalEvent
- aggregation/    → Buckets mensuales, score, tendencia
- scheduler/      → Máquina de estados de refresco
- alerts/         → Evaluación de umbrales y sinks
- store/          → Cache de snapshots + suscripciones
- transports/     → API HTTP e invalidación push
- metrics/        → Métricas Prometheus
"""

__version__ = "0.1.0"
