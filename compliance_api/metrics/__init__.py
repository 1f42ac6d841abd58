"""Métricas Prometheus."""
