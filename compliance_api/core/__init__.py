"""Core module - Modelos de dominio compartidos por todo el motor.

Estructura:
- domain/      → Edificios, eventos canónicos, snapshots, alertas
"""
