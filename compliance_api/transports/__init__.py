"""Transportes: API HTTP y listener de invalidación push."""
