"""Utility helpers (logging, validation)"""
